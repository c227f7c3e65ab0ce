"""Per-PR tracking record and the reaction vocabulary it is reconciled against."""

from enum import Enum
from typing import List, Set

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class ReactionLabel(str, Enum):
    """Slack emoji names the bot applies to announcement messages."""

    APPROVED = "white_check_mark"
    READY_TO_MERGE = "rocket"
    PARTIAL_APPROVAL = "one"
    NEEDS_REVIEW = "warning"
    COMMENTED = "speech_balloon"
    MERGED = "merged"
    CLOSED = "x"


class MergeReadiness(str, Enum):
    NO_APPROVALS = "no_approvals"
    PARTIALLY_APPROVED = "partially_approved"
    READY_TO_MERGE = "ready_to_merge"
    CHANGES_REQUESTED = "changes_requested"


def make_pr_key(repo_id: int, pr_number: int) -> str:
    """Cache key for a PR; stable for the PR's tracked lifetime."""
    return f"pr:{repo_id}:{pr_number}"


def merge_readiness(
    approvals: Set[str], changes_requested: Set[str], required_approvals: int
) -> MergeReadiness:
    """Derive merge readiness; an outstanding change request dominates."""
    if changes_requested:
        return MergeReadiness.CHANGES_REQUESTED
    if len(approvals) >= required_approvals:
        return MergeReadiness.READY_TO_MERGE
    if approvals:
        return MergeReadiness.PARTIALLY_APPROVED
    return MergeReadiness.NO_APPROVALS


class MessageLocation(BaseModel):
    """One posted announcement: a Slack channel and message timestamp."""

    model_config = ConfigDict(frozen=True)

    channel: str
    ts: str


class PRTrackingRecord(BaseModel):
    """Cache entry for an open, announced PR.

    `applied_reactions` mirrors the reactions this bot believes it has put on
    every message in `messages`; it never contains human-applied reactions.
    """

    messages: List[MessageLocation] = Field(default_factory=list)
    repo_full_name: str
    approvals: Set[str] = Field(default_factory=set)
    changes_requested: Set[str] = Field(default_factory=set)
    applied_reactions: Set[str] = Field(default_factory=set)

    @field_serializer("approvals", "changes_requested", "applied_reactions")
    def _serialize_set(self, value: Set[str]) -> List[str]:
        return sorted(value)

    @property
    def channels(self) -> Set[str]:
        return {m.channel for m in self.messages}

    def add_messages(self, locations: List[MessageLocation]) -> List[MessageLocation]:
        """Append locations for channels not yet tracked; returns those added."""
        known = self.channels
        added = []
        for location in locations:
            if location.channel in known:
                continue
            self.messages.append(location)
            known.add(location.channel)
            added.append(location)
        return added

    def record_approval(self, reviewer: str) -> None:
        self.changes_requested.discard(reviewer)
        self.approvals.add(reviewer)

    def record_changes_requested(self, reviewer: str) -> None:
        self.approvals.discard(reviewer)
        self.changes_requested.add(reviewer)

    def reset_reviews(self) -> None:
        self.approvals.clear()
        self.changes_requested.clear()

    def readiness(self, required_approvals: int) -> MergeReadiness:
        return merge_readiness(
            self.approvals, self.changes_requested, required_approvals
        )

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, payload: str) -> "PRTrackingRecord":
        return cls.model_validate_json(payload)
