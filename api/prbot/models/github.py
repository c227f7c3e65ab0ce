"""Pydantic models for the GitHub webhook payloads the bot consumes.

Only the fields the reconciliation engine reads are declared; GitHub sends
many more, which are ignored.
"""

from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class GitHubEventType(str, Enum):
    PULL_REQUEST = "pull_request"
    PULL_REQUEST_REVIEW = "pull_request_review"
    PULL_REQUEST_REVIEW_COMMENT = "pull_request_review_comment"


class PullRequestAction(str, Enum):
    REVIEW_REQUESTED = "review_requested"
    SYNCHRONIZE = "synchronize"
    CLOSED = "closed"


class ReviewState(str, Enum):
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    COMMENTED = "commented"
    DISMISSED = "dismissed"


# ---------------------------------------------------------------------------
# Payload building blocks
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GitHubUser(_Payload):
    login: str


class GitHubTeam(_Payload):
    slug: str
    name: Optional[str] = None


class Repository(_Payload):
    id: int
    full_name: str


class PullRequest(_Payload):
    number: int
    title: str = ""
    html_url: str = ""
    user: GitHubUser
    merged: Optional[bool] = False
    requested_teams: List[GitHubTeam] = Field(default_factory=list)

    @field_validator("merged", mode="before")
    @classmethod
    def null_merged_is_false(cls, v: Optional[bool]) -> bool:
        return bool(v)


class Review(_Payload):
    state: str
    user: GitHubUser

    @field_validator("state", mode="before")
    @classmethod
    def lowercase_state(cls, v: str) -> str:
        # Webhooks send lowercase states; the REST API sends uppercase
        return v.lower() if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class _PullRequestScoped(_Payload):
    pull_request: PullRequest
    repository: Repository

    @property
    def pr_number(self) -> int:
        return self.pull_request.number

    @property
    def repo_id(self) -> int:
        return self.repository.id

    @property
    def repo_full_name(self) -> str:
        return self.repository.full_name


class PullRequestEvent(_PullRequestScoped):
    """`pull_request` delivery (review_requested / synchronize / closed / ...)."""

    action: str
    requested_team: Optional[GitHubTeam] = None


class PullRequestReviewEvent(_PullRequestScoped):
    """`pull_request_review` delivery."""

    action: str = "submitted"
    review: Review


class PullRequestReviewCommentEvent(_PullRequestScoped):
    """`pull_request_review_comment` delivery (inline code comment)."""

    action: str = "created"


WebhookEvent = Union[
    PullRequestEvent, PullRequestReviewEvent, PullRequestReviewCommentEvent
]

EVENT_MODELS = {
    GitHubEventType.PULL_REQUEST.value: PullRequestEvent,
    GitHubEventType.PULL_REQUEST_REVIEW.value: PullRequestReviewEvent,
    GitHubEventType.PULL_REQUEST_REVIEW_COMMENT.value: PullRequestReviewCommentEvent,
}
