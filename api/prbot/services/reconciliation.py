"""PR status reconciliation engine.

Maps GitHub pull request events onto the approval state of a tracked PR and
onto the reaction set of its Slack announcement(s).

Flow per event:
    PR lock acquired -> record read -> transition planned -> reactions
    issued through the idempotent ReactionClient -> record written/deleted
    -> lock released

Events arrive at least once and in any order. Reactions already reflected in
the record's `applied_reactions` mirror are never re-sent, and a label enters
or leaves the mirror only when Slack confirms it on every tracked message.
Nothing raised by a collaborator escapes a handler: failures are logged and
reported in the returned ReconcileOutcome so the webhook is always
acknowledged.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol

from prbot.metrics.reconciliation_metrics import (
    reaction_skipped_total,
    reconcile_duration_seconds,
    reconcile_outcomes_total,
)
from prbot.models.github import (
    PullRequestAction,
    PullRequestEvent,
    PullRequestReviewCommentEvent,
    PullRequestReviewEvent,
    ReviewState,
    WebhookEvent,
)
from prbot.models.tracking import (
    MergeReadiness,
    PRTrackingRecord,
    ReactionLabel,
    make_pr_key,
)
from prbot.services.announcement import AnnouncementService, build_announcement_text
from prbot.services.coordination import KeyedExecutor
from prbot.services.pr_cache import PRStateCache
from prbot.services.reaction_client import ReactionClient

logger = logging.getLogger(__name__)


# =============================================================================
# Outcome and delta types
# =============================================================================


class OutcomeStatus:
    ANNOUNCED = "announced"
    APPLIED = "applied"
    PARTIAL = "partial"
    DELETED = "deleted"
    NOOP = "noop"
    UNTRACKED = "untracked"
    FAILED = "failed"


@dataclass
class ReactionDelta:
    """Reactions to add and remove, in the order they are issued."""

    add: List[str] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)


@dataclass
class ReconcileOutcome:
    """What one event did to a PR's tracking record and reactions."""

    key: str
    action: str
    status: str
    detail: str = ""
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    failed_labels: List[str] = field(default_factory=list)
    readiness: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class IdentityResolver(Protocol):
    def resolve_channels_for_teams(self, team_slugs: List[str]) -> List[str]: ...

    def resolve_chat_handle(self, github_username: str) -> Optional[str]: ...


# =============================================================================
# Transition table
# =============================================================================


def synchronize_delta() -> ReactionDelta:
    return ReactionDelta(
        remove=[
            ReactionLabel.APPROVED.value,
            ReactionLabel.READY_TO_MERGE.value,
            ReactionLabel.NEEDS_REVIEW.value,
        ]
    )


def approval_delta(readiness: MergeReadiness) -> ReactionDelta:
    delta = ReactionDelta(
        add=[ReactionLabel.APPROVED.value],
        remove=[ReactionLabel.COMMENTED.value, ReactionLabel.NEEDS_REVIEW.value],
    )
    if readiness is MergeReadiness.READY_TO_MERGE:
        delta.add.append(ReactionLabel.READY_TO_MERGE.value)
        delta.remove.append(ReactionLabel.PARTIAL_APPROVAL.value)
    elif readiness is MergeReadiness.PARTIALLY_APPROVED:
        delta.add.append(ReactionLabel.PARTIAL_APPROVAL.value)
    return delta


def changes_requested_delta() -> ReactionDelta:
    return ReactionDelta(
        add=[ReactionLabel.NEEDS_REVIEW.value],
        remove=[ReactionLabel.READY_TO_MERGE.value, ReactionLabel.APPROVED.value],
    )


def review_comment_delta() -> ReactionDelta:
    return ReactionDelta(add=[ReactionLabel.COMMENTED.value])


def merged_delta() -> ReactionDelta:
    return ReactionDelta(
        add=[ReactionLabel.APPROVED.value, ReactionLabel.MERGED.value],
        remove=[
            ReactionLabel.READY_TO_MERGE.value,
            ReactionLabel.NEEDS_REVIEW.value,
            ReactionLabel.COMMENTED.value,
        ],
    )


def closed_unmerged_delta() -> ReactionDelta:
    return ReactionDelta(
        add=[ReactionLabel.CLOSED.value],
        remove=[
            ReactionLabel.APPROVED.value,
            ReactionLabel.READY_TO_MERGE.value,
            ReactionLabel.NEEDS_REVIEW.value,
            ReactionLabel.COMMENTED.value,
        ],
    )


# =============================================================================
# Engine
# =============================================================================


class ReconciliationEngine:
    """Applies webhook events to PR tracking records under a per-PR lock."""

    def __init__(
        self,
        cache: PRStateCache,
        reactions: ReactionClient,
        guard: KeyedExecutor,
        identity: IdentityResolver,
        announcer: AnnouncementService,
        required_approvals: Callable[[str], int],
    ):
        """
        Args:
            cache: PR tracking record store
            reactions: Idempotent reaction fan-out client
            guard: Key-scoped exclusive execution
            identity: Team/user to Slack channel/user resolver
            announcer: Posts new-PR announcements
            required_approvals: Approval policy lookup by repository full
                name, consulted on every readiness evaluation
        """
        self.cache = cache
        self.reactions = reactions
        self.guard = guard
        self.identity = identity
        self.announcer = announcer
        self.required_approvals = required_approvals

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def dispatch(self, event: WebhookEvent) -> ReconcileOutcome:
        if isinstance(event, PullRequestReviewEvent):
            return await self.handle_review(event)
        if isinstance(event, PullRequestReviewCommentEvent):
            return await self.handle_review_comment(event)
        return await self.handle_pull_request(event)

    async def handle_pull_request(self, event: PullRequestEvent) -> ReconcileOutcome:
        key = make_pr_key(event.repo_id, event.pr_number)
        action = event.action

        if action == PullRequestAction.REVIEW_REQUESTED.value:
            # Channel resolution is a local lookup, done before taking the lock
            teams = self._requested_team_slugs(event)
            try:
                channels = self.identity.resolve_channels_for_teams(teams)
            except Exception as e:
                logger.exception(f"Channel lookup failed for teams {teams}: {e}")
                return self._finish(
                    ReconcileOutcome(key, action, OutcomeStatus.FAILED, str(e))
                )
            if not channels:
                logger.info(
                    f"No Slack channel found for requested reviewer teams {teams} "
                    f"for PR {event.pull_request.html_url}"
                )
                return self._finish(
                    ReconcileOutcome(
                        key, action, OutcomeStatus.NOOP, "no channel mapping"
                    )
                )
            return await self._guarded(
                key, action, lambda: self._on_review_requested(key, event, channels)
            )

        if action == PullRequestAction.SYNCHRONIZE.value:
            return await self._guarded(
                key, action, lambda: self._on_synchronize(key, event)
            )

        if action == PullRequestAction.CLOSED.value:
            action = "merged" if event.pull_request.merged else "closed"
            return await self._guarded(
                key, action, lambda: self._on_closed(key, event, action)
            )

        logger.debug(f"Ignoring pull_request action '{action}' for {key}")
        return self._finish(ReconcileOutcome(key, action, OutcomeStatus.NOOP))

    async def handle_review(self, event: PullRequestReviewEvent) -> ReconcileOutcome:
        key = make_pr_key(event.repo_id, event.pr_number)
        state = event.review.state

        if state not in (
            ReviewState.APPROVED.value,
            ReviewState.CHANGES_REQUESTED.value,
        ):
            logger.debug(f"Ignoring review state '{state}' for {key}")
            return self._finish(
                ReconcileOutcome(key, f"review_{state}", OutcomeStatus.NOOP)
            )

        return await self._guarded(
            key, f"review_{state}", lambda: self._on_review(key, event, state)
        )

    async def handle_review_comment(
        self, event: PullRequestReviewCommentEvent
    ) -> ReconcileOutcome:
        key = make_pr_key(event.repo_id, event.pr_number)
        return await self._guarded(
            key, "review_comment", lambda: self._on_review_comment(key, event)
        )

    # ------------------------------------------------------------------
    # Transitions (run under the PR lock)
    # ------------------------------------------------------------------

    async def _on_review_requested(
        self, key: str, event: PullRequestEvent, channels: List[str]
    ) -> ReconcileOutcome:
        action = PullRequestAction.REVIEW_REQUESTED.value
        record = await self.cache.get(key)

        if record is not None:
            channels = [c for c in channels if c not in record.channels]
            if not channels:
                logger.info(
                    f"PR {event.pull_request.html_url} already tracked in every "
                    f"requested channel. Not posting a new message."
                )
                return ReconcileOutcome(
                    key, action, OutcomeStatus.NOOP, "already tracked"
                )

        repo_full_name = record.repo_full_name if record else event.repo_full_name
        text = build_announcement_text(
            pr_url=event.pull_request.html_url,
            pr_number=event.pr_number,
            pr_title=event.pull_request.title,
            creator_login=event.pull_request.user.login,
            repo_full_name=repo_full_name,
            creator_handle=self._chat_handle(event.pull_request.user.login),
            required_approvals=self.required_approvals(repo_full_name),
        )
        locations = await self.announcer.announce(channels, text)
        if not locations:
            return ReconcileOutcome(
                key, action, OutcomeStatus.FAILED, "announcement failed in every channel"
            )

        failed: List[str] = []
        if record is None:
            record = PRTrackingRecord(messages=locations, repo_full_name=repo_full_name)
        else:
            added = record.add_messages(locations)
            # Keep the mirror true for every message, including the new ones
            for label in sorted(record.applied_reactions):
                if not await self.reactions.apply(added, label):
                    failed.append(label)
            # A label missing from a new message is no longer on every message
            record.applied_reactions.difference_update(failed)
            if failed:
                logger.warning(
                    f"Could not replay {failed} onto new announcements for {key}"
                )

        await self.cache.set(key, record)
        logger.info(
            f"Tracking PR {event.pull_request.html_url} in "
            f"{[m.channel for m in record.messages]}"
        )
        return ReconcileOutcome(
            key,
            action,
            OutcomeStatus.ANNOUNCED,
            f"announced to {[loc.channel for loc in locations]}",
            failed_labels=failed,
        )

    async def _on_synchronize(
        self, key: str, event: PullRequestEvent
    ) -> ReconcileOutcome:
        action = PullRequestAction.SYNCHRONIZE.value
        record = await self.cache.get(key)
        if record is None:
            return self._untracked(key, action, event.pull_request.html_url)

        record.reset_reviews()
        outcome = await self._apply_delta(key, action, record, synchronize_delta())
        await self.cache.set(key, record)
        logger.info(
            f"PR {event.pull_request.html_url} synchronized. Approvals/Reviews reset."
        )
        return outcome

    async def _on_review(
        self, key: str, event: PullRequestReviewEvent, state: str
    ) -> ReconcileOutcome:
        action = f"review_{state}"
        record = await self.cache.get(key)
        if record is None:
            return self._untracked(key, action, event.pull_request.html_url)

        reviewer = event.review.user.login
        if state == ReviewState.APPROVED.value:
            record.record_approval(reviewer)
            readiness = record.readiness(
                self.required_approvals(record.repo_full_name)
            )
            delta = approval_delta(readiness)
        else:
            record.record_changes_requested(reviewer)
            readiness = record.readiness(
                self.required_approvals(record.repo_full_name)
            )
            delta = changes_requested_delta()

        outcome = await self._apply_delta(key, action, record, delta)
        outcome.readiness = readiness.value
        await self.cache.set(key, record)
        logger.info(
            f"PR {event.pull_request.html_url} {state.replace('_', ' ')} by "
            f"{reviewer} ({readiness.value}). Slack message updated."
        )
        return outcome

    async def _on_review_comment(
        self, key: str, event: PullRequestReviewCommentEvent
    ) -> ReconcileOutcome:
        action = "review_comment"
        record = await self.cache.get(key)
        if record is None:
            return self._untracked(key, action, event.pull_request.html_url)

        outcome = await self._apply_delta(key, action, record, review_comment_delta())
        if outcome.added:
            await self.cache.set(key, record)
        logger.info(f"Code comment on PR {event.pull_request.html_url}.")
        return outcome

    async def _on_closed(
        self, key: str, event: PullRequestEvent, action: str
    ) -> ReconcileOutcome:
        record = await self.cache.get(key)
        if record is None:
            return self._untracked(key, action, event.pull_request.html_url)

        delta = merged_delta() if action == "merged" else closed_unmerged_delta()
        outcome = await self._apply_delta(key, action, record, delta)
        # The PR is finished; nothing will retry a failed terminal reaction
        await self.cache.delete(key)
        outcome.status = OutcomeStatus.DELETED
        logger.info(
            f"PR {event.pull_request.html_url} {action}. "
            f"Status reflected with emojis; tracking record deleted."
        )
        return outcome

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _apply_delta(
        self, key: str, action: str, record: PRTrackingRecord, delta: ReactionDelta
    ) -> ReconcileOutcome:
        """Issue the reactions the mirror says are missing and update the mirror.

        A label is recorded only when every message confirms it, so a failed
        label is re-attempted by the next event whose delta includes it.
        """
        outcome = ReconcileOutcome(key, action, OutcomeStatus.APPLIED)

        for label in delta.add:
            if label in record.applied_reactions:
                reaction_skipped_total.labels("add").inc()
                continue
            if await self.reactions.apply(record.messages, label):
                record.applied_reactions.add(label)
                outcome.added.append(label)
            else:
                outcome.failed_labels.append(label)

        for label in delta.remove:
            if label not in record.applied_reactions:
                reaction_skipped_total.labels("remove").inc()
                continue
            if await self.reactions.unapply(record.messages, label):
                record.applied_reactions.discard(label)
                outcome.removed.append(label)
            else:
                outcome.failed_labels.append(label)

        if outcome.failed_labels:
            outcome.status = OutcomeStatus.PARTIAL
        return outcome

    async def _guarded(
        self,
        key: str,
        action: str,
        work: Callable[[], Awaitable[ReconcileOutcome]],
    ) -> ReconcileOutcome:
        started = time.perf_counter()
        try:
            async with self.guard.hold(key):
                outcome = await work()
        except Exception as e:
            logger.exception(f"Reconciliation of '{action}' for {key} failed: {e}")
            outcome = ReconcileOutcome(key, action, OutcomeStatus.FAILED, str(e))
        reconcile_duration_seconds.observe(time.perf_counter() - started)
        return self._finish(outcome)

    def _finish(self, outcome: ReconcileOutcome) -> ReconcileOutcome:
        reconcile_outcomes_total.labels(outcome.status).inc()
        return outcome

    def _untracked(self, key: str, action: str, pr_url: str) -> ReconcileOutcome:
        logger.info(f"PR {pr_url} ({action}) is not tracked; nothing to update")
        return ReconcileOutcome(key, action, OutcomeStatus.UNTRACKED)

    def _chat_handle(self, github_username: str) -> Optional[str]:
        try:
            return self.identity.resolve_chat_handle(github_username)
        except Exception as e:
            logger.warning(f"Slack handle lookup failed for {github_username}: {e}")
            return None

    @staticmethod
    def _requested_team_slugs(event: PullRequestEvent) -> List[str]:
        slugs = [team.slug for team in event.pull_request.requested_teams]
        if event.requested_team and event.requested_team.slug not in slugs:
            slugs.append(event.requested_team.slug)
        return slugs
