"""Prometheus metrics for webhook intake and PR status reconciliation."""

from prometheus_client import Counter, Histogram

webhook_events_total = Counter(
    "prbot_webhook_events_total",
    "GitHub webhook deliveries accepted, by event type and action",
    ["event", "action"],
)

reaction_operations_total = Counter(
    "prbot_reaction_operations_total",
    "Reaction operations per message location, by outcome",
    # result: success, idempotent, failed
    ["operation", "result"],
)

reaction_skipped_total = Counter(
    "prbot_reaction_skipped_total",
    "Reaction operations skipped because the local mirror already matched",
    ["operation"],
)

reconcile_outcomes_total = Counter(
    "prbot_reconcile_outcomes_total",
    "Reconciliation results by status",
    ["status"],
)

reconcile_duration_seconds = Histogram(
    "prbot_reconcile_duration_seconds",
    "Time spent reconciling one event, including the wait for the PR lock",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

announcements_total = Counter(
    "prbot_announcements_total",
    "Announcement posts per channel, by outcome",
    ["result"],
)
