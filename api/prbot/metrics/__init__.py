"""Prometheus metrics for the PR Reaction Bot.

Usage:
    from prbot.metrics.reconciliation_metrics import reaction_operations_total
"""

from prbot.metrics import reconciliation_metrics

__all__ = ["reconciliation_metrics"]
