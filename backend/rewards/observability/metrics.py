"""Prometheus metrics helpers for the reward ledger."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

REWARDS_REQUEST_COUNT = Counter(
    "rewards_request_total",
    "Number of reward ledger API requests",
    labelnames=("endpoint", "method", "status"),
)

REWARDS_REQUEST_LATENCY = Histogram(
    "rewards_request_duration_seconds",
    "Latency of reward ledger API requests",
    labelnames=("endpoint", "method"),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

REDEMPTION_OUTCOME_COUNT = Counter(
    "rewards_redemption_outcome_total",
    "Redemption outcomes by status and stage/reason",
    labelnames=("status", "detail"),
)

REDEMPTION_RESUMED_COUNT = Counter(
    "rewards_redemption_resumed_total",
    "Redemptions resumed from a pending record instead of debiting again",
)

SUBSCRIPTION_CALL_LATENCY = Histogram(
    "rewards_subscription_call_duration_seconds",
    "Latency of subscription service extension calls",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

STALE_REDEMPTION_COUNT = Counter(
    "rewards_stale_redemption_total",
    "Pending redemptions flagged for manual reconciliation",
)
