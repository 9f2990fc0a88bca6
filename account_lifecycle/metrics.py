"""Prometheus instruments for lifecycle activity."""

from __future__ import annotations

from prometheus_client import Counter

LIFECYCLE_TRANSITIONS = Counter(
    "account_lifecycle_transitions_total",
    "Completed account lifecycle operations.",
    ["operation"],
)

NOTIFICATION_FAILURES = Counter(
    "account_notification_failures_total",
    "Notifications that could not be dispatched after a committed transition.",
    ["template"],
)
