"""Prometheus metrics helpers for billing domain."""
from __future__ import annotations

from prometheus_client import Counter

SUBSCRIPTION_TRANSITION_COUNT = Counter(
    "billing_subscription_transition_total",
    "Number of committed subscription lifecycle transitions",
    labelnames=("action",),
)

RECONCILIATION_COUNT = Counter(
    "billing_reconciliation_total",
    "Outcomes of applying verified gateway events",
    labelnames=("outcome",),
)

RENEWAL_COUNT = Counter(
    "billing_renewal_total",
    "Per-subscription outcomes of the auto-renewal sweep",
    labelnames=("outcome",),
)

PAYMENT_VERIFICATION_FAILURE_COUNT = Counter(
    "billing_payment_verification_failure_total",
    "Paid transitions rejected because the gateway charge was not confirmed",
    labelnames=("reason",),
)
