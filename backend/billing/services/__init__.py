"""Expose commonly used billing services."""

from .reconciliation import ReconciliationResult, handle_verified_event
from .subscription_lifecycle import (
    TransitionResult,
    assign_plan,
    cancel_subscription,
    create_subscription,
    renew_subscription,
)
from .usage_limits import (
    UsageLimitResult,
    check_ai_call_limit,
    check_site_limit,
    increment_ai_usage,
    reset_ai_usage,
)
