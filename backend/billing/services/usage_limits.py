"""Plan-derived usage quotas for websites and AI calls."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.db.models import F
from django.utils import timezone

from billing.models import Plan, Subscription, UsageCounter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageLimitResult:
    allowed: bool
    used: int
    limit: Optional[int]
    remaining: Optional[int]
    unlimited: bool = False

    def as_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "used": self.used,
            "limit": -1 if self.unlimited else self.limit,
            "remaining": -1 if self.unlimited else self.remaining,
            "unlimited": self.unlimited,
        }


def _active_plan(account) -> Optional[Plan]:
    subscription = (
        Subscription.objects.select_related("plan")
        .filter(account_id=account.pk, status=Subscription.Status.ACTIVE)
        .first()
    )
    return subscription.plan if subscription else None


def _evaluate(limit: Optional[int], used: int, *, has_plan: bool) -> UsageLimitResult:
    if not has_plan:
        return UsageLimitResult(allowed=False, used=used, limit=0, remaining=0)
    if limit is None:
        return UsageLimitResult(allowed=True, used=used, limit=None, remaining=None, unlimited=True)
    return UsageLimitResult(
        allowed=used < limit,
        used=used,
        limit=limit,
        remaining=max(0, limit - used),
    )


def count_active_sites(account) -> int:
    from websites.models import Website

    return Website.objects.filter(owner_id=account.pk, is_active=True).count()


def get_ai_usage(account) -> int:
    return (
        UsageCounter.objects.filter(account_id=account.pk).values_list("ai_calls", flat=True).first() or 0
    )


def check_site_limit(account) -> UsageLimitResult:
    plan = _active_plan(account)
    used = count_active_sites(account)
    if plan is None:
        logger.warning("Site limit check for account %s found no active subscription.", account.pk)
    return _evaluate(plan.site_limit if plan else None, used, has_plan=plan is not None)


def check_ai_call_limit(account) -> UsageLimitResult:
    plan = _active_plan(account)
    used = get_ai_usage(account)
    if plan is None:
        logger.warning("AI call limit check for account %s found no active subscription.", account.pk)
    return _evaluate(plan.ai_call_limit if plan else None, used, has_plan=plan is not None)


def increment_ai_usage(account) -> int:
    """Record one successful AI call and return the new running total."""

    counter, _ = UsageCounter.objects.get_or_create(account_id=account.pk)
    UsageCounter.objects.filter(pk=counter.pk).update(ai_calls=F("ai_calls") + 1, updated_at=timezone.now())
    counter.refresh_from_db(fields=["ai_calls"])
    return counter.ai_calls


def reset_ai_usage(account, *, now=None) -> None:
    """Zero the running AI counter at a billing period rollover."""

    now = now or timezone.now()
    updated = UsageCounter.objects.filter(account_id=account.pk).update(ai_calls=0, reset_at=now, updated_at=now)
    if not updated:
        UsageCounter.objects.create(account_id=account.pk, ai_calls=0, reset_at=now)


__all__ = [
    "UsageLimitResult",
    "count_active_sites",
    "get_ai_usage",
    "check_site_limit",
    "check_ai_call_limit",
    "increment_ai_usage",
    "reset_ai_usage",
]
