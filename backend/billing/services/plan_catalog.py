"""Read helpers over the plan catalog."""
from __future__ import annotations

import logging
from typing import Optional

from django.db.models import QuerySet

from billing.models import Plan

logger = logging.getLogger(__name__)


class PlanCatalogError(RuntimeError):
    """Base error for plan catalog lookups."""


class PlanNotFound(PlanCatalogError):
    """Raised when a plan id does not resolve to an active plan."""


class BillingConfigurationError(PlanCatalogError):
    """Raised when the catalog lacks a plan the engine cannot run without."""


def list_active_plans() -> QuerySet:
    return Plan.objects.filter(is_active=True).order_by("price", "name")


def get_active_plan(plan_id) -> Plan:
    """Return the active plan identified by ``plan_id`` or raise ``PlanNotFound``."""

    try:
        return Plan.objects.get(pk=plan_id, is_active=True)
    except (Plan.DoesNotExist, ValueError, TypeError) as exc:
        raise PlanNotFound(f"Plan '{plan_id}' does not exist or is not active.") from exc


def get_free_plan() -> Plan:
    """Return the designated free plan.

    The cheapest active plan of type ``free`` wins when several exist.
    """

    plan = (
        Plan.objects.filter(is_active=True, type=Plan.PlanType.FREE)
        .order_by("price", "created_at", "pk")
        .first()
    )
    if plan is None:
        logger.error("No active free plan is configured in the catalog.")
        raise BillingConfigurationError("No active free plan is configured.")
    return plan


def deactivate_plan(plan: Plan) -> Plan:
    if plan.is_active:
        plan.is_active = False
        plan.save(update_fields=["is_active", "updated_at"])
        logger.info("Deactivated plan %s", plan.name)
    return plan


def describe_limit(value: Optional[int]) -> int:
    """Render a ceiling for API payloads, ``-1`` meaning unlimited."""

    return -1 if value is None else value


__all__ = [
    "PlanCatalogError",
    "PlanNotFound",
    "BillingConfigurationError",
    "list_active_plans",
    "get_active_plan",
    "get_free_plan",
    "deactivate_plan",
    "describe_limit",
]
