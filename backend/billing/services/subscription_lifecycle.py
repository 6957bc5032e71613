"""Subscription lifecycle orchestration: create, upgrade, downgrade, cancel and renew."""
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError, transaction
from django.db.models import Count, Sum
from django.utils import timezone

from billing.constants import RECENT_HISTORY_LIMIT, RENEWAL_ACTOR, SyntheticReason
from billing.models import PaymentTransaction, Plan, Subscription, SubscriptionAuditLog
from billing.observability.logging import log_billing_event
from billing.observability.metrics import PAYMENT_VERIFICATION_FAILURE_COUNT, SUBSCRIPTION_TRANSITION_COUNT
from billing.references import InvalidPaymentReference, PaymentReference
from billing.services.payment_gateway import get_charge_intent
from billing.services.plan_catalog import BillingConfigurationError, PlanNotFound, get_active_plan, get_free_plan
from billing.services.usage_limits import reset_ai_usage

logger = logging.getLogger(__name__)

User = get_user_model()

Action = SubscriptionAuditLog.Action
PaymentStatus = SubscriptionAuditLog.PaymentStatus


class SubscriptionLifecycleError(RuntimeError):
    """Base error for subscription lifecycle operations."""


class NoActiveSubscription(SubscriptionLifecycleError):
    """Raised when an operation needs an active subscription and none exists."""


class AlreadyOnFreePlan(SubscriptionLifecycleError):
    """Raised when cancelling an account that is already on the free plan."""


class AtomicWriteFailure(SubscriptionLifecycleError):
    """Raised when the combined ledger, audit and transaction write was rolled back."""


class PaymentVerificationError(SubscriptionLifecycleError):
    """Raised when the gateway does not confirm the charge backing a paid transition."""


class DuplicatePaymentReference(SubscriptionLifecycleError):
    """Raised when a gateway reference has already been applied to a transition."""


class UnauthorizedPlanAssignment(SubscriptionLifecycleError):
    """Raised when a non-staff user reaches the administrative assignment path."""


@dataclass(frozen=True)
class TransitionResult:
    subscription: Subscription
    action: str
    previous: Optional[Subscription] = None
    audit_entries: Tuple[SubscriptionAuditLog, ...] = ()
    transaction: Optional[PaymentTransaction] = None


@dataclass(frozen=True)
class SubscriptionDetails:
    subscription: Optional[Subscription]
    recent_audit_entries: List[SubscriptionAuditLog]
    recent_transactions: List[PaymentTransaction]


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the length of the target month."""

    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_period_end(plan: Plan, start: date) -> Optional[date]:
    if plan.type == Plan.PlanType.MONTHLY:
        return add_months(start, 1)
    if plan.type == Plan.PlanType.YEARLY:
        return add_months(start, 12)
    return None


def classify_transition(current_plan: Optional[Plan], new_plan: Plan) -> str:
    """Classify a plan change by comparing prices.

    Leaving the free plan counts as a fresh subscription, as does a change
    between two plans of equal price.
    """

    if current_plan is None or current_plan.is_free:
        return Action.CREATED
    if new_plan.price > current_plan.price:
        return Action.UPGRADED
    if new_plan.price < current_plan.price:
        return Action.DOWNGRADED
    return Action.CREATED


def get_active_subscription(account) -> Optional[Subscription]:
    return (
        Subscription.objects.select_related("plan")
        .filter(account_id=account.pk, status=Subscription.Status.ACTIVE)
        .first()
    )


def create_subscription(
    account,
    plan_id,
    payment_reference: Optional[str] = None,
    *,
    actor: Optional[str] = None,
    request_id: Optional[str] = None,
) -> TransitionResult:
    """Move ``account`` onto ``plan_id``, ending its current subscription."""

    plan = get_active_plan(plan_id)
    actor = actor or f"user:{account.pk}"

    if plan.is_free:
        reference = PaymentReference.synthetic(SyntheticReason.FREE_PLAN)
        audit_status = PaymentStatus.COMPLETED
    else:
        reference = _resolve_caller_reference(payment_reference)
        if getattr(settings, "BILLING_VERIFY_GATEWAY_PAYMENTS", True):
            if reference is None:
                PAYMENT_VERIFICATION_FAILURE_COUNT.labels(reason="missing_reference").inc()
                raise PaymentVerificationError("A gateway payment reference is required for paid plans.")
            _verify_gateway_charge(account, plan, reference)
            audit_status = PaymentStatus.COMPLETED
        else:
            reference = reference or PaymentReference.synthetic(SyntheticReason.TXN)
            audit_status = PaymentStatus.PENDING

    result = _run_transition(
        account,
        plan,
        reference=reference,
        audit_status=audit_status,
        actor=actor,
        request_id=request_id,
        details={"source": "subscribe"},
    )
    _report_transition(result, account=account, actor=actor, request_id=request_id)
    return result


def assign_plan(
    account,
    plan_id,
    *,
    admin_user,
    payment_reference: Optional[str] = None,
    reason: str = "",
    request_id: Optional[str] = None,
) -> TransitionResult:
    """Administrative plan assignment; skips gateway verification and settles immediately."""

    if admin_user is None or not getattr(admin_user, "is_staff", False):
        raise UnauthorizedPlanAssignment("Only staff members may assign plans.")

    plan = get_active_plan(plan_id)
    actor = f"admin:{admin_user.pk}"
    reference = _resolve_caller_reference(payment_reference) or PaymentReference.administrative(admin_user.pk)

    result = _run_transition(
        account,
        plan,
        reference=reference,
        audit_status=PaymentStatus.COMPLETED,
        actor=actor,
        request_id=request_id,
        details={"source": "admin_assignment", "reason": reason or ""},
    )
    _report_transition(result, account=account, actor=actor, request_id=request_id)
    return result


def place_on_free_plan(account, *, actor: str, request_id: Optional[str] = None) -> TransitionResult:
    """Put ``account`` on the designated free plan (used at signup)."""

    plan = get_free_plan()
    result = _run_transition(
        account,
        plan,
        reference=PaymentReference.synthetic(SyntheticReason.FREE_PLAN),
        audit_status=PaymentStatus.COMPLETED,
        actor=actor,
        request_id=request_id,
        details={"source": "free_plan_placement"},
    )
    _report_transition(result, account=account, actor=actor, request_id=request_id)
    return result


def cancel_subscription(account, *, actor: Optional[str] = None, request_id: Optional[str] = None) -> TransitionResult:
    """End the paid subscription and fall back to the free plan in one unit."""

    free_plan = get_free_plan()
    actor = actor or f"user:{account.pk}"

    try:
        with transaction.atomic():
            _lock_account(account.pk)
            current = _lock_active_subscription(account.pk)
            if current is None:
                raise NoActiveSubscription("Account has no active subscription to cancel.")
            if current.plan.is_free:
                raise AlreadyOnFreePlan("Account is already on the free plan.")

            now = timezone.now()
            _end_subscription(current, now=now, end_date=timezone.localdate(now))

            cancel_reference = PaymentReference.synthetic(SyntheticReason.CANCELLED, moment=now)
            cancelled_entry = _record_audit(
                account_id=account.pk,
                plan=current.plan,
                subscription=current,
                action=Action.CANCELLED,
                payment_status=PaymentStatus.COMPLETED,
                amount=Decimal("0"),
                reference=cancel_reference,
                actor=actor,
                request_id=request_id,
                details={"source": "cancel"},
            )

            free_result = _apply_transition(
                account.pk,
                None,
                free_plan,
                reference=PaymentReference.synthetic(SyntheticReason.FREE_PLAN, moment=now),
                audit_status=PaymentStatus.COMPLETED,
                actor=actor,
                request_id=request_id,
                details={"source": "cancel", "cancelled_plan": current.plan.name},
                now=now,
            )
    except DatabaseError as exc:
        logger.exception("Cancellation for account %s rolled back.", account.pk)
        raise AtomicWriteFailure(str(exc)) from exc

    result = TransitionResult(
        subscription=free_result.subscription,
        action=Action.CANCELLED,
        previous=current,
        audit_entries=(cancelled_entry, *free_result.audit_entries),
    )
    _report_transition(result, account=account, actor=actor, request_id=request_id)
    return result


def renew_subscription(subscription_id: int, *, actor: str = RENEWAL_ACTOR) -> TransitionResult:
    """Start a fresh billing period for an expired auto-renewing subscription.

    Locks are taken with ``nowait`` so a row held by a concurrent transition
    fails this renewal instead of blocking the sweep.
    """

    account_id = (
        Subscription.objects.filter(pk=subscription_id).values_list("account_id", flat=True).first()
    )
    if account_id is None:
        raise NoActiveSubscription(f"Subscription {subscription_id} does not exist.")

    transaction_status = getattr(settings, "BILLING_RENEWAL_TRANSACTION_STATUS", PaymentTransaction.Status.COMPLETED)
    if transaction_status not in PaymentTransaction.Status.values:
        raise BillingConfigurationError(f"Invalid BILLING_RENEWAL_TRANSACTION_STATUS '{transaction_status}'.")

    try:
        with transaction.atomic():
            User.objects.select_for_update(nowait=True).filter(pk=account_id).first()
            subscription = (
                Subscription.objects.select_for_update(nowait=True)
                .select_related("plan", "account")
                .filter(pk=subscription_id)
                .first()
            )
            now = timezone.now()
            today = timezone.localdate(now)
            if (
                subscription is None
                or not subscription.is_active
                or not subscription.auto_renew
                or subscription.end_date is None
                or subscription.end_date > today
            ):
                raise NoActiveSubscription(f"Subscription {subscription_id} is not due for renewal.")

            plan = subscription.plan
            _end_subscription(subscription, now=now)

            reference = PaymentReference.synthetic(SyntheticReason.AUTO_RENEW, moment=now)
            renewed = _open_subscription(account_id, plan, start=today, reference=reference)
            entry = _record_audit(
                account_id=account_id,
                plan=plan,
                subscription=renewed,
                action=Action.RENEWED,
                payment_status=transaction_status,
                amount=plan.price,
                reference=reference,
                actor=actor,
                request_id=None,
                details={"renewed_subscription": subscription.pk, "previous_end_date": subscription.end_date.isoformat()},
            )
            payment = _record_transaction(
                account_id=account_id,
                plan=plan,
                subscription=renewed,
                reference=reference,
                status=transaction_status,
            )
            reset_ai_usage(subscription.account, now=now)
    except DatabaseError as exc:
        logger.warning("Renewal of subscription %s rolled back: %s", subscription_id, exc)
        raise AtomicWriteFailure(str(exc)) from exc

    result = TransitionResult(
        subscription=renewed,
        action=Action.RENEWED,
        previous=subscription,
        audit_entries=(entry,),
        transaction=payment,
    )
    _report_transition(result, account=subscription.account, actor=actor, request_id=None)
    return result


def get_subscription_details(account, *, limit: int = RECENT_HISTORY_LIMIT) -> SubscriptionDetails:
    return SubscriptionDetails(
        subscription=get_active_subscription(account),
        recent_audit_entries=list(
            SubscriptionAuditLog.objects.select_related("plan").filter(account_id=account.pk)[:limit]
        ),
        recent_transactions=list(
            PaymentTransaction.objects.select_related("plan").filter(account_id=account.pk)[:limit]
        ),
    )


def get_subscription_stats(*, recent_days: int = 30) -> Dict[str, Any]:
    """Aggregate active subscriptions per plan type for the admin console."""

    active = Subscription.objects.filter(status=Subscription.Status.ACTIVE)
    by_type = (
        active.values("plan__type")
        .annotate(count=Count("id"), revenue=Sum("plan__price"))
        .order_by("plan__type")
    )
    cutoff = timezone.now() - timedelta(days=recent_days)

    return {
        "total_active": active.count(),
        "by_plan_type": [
            {
                "plan_type": row["plan__type"],
                "count": row["count"],
                "revenue": row["revenue"] or Decimal("0.00"),
            }
            for row in by_type
        ],
        "recent_subscriptions": Subscription.objects.filter(created_at__gte=cutoff).count(),
        "recent_days": recent_days,
    }


def _resolve_caller_reference(payment_reference: Optional[str]) -> Optional[PaymentReference]:
    if payment_reference is None or not str(payment_reference).strip():
        return None
    try:
        return PaymentReference.gateway(str(payment_reference))
    except InvalidPaymentReference as exc:
        raise PaymentVerificationError(str(exc)) from exc


def _verify_gateway_charge(account, plan: Plan, reference: PaymentReference) -> None:
    """Check the intent settled the plan price and was created for this account and plan."""

    intent = get_charge_intent(reference.value)

    if not intent.succeeded:
        PAYMENT_VERIFICATION_FAILURE_COUNT.labels(reason="not_succeeded").inc()
        raise PaymentVerificationError(
            f"Charge intent {reference.value} has status '{intent.status}', expected 'succeeded'."
        )
    if intent.amount != plan.price or intent.currency != plan.currency.lower():
        PAYMENT_VERIFICATION_FAILURE_COUNT.labels(reason="amount_mismatch").inc()
        raise PaymentVerificationError(
            f"Charge intent {reference.value} is for {intent.amount} {intent.currency}, "
            f"plan '{plan.name}' costs {plan.price} {plan.currency}."
        )
    metadata = intent.metadata or {}
    if str(metadata.get("account_id", "")) != str(account.pk) or str(metadata.get("plan_id", "")) != str(plan.pk):
        PAYMENT_VERIFICATION_FAILURE_COUNT.labels(reason="metadata_mismatch").inc()
        raise PaymentVerificationError(
            f"Charge intent {reference.value} was not created for this account and plan."
        )


def _run_transition(
    account,
    plan: Plan,
    *,
    reference: PaymentReference,
    audit_status: str,
    actor: str,
    request_id: Optional[str],
    details: Dict[str, Any],
) -> TransitionResult:
    try:
        with transaction.atomic():
            _lock_account(account.pk)
            current = _lock_active_subscription(account.pk)
            return _apply_transition(
                account.pk,
                current,
                plan,
                reference=reference,
                audit_status=audit_status,
                actor=actor,
                request_id=request_id,
                details=details,
            )
    except DatabaseError as exc:
        logger.exception("Plan transition for account %s to plan %s rolled back.", account.pk, plan.pk)
        raise AtomicWriteFailure(str(exc)) from exc


def _apply_transition(
    account_id: int,
    current: Optional[Subscription],
    plan: Plan,
    *,
    reference: PaymentReference,
    audit_status: str,
    actor: str,
    request_id: Optional[str],
    details: Dict[str, Any],
    now=None,
) -> TransitionResult:
    """Write the ledger, audit and transaction rows; callers hold the account lock."""

    if reference.is_gateway and PaymentTransaction.objects.filter(transaction_reference=reference.value).exists():
        raise DuplicatePaymentReference(f"Payment reference {reference.value} has already been applied.")

    now = now or timezone.now()
    today = timezone.localdate(now)
    action = classify_transition(current.plan if current else None, plan)

    if current is not None:
        _end_subscription(current, now=now, end_date=today)

    subscription = _open_subscription(account_id, plan, start=today, reference=reference)

    audit_details = dict(details)
    if current is not None:
        audit_details["previous_plan"] = current.plan.name
        audit_details["previous_subscription"] = current.pk

    entry = _record_audit(
        account_id=account_id,
        plan=plan,
        subscription=subscription,
        action=action,
        payment_status=audit_status,
        amount=plan.price,
        reference=reference,
        actor=actor,
        request_id=request_id,
        details=audit_details,
    )

    payment = None
    if not plan.is_free:
        payment = _record_transaction(
            account_id=account_id,
            plan=plan,
            subscription=subscription,
            reference=reference,
            status=PaymentTransaction.Status.COMPLETED,
        )

    return TransitionResult(
        subscription=subscription,
        action=action,
        previous=current,
        audit_entries=(entry,),
        transaction=payment,
    )


def _lock_account(account_id: int) -> None:
    User.objects.select_for_update().get(pk=account_id)


def _lock_active_subscription(account_id: int) -> Optional[Subscription]:
    return (
        Subscription.objects.select_for_update()
        .select_related("plan")
        .filter(account_id=account_id, status=Subscription.Status.ACTIVE)
        .first()
    )


def _end_subscription(subscription: Subscription, *, now, end_date: Optional[date] = None) -> None:
    subscription.status = Subscription.Status.ENDED
    subscription.auto_renew = False
    subscription.ended_at = now
    updates = ["status", "auto_renew", "ended_at", "updated_at"]
    if end_date is not None:
        subscription.end_date = end_date
        updates.append("end_date")
    subscription.save(update_fields=updates)


def _open_subscription(account_id: int, plan: Plan, *, start: date, reference: PaymentReference) -> Subscription:
    return Subscription.objects.create(
        account_id=account_id,
        plan=plan,
        status=Subscription.Status.ACTIVE,
        start_date=start,
        end_date=compute_period_end(plan, start),
        auto_renew=not plan.is_free,
        payment_reference=reference.value,
        reference_kind=reference.kind,
    )


def _record_audit(
    *,
    account_id: int,
    plan: Plan,
    subscription: Optional[Subscription],
    action: str,
    payment_status: str,
    amount: Decimal,
    reference: PaymentReference,
    actor: str,
    request_id: Optional[str],
    details: Dict[str, Any],
) -> SubscriptionAuditLog:
    return SubscriptionAuditLog.objects.create(
        account_id=account_id,
        plan=plan,
        subscription=subscription,
        action=action,
        payment_status=payment_status,
        amount=amount,
        currency=plan.currency,
        payment_reference=reference.value,
        reference_kind=reference.kind,
        actor=actor or "",
        request_id=request_id or "",
        details=details,
    )


def _record_transaction(
    *,
    account_id: int,
    plan: Plan,
    subscription: Subscription,
    reference: PaymentReference,
    status: str,
) -> PaymentTransaction:
    return PaymentTransaction.objects.create(
        account_id=account_id,
        plan=plan,
        subscription=subscription,
        amount=plan.price,
        currency=plan.currency,
        status=status,
        transaction_reference=reference.value,
        reference_kind=reference.kind,
    )


def _report_transition(result: TransitionResult, *, account, actor: str, request_id: Optional[str]) -> None:
    SUBSCRIPTION_TRANSITION_COUNT.labels(action=result.action).inc()
    log_billing_event(
        message=f"billing.subscription.{result.action}",
        request_id=request_id,
        account_id=account.pk,
        actor=actor,
        extra={
            "plan": result.subscription.plan.name,
            "subscription_id": result.subscription.pk,
            "previous_subscription_id": result.previous.pk if result.previous else None,
            "payment_reference": result.subscription.payment_reference,
        },
    )


__all__ = [
    "SubscriptionLifecycleError",
    "NoActiveSubscription",
    "AlreadyOnFreePlan",
    "AtomicWriteFailure",
    "PaymentVerificationError",
    "DuplicatePaymentReference",
    "UnauthorizedPlanAssignment",
    "PlanNotFound",
    "BillingConfigurationError",
    "TransitionResult",
    "SubscriptionDetails",
    "add_months",
    "compute_period_end",
    "classify_transition",
    "get_active_subscription",
    "create_subscription",
    "assign_plan",
    "place_on_free_plan",
    "cancel_subscription",
    "renew_subscription",
    "get_subscription_details",
    "get_subscription_stats",
]
