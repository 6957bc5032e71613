"""Apply verified gateway payment events to transactions and audit entries.

Reconciliation only ever sets statuses to the value an event dictates. It never
creates or removes rows and never revisits which plan change happened, so the
same event can be applied any number of times. When events for one reference
arrive out of order, the last one applied wins.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.db import transaction

from billing.constants import FAILED_EVENT_TYPES, SUCCEEDED_EVENT_TYPES, ReferenceKind
from billing.models import PaymentTransaction, SubscriptionAuditLog
from billing.observability.logging import log_billing_event
from billing.observability.metrics import RECONCILIATION_COUNT

logger = logging.getLogger(__name__)


class ReconciliationKeyNotFound(LookupError):
    """An event's reference matches no recorded payment transaction."""


@dataclass(frozen=True)
class ReconciliationResult:
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"
    NOT_FOUND = "not_found"

    status: str
    reference: Optional[str] = None
    target_status: Optional[str] = None
    transaction_updated: bool = False
    audit_entries_updated: int = 0
    account_id: Optional[int] = None
    detail: Optional[str] = None


def resolve_target_status(event_type: str) -> Optional[str]:
    if event_type in SUCCEEDED_EVENT_TYPES:
        return PaymentTransaction.Status.COMPLETED
    if event_type in FAILED_EVENT_TYPES:
        return PaymentTransaction.Status.FAILED
    return None


def extract_reference(event: Dict[str, Any]) -> Optional[str]:
    """Return the charge intent id an event concerns."""

    event_type = event.get("type") or ""
    data_object = ((event.get("data") or {}).get("object")) or {}
    if event_type.startswith("charge."):
        reference = data_object.get("payment_intent")
    else:
        reference = data_object.get("id")
    if isinstance(reference, dict):
        reference = reference.get("id")
    return str(reference) if reference else None


def handle_verified_event(event: Dict[str, Any]) -> ReconciliationResult:
    """Settle the payment status keyed by the event's charge reference."""

    event_type = event.get("type") or ""
    target_status = resolve_target_status(event_type)
    if target_status is None:
        logger.info("Ignoring unhandled gateway event type %s (%s).", event_type, event.get("id"))
        RECONCILIATION_COUNT.labels(outcome=ReconciliationResult.IGNORED).inc()
        return ReconciliationResult(status=ReconciliationResult.IGNORED, detail=f"Unhandled event type {event_type}")

    reference = extract_reference(event)
    if not reference:
        logger.info("Ignoring gateway event %s without a charge reference.", event.get("id"))
        RECONCILIATION_COUNT.labels(outcome=ReconciliationResult.IGNORED).inc()
        return ReconciliationResult(
            status=ReconciliationResult.IGNORED,
            reference=reference,
            detail="Event carries no charge reference",
        )

    try:
        result = _apply_status(reference, target_status)
    except ReconciliationKeyNotFound as exc:
        logger.warning("Reconciliation key not found for event %s: %s", event.get("id"), exc)
        RECONCILIATION_COUNT.labels(outcome=ReconciliationResult.NOT_FOUND).inc()
        return ReconciliationResult(
            status=ReconciliationResult.NOT_FOUND,
            reference=reference,
            target_status=target_status,
            detail=str(exc),
        )

    RECONCILIATION_COUNT.labels(outcome=result.status).inc()
    log_billing_event(
        message="billing.payment.reconciled",
        account_id=result.account_id,
        actor="gateway.webhook",
        extra={
            "event_id": event.get("id"),
            "event_type": event_type,
            "reference": reference,
            "payment_status": target_status,
            "outcome": result.status,
            "audit_entries_updated": result.audit_entries_updated,
        },
    )
    return result


def _apply_status(reference: str, target_status: str) -> ReconciliationResult:
    with transaction.atomic():
        payment = (
            PaymentTransaction.objects.select_for_update()
            .filter(transaction_reference=reference, reference_kind=ReferenceKind.GATEWAY)
            .first()
        )
        if payment is None:
            raise ReconciliationKeyNotFound(f"No gateway payment transaction with reference {reference}.")

        transaction_updated = False
        if payment.status != target_status:
            payment.status = target_status
            payment.save(update_fields=["status", "updated_at"])
            transaction_updated = True

        audit_entries_updated = (
            SubscriptionAuditLog.objects.filter(payment_reference=reference, reference_kind=ReferenceKind.GATEWAY)
            .exclude(payment_status=target_status)
            .update(payment_status=target_status)
        )

    status = (
        ReconciliationResult.PROCESSED
        if transaction_updated or audit_entries_updated
        else ReconciliationResult.ALREADY_PROCESSED
    )
    return ReconciliationResult(
        status=status,
        reference=reference,
        target_status=target_status,
        transaction_updated=transaction_updated,
        audit_entries_updated=audit_entries_updated,
        account_id=payment.account_id,
    )


__all__ = [
    "ReconciliationKeyNotFound",
    "ReconciliationResult",
    "resolve_target_status",
    "extract_reference",
    "handle_verified_event",
]
