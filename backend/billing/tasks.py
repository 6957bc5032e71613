"""Celery tasks for gateway event reconciliation and subscription renewal."""
from __future__ import annotations

import hashlib
import json
import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from celery import shared_task
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from billing.constants import RENEWAL_ACTOR
from billing.models import Subscription, WebhookEventLog
from billing.observability.metrics import RENEWAL_COUNT
from billing.services.plan_catalog import PlanCatalogError
from billing.services.reconciliation import ReconciliationResult, handle_verified_event
from billing.services.subscription_lifecycle import (
    NoActiveSubscription,
    SubscriptionLifecycleError,
    renew_subscription,
)

logger = logging.getLogger(__name__)


class RenewalItemFailure(RuntimeError):
    """One subscription could not be renewed during a sweep."""

    def __init__(self, subscription_id: int, cause: BaseException):
        super().__init__(f"Renewal of subscription {subscription_id} failed: {cause}")
        self.subscription_id = subscription_id
        self.cause = cause


@shared_task(bind=True, queue="billing", autoretry_for=(IntegrityError,), retry_backoff=True, max_retries=5)
def process_gateway_event_async(self, event_data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a verified gateway event, tracking it in the webhook event log."""

    event_id = event_data.get("id")
    event_type = event_data.get("type")

    log_entry, already_processed = record_event_log(event_data, status=WebhookEventLog.Status.PROCESSING)
    if already_processed:
        logger.info(
            "Skipping gateway event %s (%s); status=%s",
            event_id,
            event_type,
            log_entry.status if log_entry else "unknown",
        )
        return {"status": "skipped"}

    try:
        result = handle_verified_event(event_data)
    except Exception as exc:  # pragma: no cover - retried by celery
        logger.exception("Unexpected error processing gateway event %s", event_id)
        _mark_event_failed(log_entry, str(exc))
        raise self.retry(exc=exc)

    if result.status in (ReconciliationResult.PROCESSED, ReconciliationResult.ALREADY_PROCESSED):
        status = WebhookEventLog.Status.PROCESSED
    else:
        status = WebhookEventLog.Status.IGNORED
    _mark_event_completed(log_entry, status, account_id=result.account_id, detail=result.detail)

    logger.info(
        "Processed gateway event %s (%s): %s",
        event_id,
        event_type,
        result.detail or result.status,
    )
    return {"status": result.status, "detail": result.detail}


@shared_task(queue="billing")
def process_subscription_auto_renewals() -> Dict[str, int]:
    """Renew every active auto-renewing subscription whose period has ended.

    Each subscription is renewed in its own transaction; a failure is logged
    and counted, and the subscription is picked up again on the next run.
    """

    today = timezone.localdate()
    subscription_ids = list(
        Subscription.objects.filter(
            status=Subscription.Status.ACTIVE,
            auto_renew=True,
            end_date__isnull=False,
            end_date__lte=today,
        )
        .order_by("end_date", "pk")
        .values_list("pk", flat=True)
    )

    stats = {"renewed": 0, "skipped": 0, "failed": 0, "total": len(subscription_ids)}

    for subscription_id in subscription_ids:
        try:
            renew_subscription(subscription_id, actor=RENEWAL_ACTOR)
        except NoActiveSubscription:
            stats["skipped"] += 1
            RENEWAL_COUNT.labels(outcome="skipped").inc()
            continue
        except (SubscriptionLifecycleError, PlanCatalogError, DatabaseError) as exc:
            failure = RenewalItemFailure(subscription_id, exc)
            logger.warning("%s", failure)
            stats["failed"] += 1
            RENEWAL_COUNT.labels(outcome="failed").inc()
            continue
        except Exception as exc:
            failure = RenewalItemFailure(subscription_id, exc)
            logger.exception("%s", failure)
            stats["failed"] += 1
            RENEWAL_COUNT.labels(outcome="failed").inc()
            continue

        stats["renewed"] += 1
        RENEWAL_COUNT.labels(outcome="renewed").inc()

    logger.info(
        "Auto-renewal sweep finished: renewed=%s skipped=%s failed=%s total=%s",
        stats["renewed"],
        stats["skipped"],
        stats["failed"],
        stats["total"],
    )
    return stats


@shared_task(queue="billing")
def cleanup_webhook_event_logs(days: int = 7) -> int:
    """Remove processed webhook events older than ``days`` days."""

    cutoff = timezone.now() - timedelta(days=days)
    deleted, _ = WebhookEventLog.objects.filter(
        status__in=[WebhookEventLog.Status.PROCESSED, WebhookEventLog.Status.IGNORED],
        handled=True,
        processed_at__lt=cutoff,
    ).delete()

    logger.info("Cleaned up %s handled webhook events older than %s days.", deleted, days)
    return deleted


def record_event_log(event_data: Dict[str, Any], *, status: str) -> Tuple[Optional[WebhookEventLog], bool]:
    """Move the event's log row to ``status``; the flag is true when the event was already handled."""

    event_id = event_data.get("id")
    event_type = event_data.get("type")
    if not event_id:
        logger.warning("Gateway event without identifier (%s); it is not tracked in the event log.", event_type)
        return None, False

    payload_hash = _hash_event_payload(event_data)

    with transaction.atomic():
        log_entry = WebhookEventLog.objects.select_for_update().filter(event_id=event_id).first()
        if log_entry:
            if log_entry.handled:
                return log_entry, True

            log_entry.event_type = event_type or log_entry.event_type
            log_entry.status = status
            log_entry.last_error = ""
            log_entry.processed_at = None
            log_entry.payload_hash = payload_hash
            log_entry.save(update_fields=["event_type", "status", "last_error", "processed_at", "payload_hash"])
            return log_entry, False

        log_entry = WebhookEventLog.objects.create(
            event_id=event_id,
            event_type=event_type or "",
            status=status,
            payload_hash=payload_hash,
        )
        return log_entry, False


def _mark_event_completed(
    log_entry: Optional[WebhookEventLog],
    status: str,
    *,
    account_id: Optional[int] = None,
    detail: Optional[str] = None,
) -> None:
    if not log_entry:
        return

    log_entry.status = status
    log_entry.processed_at = timezone.now()
    log_entry.last_error = detail if status == WebhookEventLog.Status.IGNORED and detail else ""
    log_entry.handled = True
    updates = ["status", "processed_at", "last_error", "handled"]

    if account_id and log_entry.account_id != account_id:
        log_entry.account_id = account_id
        updates.append("account")

    log_entry.save(update_fields=updates)


def _mark_event_failed(log_entry: Optional[WebhookEventLog], error: str) -> None:
    if not log_entry:
        return

    log_entry.status = WebhookEventLog.Status.FAILED
    log_entry.last_error = error
    log_entry.processed_at = None
    log_entry.handled = False
    log_entry.save(update_fields=["status", "last_error", "processed_at", "handled"])


def _hash_event_payload(event_data: Dict[str, Any]) -> str:
    try:
        serialized = json.dumps(event_data, sort_keys=True, separators=(",", ":"))
    except TypeError:
        serialized = json.dumps(event_data, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()
