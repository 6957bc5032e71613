"""Shared constants for the billing app."""
from __future__ import annotations

from django.db import models


class ReferenceKind(models.TextChoices):
    GATEWAY = "gateway", "Gateway charge"
    ADMINISTRATIVE = "administrative", "Administrative assignment"
    SYNTHETIC = "synthetic", "Internal marker"


class SyntheticReason(models.TextChoices):
    CANCELLED = "CANCELLED", "Cancellation"
    AUTO_RENEW = "AUTO_RENEW", "Auto-renewal"
    FREE_PLAN = "FREE_PLAN", "Free plan placement"
    TXN = "TXN", "Unreferenced paid transition"


ADMIN_REFERENCE_PREFIX = "ADMIN_ASSIGNED"

RESERVED_REFERENCE_PREFIXES = tuple(
    f"{prefix}_" for prefix in ("ADMIN", *SyntheticReason.values)
)

# Gateway event types mapped to the payment status they settle.
SUCCEEDED_EVENT_TYPES = frozenset({"payment_intent.succeeded", "charge.succeeded"})
FAILED_EVENT_TYPES = frozenset({"payment_intent.payment_failed", "charge.failed"})

RENEWAL_ACTOR = "celery.process_subscription_auto_renewals"
SIGNUP_ACTOR = "system.signup"

RECENT_HISTORY_LIMIT = 10
