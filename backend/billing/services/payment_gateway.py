"""Stripe charge intent and webhook helpers used by the billing flows."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import stripe
from django.conf import settings

logger = logging.getLogger(__name__)

ZERO_DECIMAL_CURRENCIES = frozenset(
    {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}
)


class StripeConfigurationError(RuntimeError):
    """Raised when mandatory Stripe configuration is missing."""


class StripeServiceError(RuntimeError):
    """Raised when Stripe returns an operational error."""


class StripeWebhookSignatureError(StripeServiceError):
    """Raised when webhook signature validation fails."""


@dataclass(frozen=True)
class ChargeIntent:
    intent_id: str
    status: str
    amount: Decimal
    currency: str
    client_secret: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


def _configure_stripe() -> None:
    secret_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not secret_key:
        raise StripeConfigurationError("STRIPE_SECRET_KEY is not configured.")

    stripe.api_key = secret_key
    api_version = getattr(settings, "STRIPE_API_VERSION", None)
    if api_version:
        stripe.api_version = api_version


def _stringify_metadata(values: Dict[str, Any]) -> Dict[str, str]:
    return {key: "" if value is None else str(value) for key, value in values.items()}


def to_plain_dict(stripe_object: Any) -> Dict[str, Any]:
    """Convert a Stripe object (or an already plain mapping) to a dictionary."""

    for converter in ("to_dict_recursive", "to_dict"):
        method = getattr(stripe_object, converter, None)
        if callable(method):
            return method()
    return dict(stripe_object)


def to_minor_units(amount: Decimal, currency: str) -> int:
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: Optional[int], currency: str) -> Decimal:
    if amount is None:
        return Decimal("0.00")
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def _to_charge_intent(payload: Dict[str, Any]) -> ChargeIntent:
    currency = (payload.get("currency") or getattr(settings, "STRIPE_CURRENCY", "usd")).lower()
    return ChargeIntent(
        intent_id=str(payload.get("id") or ""),
        status=str(payload.get("status") or ""),
        amount=from_minor_units(payload.get("amount"), currency),
        currency=currency,
        client_secret=str(payload.get("client_secret") or ""),
        metadata=dict(payload.get("metadata") or {}),
    )


def create_charge_intent(
    *,
    amount: Decimal,
    currency: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    idempotency_key: Optional[str] = None,
) -> ChargeIntent:
    """Create a Stripe PaymentIntent for ``amount`` in major currency units."""

    if amount is None or Decimal(amount) <= 0:
        raise ValueError("Charge amount must be positive.")

    currency = (currency or getattr(settings, "STRIPE_CURRENCY", "usd")).lower()
    _configure_stripe()

    kwargs: Dict[str, Any] = {
        "amount": to_minor_units(amount, currency),
        "currency": currency,
        "metadata": _stringify_metadata(metadata or {}),
        "automatic_payment_methods": {"enabled": True},
    }
    if idempotency_key:
        kwargs["idempotency_key"] = idempotency_key

    try:
        intent = stripe.PaymentIntent.create(**kwargs)
    except stripe.StripeError as exc:  # pragma: no cover - Stripe client passthrough
        logger.warning("Failed to create Stripe payment intent: %s", exc)
        raise StripeServiceError(str(exc)) from exc

    return _to_charge_intent(to_plain_dict(intent))


def get_charge_intent(intent_id: str) -> ChargeIntent:
    """Fetch the current state of a Stripe PaymentIntent."""

    if not intent_id:
        raise ValueError("intent_id is required.")

    _configure_stripe()

    try:
        intent = stripe.PaymentIntent.retrieve(intent_id)
    except stripe.StripeError as exc:  # pragma: no cover - Stripe client passthrough
        logger.warning("Failed to retrieve Stripe payment intent %s: %s", intent_id, exc)
        raise StripeServiceError(str(exc)) from exc

    return _to_charge_intent(to_plain_dict(intent))


def parse_event(payload: str, sig_header: str, secret: Optional[str] = None) -> Dict[str, Any]:
    """Validate and deserialize a Stripe webhook payload."""

    if not sig_header:
        raise StripeWebhookSignatureError("Stripe-Signature header is missing.")

    webhook_secret = secret or getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    if not webhook_secret:
        raise StripeConfigurationError("STRIPE_WEBHOOK_SECRET is not configured.")

    try:
        event = stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=webhook_secret)
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe webhook signature verification failed: %s", exc)
        raise StripeWebhookSignatureError("Stripe webhook signature verification failed.") from exc
    except ValueError as exc:
        logger.error("Received malformed Stripe webhook payload: %s", exc)
        raise StripeServiceError("Malformed Stripe webhook payload.") from exc

    return to_plain_dict(event)


__all__ = [
    "StripeConfigurationError",
    "StripeServiceError",
    "StripeWebhookSignatureError",
    "ChargeIntent",
    "to_minor_units",
    "from_minor_units",
    "create_charge_intent",
    "get_charge_intent",
    "parse_event",
]
