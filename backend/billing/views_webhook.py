"""Inbound Stripe webhook: verify, log receipt, hand off to reconciliation."""
from __future__ import annotations

import logging

from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.response import Response

from billing.models import WebhookEventLog
from billing.services.payment_gateway import (
    StripeConfigurationError,
    StripeServiceError,
    StripeWebhookSignatureError,
    parse_event,
)
from billing.tasks import process_gateway_event_async, record_event_log
from billing.views.base import BillingAPIView

logger = logging.getLogger(__name__)

# Signature errors subclass service errors, so they are listed first.
EVENT_REJECTIONS = (
    (StripeWebhookSignatureError, status.HTTP_400_BAD_REQUEST, "invalid_signature"),
    (StripeConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR, "payment_gateway_misconfigured"),
    (StripeServiceError, status.HTTP_400_BAD_REQUEST, "malformed_event"),
)


@method_decorator(csrf_exempt, name="dispatch")
class StripeWebhookView(BillingAPIView):
    """Accept a signed gateway event and queue it for the reconciler.

    An event already settled in the event log is acknowledged with its stored
    status and is not queued again.
    """

    authentication_classes = []
    permission_classes = []
    http_method_names = ["post"]

    def post(self, request, *args, **kwargs):
        sig_header = request.headers.get("Stripe-Signature", "")
        if not sig_header:
            return self.error_response(
                request,
                status=status.HTTP_400_BAD_REQUEST,
                code="missing_signature",
                message="Stripe-Signature header is required.",
            )

        try:
            payload = request.body.decode("utf-8")
        except UnicodeDecodeError:
            return self.error_response(
                request,
                status=status.HTTP_400_BAD_REQUEST,
                code="malformed_event",
                message="Webhook body is not valid UTF-8.",
            )

        try:
            event = parse_event(payload=payload, sig_header=sig_header)
        except (StripeServiceError, StripeConfigurationError) as exc:
            return self._reject(request, exc)

        log_entry, already_handled = record_event_log(event, status=WebhookEventLog.Status.RECEIVED)
        if already_handled:
            logger.info("Gateway event %s already settled as %s.", event.get("id"), log_entry.status)
            return Response({"status": log_entry.status}, status=status.HTTP_200_OK)

        process_gateway_event_async.delay(event)
        logger.info("Queued gateway event %s (%s) for reconciliation.", event.get("id"), event.get("type"))
        return Response({"status": "queued"}, status=status.HTTP_202_ACCEPTED)

    def _reject(self, request, exc: Exception):
        for error_class, http_status, code in EVENT_REJECTIONS:
            if isinstance(exc, error_class):
                if http_status >= 500:
                    logger.error("Stripe webhook cannot be verified: %s", exc)
                return self.error_response(request, status=http_status, code=code, message=str(exc))
        raise exc
