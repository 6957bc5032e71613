"""Shared plumbing for billing API views: error payloads and request metadata."""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.authentication import TokenAuthentication
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.observability.logging import log_billing_event
from billing.serializers import PaymentTransactionSerializer, SubscriptionAuditLogSerializer, SubscriptionSerializer
from billing.services.payment_gateway import StripeConfigurationError, StripeServiceError
from billing.services.plan_catalog import BillingConfigurationError, PlanNotFound
from billing.services.subscription_lifecycle import (
    AlreadyOnFreePlan,
    AtomicWriteFailure,
    DuplicatePaymentReference,
    NoActiveSubscription,
    PaymentVerificationError,
    UnauthorizedPlanAssignment,
)

logger = logging.getLogger(__name__)

# Ordered most specific first; the first matching class wins.
ERROR_STATUS_MAP = (
    (PlanNotFound, status.HTTP_404_NOT_FOUND, "plan_not_found"),
    (NoActiveSubscription, status.HTTP_409_CONFLICT, "no_active_subscription"),
    (AlreadyOnFreePlan, status.HTTP_409_CONFLICT, "already_on_free_plan"),
    (DuplicatePaymentReference, status.HTTP_409_CONFLICT, "duplicate_payment_reference"),
    (PaymentVerificationError, status.HTTP_402_PAYMENT_REQUIRED, "payment_not_verified"),
    (UnauthorizedPlanAssignment, status.HTTP_403_FORBIDDEN, "forbidden"),
    (AtomicWriteFailure, status.HTTP_500_INTERNAL_SERVER_ERROR, "write_failed"),
    (BillingConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR, "billing_misconfigured"),
    (StripeConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR, "payment_gateway_misconfigured"),
    (StripeServiceError, status.HTTP_502_BAD_GATEWAY, "payment_gateway_error"),
)

HANDLED_ERRORS = tuple(entry[0] for entry in ERROR_STATUS_MAP)


class BillingAPIView(APIView):
    authentication_classes = [TokenAuthentication]
    permission_classes = [IsAuthenticated]

    @staticmethod
    def request_id(request) -> str:
        return request.headers.get("X-Request-ID", "")

    def error_response(self, request, *, status: int, code: str, message: str, details: dict | None = None):
        log_billing_event(
            message=f"billing.api.error.{code}",
            request_id=self.request_id(request),
            account_id=getattr(request.user, "pk", None),
            extra={"status": status, "detail": message, "details": details or {}},
        )
        payload = {"code": code, "message": message, "details": details or {}}
        return Response(payload, status=status)

    def handle_billing_error(self, request, exc: Exception):
        for error_class, http_status, code in ERROR_STATUS_MAP:
            if isinstance(exc, error_class):
                if http_status >= 500:
                    logger.error("Billing request failed with %s: %s", error_class.__name__, exc)
                return self.error_response(request, status=http_status, code=code, message=str(exc))
        raise exc


def transition_payload(result) -> dict:
    return {
        "action": result.action,
        "subscription": SubscriptionSerializer(result.subscription).data,
        "previous_subscription_id": result.previous.pk if result.previous else None,
        "audit_entries": SubscriptionAuditLogSerializer(result.audit_entries, many=True).data,
        "transaction": PaymentTransactionSerializer(result.transaction).data if result.transaction else None,
    }


def details_payload(details) -> dict:
    return {
        "subscription": SubscriptionSerializer(details.subscription).data if details.subscription else None,
        "recent_audit_entries": SubscriptionAuditLogSerializer(details.recent_audit_entries, many=True).data,
        "recent_transactions": PaymentTransactionSerializer(details.recent_transactions, many=True).data,
    }
