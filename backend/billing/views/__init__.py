"""Account-facing billing API views: plans, subscription state, usage and checkout."""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.authentication import TokenAuthentication
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.viewsets import ReadOnlyModelViewSet

from billing.filters import SubscriptionAuditLogFilter
from billing.models import SubscriptionAuditLog
from billing.pagination import BoundedPageNumberPagination
from billing.serializers import (
    PaymentIntentRequestSerializer,
    PlanSerializer,
    SubscribeSerializer,
    SubscriptionAuditLogSerializer,
)
from billing.services.payment_gateway import create_charge_intent
from billing.services.plan_catalog import get_active_plan, list_active_plans
from billing.services.subscription_lifecycle import (
    cancel_subscription,
    create_subscription,
    get_active_subscription,
    get_subscription_details,
)
from billing.services.usage_limits import check_ai_call_limit, check_site_limit
from billing.views.base import HANDLED_ERRORS, BillingAPIView, details_payload, transition_payload

logger = logging.getLogger(__name__)


class PlanListView(BillingAPIView):
    """Active plans, flagging the one the caller is currently on."""

    def get(self, request):
        current = get_active_subscription(request.user)
        serializer = PlanSerializer(
            list_active_plans(),
            many=True,
            context={"request": request, "current_plan_id": current.plan_id if current else None},
        )
        return Response(serializer.data)


class CurrentSubscriptionView(BillingAPIView):
    def get(self, request):
        return Response(details_payload(get_subscription_details(request.user)))


class SubscribeView(BillingAPIView):
    """Move the caller onto a plan after the gateway charge has succeeded."""

    def post(self, request):
        serializer = SubscribeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = create_subscription(
                request.user,
                serializer.validated_data["plan_id"],
                serializer.validated_data.get("payment_reference") or None,
                request_id=self.request_id(request),
            )
        except HANDLED_ERRORS as exc:
            return self.handle_billing_error(request, exc)

        return Response(transition_payload(result), status=status.HTTP_201_CREATED)


class CancelSubscriptionView(BillingAPIView):
    def post(self, request):
        try:
            result = cancel_subscription(request.user, request_id=self.request_id(request))
        except HANDLED_ERRORS as exc:
            return self.handle_billing_error(request, exc)

        return Response(transition_payload(result), status=status.HTTP_200_OK)


class UsageLimitsView(BillingAPIView):
    def get(self, request):
        current = get_active_subscription(request.user)
        return Response(
            {
                "plan": PlanSerializer(current.plan).data if current else None,
                "sites": check_site_limit(request.user).as_dict(),
                "ai_calls": check_ai_call_limit(request.user).as_dict(),
            }
        )


class PaymentIntentView(BillingAPIView):
    """Open a gateway charge for a paid plan; the client confirms it and then subscribes."""

    def post(self, request):
        serializer = PaymentIntentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            plan = get_active_plan(serializer.validated_data["plan_id"])
            if plan.is_free:
                return self.error_response(
                    request,
                    status=status.HTTP_400_BAD_REQUEST,
                    code="free_plan",
                    message="The free plan does not require a payment.",
                )
            intent = create_charge_intent(
                amount=plan.price,
                currency=plan.currency,
                metadata={"account_id": request.user.pk, "plan_id": plan.pk},
            )
        except HANDLED_ERRORS as exc:
            return self.handle_billing_error(request, exc)

        logger.info("Created charge intent %s for account %s plan %s", intent.intent_id, request.user.pk, plan.pk)
        return Response(
            {
                "intent_id": intent.intent_id,
                "client_secret": intent.client_secret,
                "amount": str(intent.amount),
                "currency": intent.currency,
                "status": intent.status,
            },
            status=status.HTTP_201_CREATED,
        )


class SubscriptionHistoryViewSet(ReadOnlyModelViewSet):
    """Paginated audit history of the caller's plan changes."""

    serializer_class = SubscriptionAuditLogSerializer
    authentication_classes = [TokenAuthentication]
    permission_classes = [IsAuthenticated]
    pagination_class = BoundedPageNumberPagination
    filterset_class = SubscriptionAuditLogFilter
    ordering_fields = ("created_at", "amount", "action")
    ordering = ("-created_at",)

    def get_queryset(self):
        return (
            SubscriptionAuditLog.objects.select_related("plan", "account")
            .filter(account=self.request.user)
            .order_by("-created_at")
        )
