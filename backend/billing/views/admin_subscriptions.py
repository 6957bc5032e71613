"""Staff-only billing endpoints: plan assignment, cross-account listings and stats."""
from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.authentication import TokenAuthentication
from rest_framework.response import Response
from rest_framework.viewsets import ReadOnlyModelViewSet

from billing.filters import (
    AdminPaymentTransactionFilter,
    SubscriptionAuditLogFilter,
    SubscriptionFilter,
    WebhookEventLogFilter,
)
from billing.models import PaymentTransaction, Subscription, SubscriptionAuditLog, WebhookEventLog
from billing.pagination import AdminPageNumberPagination
from billing.permissions import IsBillingAdmin
from billing.serializers import (
    AdminAssignPlanSerializer,
    AdminPaymentTransactionSerializer,
    AdminSubscriptionSerializer,
    SubscriptionAuditLogSerializer,
    WebhookEventLogSerializer,
    account_summary,
)
from billing.services.subscription_lifecycle import assign_plan, get_subscription_details, get_subscription_stats
from billing.views.base import HANDLED_ERRORS, BillingAPIView, details_payload, transition_payload

logger = logging.getLogger(__name__)

User = get_user_model()


class AdminAssignPlanView(BillingAPIView):
    """Assign a plan to any account without a gateway charge."""

    permission_classes = [IsBillingAdmin]

    def post(self, request):
        serializer = AdminAssignPlanSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = assign_plan(
                data["account"],
                data["plan_id"],
                admin_user=request.user,
                payment_reference=data.get("payment_reference") or None,
                reason=data.get("reason", ""),
                request_id=self.request_id(request),
            )
        except HANDLED_ERRORS as exc:
            return self.handle_billing_error(request, exc)

        logger.info(
            "Staff user %s assigned plan %s to account %s",
            request.user.pk,
            result.subscription.plan_id,
            data["account"].pk,
        )
        return Response(transition_payload(result), status=status.HTTP_201_CREATED)


class AdminSubscriptionStatsView(BillingAPIView):
    permission_classes = [IsBillingAdmin]

    def get(self, request):
        try:
            recent_days = int(request.query_params.get("recent_days", 30))
        except (TypeError, ValueError):
            return self.error_response(
                request,
                status=status.HTTP_400_BAD_REQUEST,
                code="invalid_parameter",
                message="recent_days must be an integer.",
            )
        if recent_days < 1:
            recent_days = 1

        stats = get_subscription_stats(recent_days=recent_days)
        stats["by_plan_type"] = [
            {**row, "revenue": str(row["revenue"])} for row in stats["by_plan_type"]
        ]
        return Response(stats)


class AdminAccountSubscriptionView(BillingAPIView):
    """Current subscription with recent history for any account."""

    permission_classes = [IsBillingAdmin]

    def get(self, request, account_id):
        account = get_object_or_404(User, pk=account_id)
        payload = details_payload(get_subscription_details(account))
        payload["account"] = account_summary(account)
        return Response(payload)


class AdminSubscriptionViewSet(ReadOnlyModelViewSet):
    serializer_class = AdminSubscriptionSerializer
    authentication_classes = [TokenAuthentication]
    permission_classes = [IsBillingAdmin]
    pagination_class = AdminPageNumberPagination
    filterset_class = SubscriptionFilter
    ordering_fields = ("created_at", "start_date", "end_date")
    ordering = ("-created_at",)

    def get_queryset(self):
        return Subscription.objects.select_related("plan", "account").order_by("-created_at")


class AdminAuditLogViewSet(ReadOnlyModelViewSet):
    serializer_class = SubscriptionAuditLogSerializer
    authentication_classes = [TokenAuthentication]
    permission_classes = [IsBillingAdmin]
    pagination_class = AdminPageNumberPagination
    filterset_class = SubscriptionAuditLogFilter
    ordering_fields = ("created_at", "amount", "action")
    ordering = ("-created_at",)

    def get_queryset(self):
        return SubscriptionAuditLog.objects.select_related("plan", "account").order_by("-created_at")


class AdminWebhookEventViewSet(ReadOnlyModelViewSet):
    serializer_class = WebhookEventLogSerializer
    authentication_classes = [TokenAuthentication]
    permission_classes = [IsBillingAdmin]
    pagination_class = AdminPageNumberPagination
    filterset_class = WebhookEventLogFilter
    ordering_fields = ("created_at", "processed_at")
    ordering = ("-created_at",)

    def get_queryset(self):
        return WebhookEventLog.objects.select_related("account").order_by("-created_at")


class AdminPaymentTransactionViewSet(ReadOnlyModelViewSet):
    serializer_class = AdminPaymentTransactionSerializer
    authentication_classes = [TokenAuthentication]
    permission_classes = [IsBillingAdmin]
    pagination_class = AdminPageNumberPagination
    filterset_class = AdminPaymentTransactionFilter
    ordering_fields = ("created_at", "amount", "status")
    ordering = ("-created_at",)

    def get_queryset(self):
        return PaymentTransaction.objects.select_related("plan", "account").order_by("-created_at")
