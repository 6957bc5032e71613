"""API endpoints exposing the caller's payment transactions."""
from __future__ import annotations

from rest_framework.authentication import TokenAuthentication
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.viewsets import ReadOnlyModelViewSet

from billing.filters import PaymentTransactionFilter
from billing.models import PaymentTransaction
from billing.pagination import BoundedPageNumberPagination
from billing.permissions import get_owned_transaction
from billing.serializers import PaymentTransactionSerializer
from billing.services.invoice_context import build_invoice_context
from billing.views.base import BillingAPIView


class PaymentTransactionViewSet(ReadOnlyModelViewSet):
    serializer_class = PaymentTransactionSerializer
    authentication_classes = [TokenAuthentication]
    permission_classes = [IsAuthenticated]
    pagination_class = BoundedPageNumberPagination
    filterset_class = PaymentTransactionFilter
    ordering_fields = ("created_at", "amount", "status")
    ordering = ("-created_at",)

    def get_queryset(self):
        return (
            PaymentTransaction.objects.select_related("plan", "subscription")
            .filter(account=self.request.user)
            .order_by("-created_at")
        )


class TransactionInvoiceView(BillingAPIView):
    """Invoice rendering context for one of the caller's transactions."""

    def get(self, request, transaction_id):
        payment = get_owned_transaction(request.user, transaction_id)
        return Response(build_invoice_context(payment))
