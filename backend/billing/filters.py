"""FilterSet definitions for billing endpoints."""
from __future__ import annotations

import django_filters
from django.db.models import Q

from billing.models import PaymentTransaction, Subscription, SubscriptionAuditLog, WebhookEventLog


class SubscriptionAuditLogFilter(django_filters.FilterSet):
    action = django_filters.CharFilter(field_name="action", lookup_expr="iexact")
    payment_status = django_filters.CharFilter(field_name="payment_status", lookup_expr="iexact")
    reference_kind = django_filters.CharFilter(field_name="reference_kind", lookup_expr="iexact")
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")
    account_id = django_filters.NumberFilter(field_name="account_id")

    class Meta:
        model = SubscriptionAuditLog
        fields = ["action", "payment_status", "reference_kind", "account_id"]


class PaymentTransactionFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    currency = django_filters.CharFilter(field_name="currency", lookup_expr="iexact")
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = PaymentTransaction
        fields = ["status", "currency"]


class AdminPaymentTransactionFilter(PaymentTransactionFilter):
    account_id = django_filters.NumberFilter(field_name="account_id")
    reference_kind = django_filters.CharFilter(field_name="reference_kind", lookup_expr="iexact")
    min_amount = django_filters.NumberFilter(field_name="amount", lookup_expr="gte")
    max_amount = django_filters.NumberFilter(field_name="amount", lookup_expr="lte")

    class Meta(PaymentTransactionFilter.Meta):
        fields = PaymentTransactionFilter.Meta.fields + ["account_id", "reference_kind"]


class SubscriptionFilter(django_filters.FilterSet):
    plan_type = django_filters.CharFilter(field_name="plan__type", lookup_expr="iexact")
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    auto_renew = django_filters.BooleanFilter(field_name="auto_renew")
    account_id = django_filters.NumberFilter(field_name="account_id")
    search = django_filters.CharFilter(method="filter_search")

    class Meta:
        model = Subscription
        fields = ["plan_type", "status", "auto_renew", "account_id"]

    def filter_search(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(account__username__icontains=value)
            | Q(account__email__icontains=value)
            | Q(plan__name__icontains=value)
        )


class WebhookEventLogFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    event_type = django_filters.CharFilter(field_name="event_type", lookup_expr="iexact")
    handled = django_filters.BooleanFilter(field_name="handled")

    class Meta:
        model = WebhookEventLog
        fields = ["status", "event_type", "handled"]
