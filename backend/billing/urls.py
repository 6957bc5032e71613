"""URL routes for billing endpoints."""
from django.urls import path

from .views import (
    CancelSubscriptionView,
    CurrentSubscriptionView,
    PaymentIntentView,
    PlanListView,
    SubscribeView,
    SubscriptionHistoryViewSet,
    UsageLimitsView,
)
from .views.admin_subscriptions import (
    AdminAccountSubscriptionView,
    AdminAssignPlanView,
    AdminAuditLogViewSet,
    AdminPaymentTransactionViewSet,
    AdminSubscriptionStatsView,
    AdminSubscriptionViewSet,
    AdminWebhookEventViewSet,
)
from .views.transactions import PaymentTransactionViewSet, TransactionInvoiceView
from .views_webhook import StripeWebhookView

app_name = "billing"

urlpatterns = [
    path("plans/", PlanListView.as_view(), name="plan-list"),
    path("subscription/", CurrentSubscriptionView.as_view(), name="subscription"),
    path("subscription/subscribe/", SubscribeView.as_view(), name="subscription-subscribe"),
    path("subscription/cancel/", CancelSubscriptionView.as_view(), name="subscription-cancel"),
    path(
        "subscription/history/",
        SubscriptionHistoryViewSet.as_view({"get": "list"}),
        name="subscription-history",
    ),
    path("subscription/limits/", UsageLimitsView.as_view(), name="subscription-limits"),
    path("payment-intents/", PaymentIntentView.as_view(), name="payment-intent"),
    path(
        "transactions/",
        PaymentTransactionViewSet.as_view({"get": "list"}),
        name="transaction-list",
    ),
    path(
        "transactions/<uuid:pk>/",
        PaymentTransactionViewSet.as_view({"get": "retrieve"}),
        name="transaction-detail",
    ),
    path(
        "transactions/<uuid:transaction_id>/invoice/",
        TransactionInvoiceView.as_view(),
        name="transaction-invoice",
    ),
    path("webhook/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
    # Staff endpoints
    path("admin/subscriptions/assign/", AdminAssignPlanView.as_view(), name="admin-subscription-assign"),
    path(
        "admin/subscriptions/",
        AdminSubscriptionViewSet.as_view({"get": "list"}),
        name="admin-subscription-list",
    ),
    path(
        "admin/subscriptions/logs/",
        AdminAuditLogViewSet.as_view({"get": "list"}),
        name="admin-subscription-logs",
    ),
    path("admin/subscriptions/stats/", AdminSubscriptionStatsView.as_view(), name="admin-subscription-stats"),
    path(
        "admin/subscriptions/transactions/",
        AdminPaymentTransactionViewSet.as_view({"get": "list"}),
        name="admin-subscription-transactions",
    ),
    path(
        "admin/subscriptions/accounts/<int:account_id>/",
        AdminAccountSubscriptionView.as_view(),
        name="admin-subscription-account",
    ),
    path(
        "admin/webhook-events/",
        AdminWebhookEventViewSet.as_view({"get": "list"}),
        name="admin-webhook-events",
    ),
]
