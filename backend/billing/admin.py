from django.contrib import admin, messages
from django.urls import reverse
from django.utils.html import format_html

from .models import (
    PaymentTransaction,
    Plan,
    Subscription,
    SubscriptionAuditLog,
    UsageCounter,
    WebhookEventLog,
)
from .services.plan_catalog import deactivate_plan


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    """Plans can be edited and retired, never deleted."""

    list_display = ("name", "type", "price", "currency", "site_limit", "ai_call_limit", "is_active")
    list_filter = ("type", "is_active")
    search_fields = ("name", "description")
    ordering = ("price", "name")
    readonly_fields = ("created_at", "updated_at")
    actions = ("deactivate_selected",)

    fieldsets = (
        ("Plan", {"fields": ("name", "type", "description", "is_active")}),
        ("Pricing", {"fields": ("price", "currency")}),
        ("Limits", {"fields": ("site_limit", "ai_call_limit")}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    @admin.action(description="Deactivate selected plans")
    def deactivate_selected(self, request, queryset):
        count = 0
        for plan in queryset.filter(is_active=True):
            deactivate_plan(plan)
            count += 1
        self.message_user(request, f"Deactivated {count} plan(s).", messages.SUCCESS)

    def get_actions(self, request):
        actions = super().get_actions(request)
        actions.pop("delete_selected", None)
        return actions

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ("id", "account", "plan", "status", "start_date", "end_date", "auto_renew", "reference_kind")
    list_filter = ("status", "auto_renew", "reference_kind", "plan__type")
    search_fields = ("account__username", "account__email", "payment_reference")
    list_select_related = ("account", "plan")
    raw_id_fields = ("account", "plan")
    ordering = ("-created_at",)
    readonly_fields = (
        "account",
        "plan",
        "status",
        "start_date",
        "end_date",
        "payment_reference",
        "reference_kind",
        "ended_at",
        "created_at",
        "updated_at",
    )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(SubscriptionAuditLog)
class SubscriptionAuditLogAdmin(admin.ModelAdmin):
    list_display = (
        "created_at",
        "account",
        "action",
        "plan",
        "amount",
        "payment_status",
        "reference_kind",
        "actor",
    )
    list_filter = ("action", "payment_status", "reference_kind")
    search_fields = ("account__username", "account__email", "payment_reference", "request_id")
    list_select_related = ("account", "plan")
    readonly_fields = (
        "account",
        "plan",
        "subscription_link",
        "action",
        "payment_status",
        "amount",
        "currency",
        "payment_reference",
        "reference_kind",
        "actor",
        "request_id",
        "details",
        "created_at",
    )
    exclude = ("subscription",)
    ordering = ("-created_at",)

    @admin.display(description="Subscription")
    def subscription_link(self, obj):
        if not obj.subscription_id:
            return "-"
        url = reverse("admin:billing_subscription_change", args=[obj.subscription_id])
        return format_html('<a href="{}">{}</a>', url, obj.subscription_id)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "account", "plan", "amount", "currency", "status", "transaction_reference", "created_at")
    list_filter = ("status", "currency", "reference_kind")
    search_fields = ("id", "transaction_reference", "account__username", "account__email")
    list_select_related = ("account", "plan")
    readonly_fields = (
        "id",
        "account",
        "plan",
        "subscription",
        "amount",
        "currency",
        "status",
        "transaction_reference",
        "reference_kind",
        "created_at",
        "updated_at",
    )
    ordering = ("-created_at",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(UsageCounter)
class UsageCounterAdmin(admin.ModelAdmin):
    list_display = ("account", "ai_calls", "reset_at", "updated_at")
    search_fields = ("account__username", "account__email")
    raw_id_fields = ("account",)
    readonly_fields = ("updated_at",)


@admin.register(WebhookEventLog)
class WebhookEventLogAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "status", "handled", "account", "processed_at", "created_at")
    list_filter = ("status", "event_type", "handled")
    search_fields = ("event_id", "event_type", "payload_hash")
    readonly_fields = (
        "event_id",
        "event_type",
        "status",
        "handled",
        "account",
        "payload_hash",
        "last_error",
        "processed_at",
        "created_at",
    )
    ordering = ("-created_at",)

    def has_add_permission(self, request):
        return False
