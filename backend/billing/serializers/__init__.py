"""DRF serializers for plans, subscriptions, audit history and payments."""
from __future__ import annotations

from typing import Any, Dict

from django.contrib.auth import get_user_model
from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from billing.models import PaymentTransaction, Plan, Subscription, SubscriptionAuditLog, WebhookEventLog
from billing.services.plan_catalog import describe_limit

User = get_user_model()


class PlanSerializer(serializers.ModelSerializer):
    """Expose plan catalog details with ``-1`` standing in for unlimited ceilings."""

    site_limit = serializers.SerializerMethodField()
    ai_call_limit = serializers.SerializerMethodField()
    is_current = serializers.SerializerMethodField()

    class Meta:
        model = Plan
        fields = (
            "id",
            "name",
            "type",
            "price",
            "currency",
            "site_limit",
            "ai_call_limit",
            "description",
            "is_current",
        )
        read_only_fields = fields

    def get_site_limit(self, obj: Plan) -> int:
        return describe_limit(obj.site_limit)

    def get_ai_call_limit(self, obj: Plan) -> int:
        return describe_limit(obj.ai_call_limit)

    def get_is_current(self, obj: Plan) -> bool:
        return self.context.get("current_plan_id") == obj.pk


class SubscriptionSerializer(serializers.ModelSerializer):
    """Snapshot of a subscription row and its plan."""

    plan = PlanSerializer(read_only=True)
    account_id = serializers.IntegerField(source="account.id", read_only=True)

    class Meta:
        model = Subscription
        fields = (
            "id",
            "account_id",
            "plan",
            "status",
            "start_date",
            "end_date",
            "auto_renew",
            "payment_reference",
            "reference_kind",
            "ended_at",
            "created_at",
        )
        read_only_fields = fields


def account_summary(account) -> Dict[str, Any]:
    return {"id": account.pk, "username": account.username, "email": account.email}


class AdminSubscriptionSerializer(SubscriptionSerializer):
    account = serializers.SerializerMethodField()

    class Meta(SubscriptionSerializer.Meta):
        fields = SubscriptionSerializer.Meta.fields + ("account",)
        read_only_fields = fields

    def get_account(self, obj: Subscription) -> Dict[str, Any]:
        return account_summary(obj.account)


class SubscriptionAuditLogSerializer(serializers.ModelSerializer):
    account_id = serializers.IntegerField(source="account.id", read_only=True)
    plan_id = serializers.IntegerField(source="plan.id", read_only=True)
    plan_name = serializers.CharField(source="plan.name", read_only=True)
    plan_type = serializers.CharField(source="plan.type", read_only=True)

    class Meta:
        model = SubscriptionAuditLog
        fields = (
            "id",
            "account_id",
            "plan_id",
            "plan_name",
            "plan_type",
            "subscription",
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
        read_only_fields = fields


class PaymentTransactionSerializer(serializers.ModelSerializer):
    plan_name = serializers.CharField(source="plan.name", read_only=True)

    class Meta:
        model = PaymentTransaction
        fields = (
            "id",
            "plan",
            "plan_name",
            "subscription",
            "amount",
            "currency",
            "status",
            "transaction_reference",
            "reference_kind",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class AdminPaymentTransactionSerializer(PaymentTransactionSerializer):
    account = serializers.SerializerMethodField()

    class Meta(PaymentTransactionSerializer.Meta):
        fields = PaymentTransactionSerializer.Meta.fields + ("account",)
        read_only_fields = fields

    def get_account(self, obj: PaymentTransaction) -> Dict[str, Any]:
        return account_summary(obj.account)


class WebhookEventLogSerializer(serializers.ModelSerializer):
    account_id = serializers.IntegerField(source="account.id", read_only=True, allow_null=True)

    class Meta:
        model = WebhookEventLog
        fields = (
            "id",
            "event_id",
            "account_id",
            "event_type",
            "status",
            "handled",
            "processed_at",
            "payload_hash",
            "last_error",
            "created_at",
        )
        read_only_fields = fields


class SubscribeSerializer(serializers.Serializer):
    plan_id = serializers.IntegerField(min_value=1)
    payment_reference = serializers.CharField(max_length=255, required=False, allow_blank=True)


class PaymentIntentRequestSerializer(serializers.Serializer):
    plan_id = serializers.IntegerField(min_value=1)


class AdminAssignPlanSerializer(serializers.Serializer):
    account_id = serializers.IntegerField(min_value=1)
    plan_id = serializers.IntegerField(min_value=1)
    payment_reference = serializers.CharField(max_length=255, required=False, allow_blank=True)
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")

    def validate_account_id(self, value: int) -> int:
        if not User.objects.filter(pk=value).exists():
            raise serializers.ValidationError(_("Account does not exist."))
        return value

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        attrs = super().validate(attrs)
        attrs["account"] = User.objects.get(pk=attrs["account_id"])
        return attrs

