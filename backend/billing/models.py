"""Billing models for plans, subscriptions, audit trail, payments and usage."""
import uuid
from decimal import Decimal

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q

from billing.constants import ReferenceKind

User = get_user_model()


def _default_currency() -> str:
    """Resolve default billing currency from settings."""
    return getattr(settings, "STRIPE_CURRENCY", "usd").lower()


class Plan(models.Model):
    """Pricing plan with its billing period and usage ceilings."""

    class PlanType(models.TextChoices):
        FREE = "free", "Free"
        MONTHLY = "monthly", "Monthly"
        YEARLY = "yearly", "Yearly"

    name = models.CharField(max_length=100, unique=True)
    type = models.CharField(max_length=10, choices=PlanType.choices)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        help_text="Price charged per billing period",
    )
    currency = models.CharField(max_length=3, default=_default_currency)
    site_limit = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Maximum active websites; empty means unlimited",
    )
    ai_call_limit = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="AI calls allowed per billing period; empty means unlimited",
    )
    description = models.TextField(blank=True)
    is_active = models.BooleanField(
        default=True,
        help_text="Inactive plans stay attached to history but cannot be subscribed to",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_plan"
        verbose_name = "Plan"
        verbose_name_plural = "Plans"
        ordering = ["price", "name"]
        constraints = [
            models.CheckConstraint(
                check=Q(price__gte=0),
                name="billing_plan_price_non_negative",
            ),
        ]

    def delete(self, *args, **kwargs):
        raise ValidationError("Plans cannot be deleted; deactivate them instead.")

    @property
    def is_free(self) -> bool:
        return self.type == self.PlanType.FREE

    def __str__(self):
        return f"Plan<{self.name}:{self.type}>"


class Subscription(models.Model):
    """
    Assignment of an account to a plan for a bounded or open-ended period.

    Rows are never deleted. Superseded, cancelled and renewed rows move to
    ``ended``; at most one row per account is ``active`` at any time.
    """

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        ENDED = "ended", "Ended"

    account = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="subscriptions",
    )
    plan = models.ForeignKey(
        Plan,
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.ACTIVE,
    )
    start_date = models.DateField()
    end_date = models.DateField(
        null=True,
        blank=True,
        help_text="Last day of the billing period; empty for open-ended plans",
    )
    auto_renew = models.BooleanField(default=False)
    payment_reference = models.CharField(max_length=255, blank=True)
    reference_kind = models.CharField(max_length=20, choices=ReferenceKind.choices, blank=True)
    ended_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_subscription"
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["status", "auto_renew", "end_date"], name="subscription_renewal_idx"),
            models.Index(fields=["account", "status"], name="subscription_account_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["account"],
                condition=Q(status="active"),
                name="unique_active_subscription_per_account",
            ),
        ]

    @property
    def is_active(self) -> bool:
        return self.status == self.Status.ACTIVE

    def __str__(self):
        return f"Subscription<{self.account_id}:{self.plan_id}:{self.status}>"


class SubscriptionAuditLog(models.Model):
    """Append-only record of lifecycle transitions and their payment status."""

    class Action(models.TextChoices):
        CREATED = "created", "Created"
        UPGRADED = "upgraded", "Upgraded"
        DOWNGRADED = "downgraded", "Downgraded"
        CANCELLED = "cancelled", "Cancelled"
        RENEWED = "renewed", "Renewed"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    MUTABLE_FIELDS = frozenset({"payment_status"})

    id = models.BigAutoField(primary_key=True)
    account = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="subscription_audit_logs",
    )
    plan = models.ForeignKey(
        Plan,
        on_delete=models.PROTECT,
        related_name="audit_logs",
    )
    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_logs",
        help_text="Subscription row this transition concerns",
    )
    action = models.CharField(max_length=20, choices=Action.choices)
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    currency = models.CharField(max_length=3, default=_default_currency)
    payment_reference = models.CharField(max_length=255, blank=True)
    reference_kind = models.CharField(max_length=20, choices=ReferenceKind.choices, blank=True)
    actor = models.CharField(max_length=255, blank=True)
    request_id = models.CharField(max_length=255, blank=True)
    details = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_subscription_audit_log"
        verbose_name = "Subscription audit log"
        verbose_name_plural = "Subscription audit logs"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["payment_reference"], name="sub_audit_reference_idx"),
            models.Index(fields=["account", "created_at"], name="sub_audit_account_idx"),
            models.Index(fields=["action"], name="sub_audit_action_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or set(update_fields) - self.MUTABLE_FIELDS:
                raise ValidationError("Subscription audit entries are append-only; only payment_status may change.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Subscription audit entries are immutable and cannot be deleted.")

    def __str__(self):
        return f"SubscriptionAuditLog<{self.action}:{self.payment_status} for {self.account_id}>"


class PaymentTransaction(models.Model):
    """One row per monetary attempt tied to a lifecycle transition."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    MUTABLE_FIELDS = frozenset({"status", "updated_at"})

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    account = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="payment_transactions",
    )
    plan = models.ForeignKey(
        Plan,
        on_delete=models.PROTECT,
        related_name="payment_transactions",
    )
    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payment_transactions",
    )
    amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(0)],
    )
    currency = models.CharField(max_length=3, default=_default_currency)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
    )
    transaction_reference = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway charge intent id or internal marker",
    )
    reference_kind = models.CharField(max_length=20, choices=ReferenceKind.choices)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_payment_transaction"
        verbose_name = "Payment transaction"
        verbose_name_plural = "Payment transactions"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["account", "created_at"], name="payment_txn_account_idx"),
            models.Index(fields=["status"], name="payment_txn_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                check=Q(amount__gte=0),
                name="billing_payment_transaction_amount_non_negative",
            ),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or set(update_fields) - self.MUTABLE_FIELDS:
                raise ValidationError("Payment transactions are append-only; only status may change.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Payment transactions are immutable and cannot be deleted.")

    def __str__(self):
        return f"PaymentTransaction<{self.transaction_reference}:{self.status}>"


class UsageCounter(models.Model):
    """Running per-account AI usage for the current billing period."""

    account = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name="usage_counter",
    )
    ai_calls = models.PositiveIntegerField(default=0)
    reset_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the counter was last zeroed by a renewal",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_usage_counter"
        verbose_name = "Usage counter"
        verbose_name_plural = "Usage counters"

    def __str__(self):
        return f"UsageCounter<{self.account_id}:{self.ai_calls}>"


class WebhookEventLog(models.Model):
    """Keeps track of received gateway webhook events."""

    class Status(models.TextChoices):
        RECEIVED = "received", "Received"
        PROCESSING = "processing", "Processing"
        PROCESSED = "processed", "Processed"
        IGNORED = "ignored", "Ignored"
        FAILED = "failed", "Failed"

    id = models.BigAutoField(primary_key=True)
    event_id = models.CharField(max_length=255, unique=True)
    payload_hash = models.CharField(
        max_length=64,
        blank=True,
        help_text="SHA256 of the raw payload for drift detection.",
    )
    event_type = models.CharField(max_length=255, blank=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.RECEIVED,
    )
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    handled = models.BooleanField(
        default=False,
        help_text="True once the event has been fully processed.",
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    account = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_events",
        help_text="Account resolved for this event when available.",
    )

    class Meta:
        db_table = "billing_webhook_event_log"
        verbose_name = "Webhook event log"
        verbose_name_plural = "Webhook event logs"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="webhook_event_status_idx"),
            models.Index(fields=["event_type"], name="webhook_event_type_idx"),
        ]

    def __str__(self):
        return f"WebhookEventLog<{self.event_id}:{self.status}>"
