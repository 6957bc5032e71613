import decimal
import uuid

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import billing.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Plan",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=100, unique=True)),
                ("type", models.CharField(choices=[("free", "Free"), ("monthly", "Monthly"), ("yearly", "Yearly")], max_length=10)),
                ("price", models.DecimalField(decimal_places=2, help_text="Price charged per billing period", max_digits=10, validators=[django.core.validators.MinValueValidator(0)])),
                ("currency", models.CharField(default=billing.models._default_currency, max_length=3)),
                ("site_limit", models.PositiveIntegerField(blank=True, help_text="Maximum active websites; empty means unlimited", null=True)),
                ("ai_call_limit", models.PositiveIntegerField(blank=True, help_text="AI calls allowed per billing period; empty means unlimited", null=True)),
                ("description", models.TextField(blank=True)),
                ("is_active", models.BooleanField(default=True, help_text="Inactive plans stay attached to history but cannot be subscribed to")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Plan",
                "verbose_name_plural": "Plans",
                "db_table": "billing_plan",
                "ordering": ["price", "name"],
                "constraints": [models.CheckConstraint(check=models.Q(("price__gte", 0)), name="billing_plan_price_non_negative")],
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("status", models.CharField(choices=[("active", "Active"), ("ended", "Ended")], default="active", max_length=10)),
                ("start_date", models.DateField()),
                ("end_date", models.DateField(blank=True, help_text="Last day of the billing period; empty for open-ended plans", null=True)),
                ("auto_renew", models.BooleanField(default=False)),
                ("payment_reference", models.CharField(blank=True, max_length=255)),
                ("reference_kind", models.CharField(blank=True, choices=[("gateway", "Gateway charge"), ("administrative", "Administrative assignment"), ("synthetic", "Internal marker")], max_length=20)),
                ("ended_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("account", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="subscriptions", to=settings.AUTH_USER_MODEL)),
                ("plan", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="subscriptions", to="billing.plan")),
            ],
            options={
                "verbose_name": "Subscription",
                "verbose_name_plural": "Subscriptions",
                "db_table": "billing_subscription",
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["status", "auto_renew", "end_date"], name="subscription_renewal_idx"),
                    models.Index(fields=["account", "status"], name="subscription_account_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(("status", "active")), fields=("account",), name="unique_active_subscription_per_account"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SubscriptionAuditLog",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("action", models.CharField(choices=[("created", "Created"), ("upgraded", "Upgraded"), ("downgraded", "Downgraded"), ("cancelled", "Cancelled"), ("renewed", "Renewed")], max_length=20)),
                ("payment_status", models.CharField(choices=[("pending", "Pending"), ("completed", "Completed"), ("failed", "Failed")], default="pending", max_length=20)),
                ("amount", models.DecimalField(decimal_places=2, default=decimal.Decimal("0"), max_digits=10)),
                ("currency", models.CharField(default=billing.models._default_currency, max_length=3)),
                ("payment_reference", models.CharField(blank=True, max_length=255)),
                ("reference_kind", models.CharField(blank=True, choices=[("gateway", "Gateway charge"), ("administrative", "Administrative assignment"), ("synthetic", "Internal marker")], max_length=20)),
                ("actor", models.CharField(blank=True, max_length=255)),
                ("request_id", models.CharField(blank=True, max_length=255)),
                ("details", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("account", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="subscription_audit_logs", to=settings.AUTH_USER_MODEL)),
                ("plan", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="audit_logs", to="billing.plan")),
                ("subscription", models.ForeignKey(blank=True, help_text="Subscription row this transition concerns", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="audit_logs", to="billing.subscription")),
            ],
            options={
                "verbose_name": "Subscription audit log",
                "verbose_name_plural": "Subscription audit logs",
                "db_table": "billing_subscription_audit_log",
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["payment_reference"], name="sub_audit_reference_idx"),
                    models.Index(fields=["account", "created_at"], name="sub_audit_account_idx"),
                    models.Index(fields=["action"], name="sub_audit_action_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=10, validators=[django.core.validators.MinValueValidator(0)])),
                ("currency", models.CharField(default=billing.models._default_currency, max_length=3)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("completed", "Completed"), ("failed", "Failed")], default="pending", max_length=20)),
                ("transaction_reference", models.CharField(help_text="Gateway charge intent id or internal marker", max_length=255, unique=True)),
                ("reference_kind", models.CharField(choices=[("gateway", "Gateway charge"), ("administrative", "Administrative assignment"), ("synthetic", "Internal marker")], max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("account", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="payment_transactions", to=settings.AUTH_USER_MODEL)),
                ("plan", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="payment_transactions", to="billing.plan")),
                ("subscription", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="payment_transactions", to="billing.subscription")),
            ],
            options={
                "verbose_name": "Payment transaction",
                "verbose_name_plural": "Payment transactions",
                "db_table": "billing_payment_transaction",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["account", "created_at"], name="payment_txn_account_idx"),
                    models.Index(fields=["status"], name="payment_txn_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(check=models.Q(("amount__gte", 0)), name="billing_payment_transaction_amount_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="UsageCounter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("ai_calls", models.PositiveIntegerField(default=0)),
                ("reset_at", models.DateTimeField(blank=True, help_text="When the counter was last zeroed by a renewal", null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("account", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="usage_counter", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Usage counter",
                "verbose_name_plural": "Usage counters",
                "db_table": "billing_usage_counter",
            },
        ),
        migrations.CreateModel(
            name="WebhookEventLog",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("event_id", models.CharField(max_length=255, unique=True)),
                ("payload_hash", models.CharField(blank=True, help_text="SHA256 of the raw payload for drift detection.", max_length=64)),
                ("event_type", models.CharField(blank=True, max_length=255)),
                ("status", models.CharField(choices=[("received", "Received"), ("processing", "Processing"), ("processed", "Processed"), ("ignored", "Ignored"), ("failed", "Failed")], default="received", max_length=20)),
                ("last_error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("handled", models.BooleanField(default=False, help_text="True once the event has been fully processed.")),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("account", models.ForeignKey(blank=True, help_text="Account resolved for this event when available.", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="webhook_events", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Webhook event log",
                "verbose_name_plural": "Webhook event logs",
                "db_table": "billing_webhook_event_log",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status"], name="webhook_event_status_idx"),
                    models.Index(fields=["event_type"], name="webhook_event_type_idx"),
                ],
            },
        ),
    ]
