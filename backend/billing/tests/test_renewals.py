from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db import OperationalError
from django.utils import timezone

from billing.constants import ReferenceKind
from billing.models import PaymentTransaction, Subscription, SubscriptionAuditLog, UsageCounter
from billing.services.plan_catalog import BillingConfigurationError, deactivate_plan
from billing.services.subscription_lifecycle import (
    NoActiveSubscription,
    add_months,
    assign_plan,
    cancel_subscription,
    renew_subscription,
)
from billing.services.usage_limits import increment_ai_usage
from billing.tasks import process_subscription_auto_renewals
from billing.tests.factories import create_user, seed_plans


def _paid_subscription(username: str, plan, admin, *, days_overdue: int = 1) -> Subscription:
    user = create_user(username)
    subscription = assign_plan(user, plan.pk, admin_user=admin).subscription
    today = timezone.localdate()
    Subscription.objects.filter(pk=subscription.pk).update(
        start_date=today - timedelta(days=31),
        end_date=today - timedelta(days=days_overdue),
    )
    subscription.refresh_from_db()
    return subscription


@pytest.fixture
def catalog(db):
    plans = seed_plans()
    admin = create_user("root", is_staff=True)
    return plans, admin


def test_renewal_opens_next_period_and_resets_usage(catalog):
    plans, admin = catalog
    expired = _paid_subscription("alice", plans["Monthly"], admin)
    previous_end = expired.end_date
    increment_ai_usage(expired.account)

    result = renew_subscription(expired.pk)

    today = timezone.localdate()
    expired.refresh_from_db()
    assert expired.status == Subscription.Status.ENDED
    assert expired.end_date == previous_end
    assert expired.auto_renew is False

    renewed = result.subscription
    assert result.action == "renewed"
    assert renewed.plan == plans["Monthly"]
    assert renewed.start_date == today
    assert renewed.end_date == add_months(today, 1)
    assert renewed.auto_renew is True
    assert renewed.reference_kind == ReferenceKind.SYNTHETIC
    assert renewed.payment_reference.startswith("AUTO_RENEW_")

    entry = result.audit_entries[0]
    assert entry.action == SubscriptionAuditLog.Action.RENEWED
    assert entry.payment_status == SubscriptionAuditLog.PaymentStatus.COMPLETED
    assert entry.amount == Decimal("15.00")
    assert result.transaction.status == PaymentTransaction.Status.COMPLETED
    assert result.transaction.transaction_reference == renewed.payment_reference

    assert UsageCounter.objects.get(account=expired.account).ai_calls == 0


def test_renewal_status_follows_setting(catalog, settings):
    settings.BILLING_RENEWAL_TRANSACTION_STATUS = "pending"
    plans, admin = catalog
    expired = _paid_subscription("alice", plans["Yearly"], admin)

    result = renew_subscription(expired.pk)

    assert result.transaction.status == PaymentTransaction.Status.PENDING
    assert result.audit_entries[0].payment_status == SubscriptionAuditLog.PaymentStatus.PENDING
    assert result.subscription.end_date == add_months(timezone.localdate(), 12)


def test_invalid_renewal_status_setting_is_rejected(catalog, settings):
    settings.BILLING_RENEWAL_TRANSACTION_STATUS = "settled"
    plans, admin = catalog
    expired = _paid_subscription("alice", plans["Monthly"], admin)

    with pytest.raises(BillingConfigurationError):
        renew_subscription(expired.pk)


def test_deactivated_plan_is_still_renewed(catalog):
    plans, admin = catalog
    expired = _paid_subscription("alice", plans["Monthly"], admin)
    deactivate_plan(plans["Monthly"])

    result = renew_subscription(expired.pk)

    assert result.subscription.plan_id == plans["Monthly"].pk


def test_subscription_not_yet_due_is_skipped(catalog):
    plans, admin = catalog
    current = _paid_subscription("alice", plans["Monthly"], admin, days_overdue=-3)

    with pytest.raises(NoActiveSubscription):
        renew_subscription(current.pk)


def test_ended_or_manual_subscription_is_not_renewed(catalog):
    plans, admin = catalog
    expired = _paid_subscription("alice", plans["Monthly"], admin)
    Subscription.objects.filter(pk=expired.pk).update(auto_renew=False)

    with pytest.raises(NoActiveSubscription):
        renew_subscription(expired.pk)
    with pytest.raises(NoActiveSubscription):
        renew_subscription(999999)


def test_sweep_renews_due_subscriptions_only(catalog):
    plans, admin = catalog
    due = _paid_subscription("alice", plans["Monthly"], admin)
    _paid_subscription("bob", plans["Monthly"], admin, days_overdue=-10)

    stats = process_subscription_auto_renewals()

    assert stats == {"renewed": 1, "skipped": 0, "failed": 0, "total": 1}
    assert Subscription.objects.get(account=due.account, status=Subscription.Status.ACTIVE).start_date == timezone.localdate()


def test_sweep_isolates_failing_subscription(catalog):
    plans, admin = catalog
    locked = _paid_subscription("alice", plans["Monthly"], admin, days_overdue=2)
    healthy = _paid_subscription("bob", plans["Monthly"], admin, days_overdue=1)

    def renew_or_conflict(subscription_id, **kwargs):
        if subscription_id == locked.pk:
            raise OperationalError("could not obtain lock on row")
        return renew_subscription(subscription_id, **kwargs)

    with patch("billing.tasks.renew_subscription", side_effect=renew_or_conflict):
        stats = process_subscription_auto_renewals()

    assert stats == {"renewed": 1, "skipped": 0, "failed": 1, "total": 2}
    locked.refresh_from_db()
    assert locked.status == Subscription.Status.ACTIVE
    assert Subscription.objects.filter(account=healthy.account, status=Subscription.Status.ACTIVE).get().pk != healthy.pk

    # The failed row is picked up by the next sweep.
    second = process_subscription_auto_renewals()
    assert second["renewed"] == 1


def test_sweep_counts_rows_cancelled_mid_run_as_skipped(catalog):
    plans, admin = catalog
    expired = _paid_subscription("alice", plans["Monthly"], admin)

    with patch("billing.tasks.renew_subscription", side_effect=NoActiveSubscription("gone")):
        stats = process_subscription_auto_renewals()

    assert stats == {"renewed": 0, "skipped": 1, "failed": 0, "total": 1}
    expired.refresh_from_db()
    assert expired.status == Subscription.Status.ACTIVE


def test_sweep_leaves_cancelled_account_and_renews_the_rest(catalog):
    plans, admin = catalog
    due = [_paid_subscription(name, plans["Monthly"], admin) for name in ("alice", "bob", "carol")]
    cancel_subscription(due[1].account)

    stats = process_subscription_auto_renewals()

    assert stats == {"renewed": 2, "skipped": 0, "failed": 0, "total": 2}
    for subscription in (due[0], due[2]):
        renewed = Subscription.objects.get(account=subscription.account, status=Subscription.Status.ACTIVE)
        assert renewed.plan == plans["Monthly"]
        assert renewed.start_date == timezone.localdate()
    cancelled_account = Subscription.objects.get(account=due[1].account, status=Subscription.Status.ACTIVE)
    assert cancelled_account.plan == plans["Free"]
    assert not SubscriptionAuditLog.objects.filter(
        account=due[1].account, action=SubscriptionAuditLog.Action.RENEWED
    ).exists()


def test_sweep_contains_unexpected_item_errors(catalog):
    plans, admin = catalog
    broken = _paid_subscription("alice", plans["Monthly"], admin)
    _paid_subscription("bob", plans["Monthly"], admin)

    def renew_or_break(subscription_id, **kwargs):
        if subscription_id == broken.pk:
            raise ValueError("corrupt period")
        return renew_subscription(subscription_id, **kwargs)

    with patch("billing.tasks.renew_subscription", side_effect=renew_or_break):
        stats = process_subscription_auto_renewals()

    assert stats == {"renewed": 1, "skipped": 0, "failed": 1, "total": 2}
    broken.refresh_from_db()
    assert broken.status == Subscription.Status.ACTIVE
