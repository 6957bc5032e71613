import logging

import pytest
from django.contrib.auth import get_user_model

from billing.apps import ensure_default_plans
from billing.models import Plan, Subscription, SubscriptionAuditLog

User = get_user_model()


@pytest.mark.django_db
def test_signup_places_account_on_free_plan():
    ensure_default_plans()

    user = User.objects.create_user(username="alice", email="alice@example.com", password="pass1234")

    subscription = Subscription.objects.get(account=user, status=Subscription.Status.ACTIVE)
    assert subscription.plan.type == Plan.PlanType.FREE
    assert subscription.payment_reference.startswith("FREE_PLAN_")
    assert SubscriptionAuditLog.objects.get(account=user).actor == "system.signup"


@pytest.mark.django_db
def test_profile_updates_do_not_reassign_plan():
    ensure_default_plans()
    user = User.objects.create_user(username="alice", email="alice@example.com", password="pass1234")

    user.company = "Acme"
    user.save()

    assert Subscription.objects.filter(account=user).count() == 1


@pytest.mark.django_db
def test_signup_assignment_can_be_disabled(settings):
    settings.BILLING_AUTO_ASSIGN_FREE_PLAN = False
    ensure_default_plans()

    user = User.objects.create_user(username="alice", email="alice@example.com", password="pass1234")

    assert not Subscription.objects.filter(account=user).exists()


@pytest.mark.django_db
def test_signup_without_free_plan_still_creates_user(caplog):
    ensure_default_plans()
    Plan.objects.filter(type=Plan.PlanType.FREE).update(is_active=False)

    with caplog.at_level(logging.WARNING, logger="accounts.signals"):
        user = User.objects.create_user(username="alice", email="alice@example.com", password="pass1234")

    assert User.objects.filter(pk=user.pk).exists()
    assert not Subscription.objects.filter(account=user).exists()
    assert any("No active free plan" in record.getMessage() for record in caplog.records)
