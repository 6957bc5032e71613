import threading
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db import DatabaseError, IntegrityError, connection, transaction

from billing.constants import ReferenceKind
from billing.models import PaymentTransaction, Plan, Subscription, SubscriptionAuditLog
from billing.services.plan_catalog import PlanNotFound
from billing.services.subscription_lifecycle import (
    AlreadyOnFreePlan,
    AtomicWriteFailure,
    DuplicatePaymentReference,
    NoActiveSubscription,
    PaymentVerificationError,
    UnauthorizedPlanAssignment,
    add_months,
    assign_plan,
    cancel_subscription,
    classify_transition,
    compute_period_end,
    create_subscription,
    get_active_subscription,
    get_subscription_details,
    get_subscription_stats,
    place_on_free_plan,
)
from billing.tests.factories import create_plan, create_user, seed_plans, succeeded_intent

GATEWAY_LOOKUP = "billing.services.subscription_lifecycle.get_charge_intent"


def _plan(price: str, plan_type: str = Plan.PlanType.MONTHLY) -> Plan:
    return Plan(name=f"plan-{price}", type=plan_type, price=Decimal(price))


def _active_rows(user):
    return Subscription.objects.filter(account=user, status=Subscription.Status.ACTIVE)


@pytest.mark.parametrize(
    "current,new,expected",
    [
        (None, _plan("10.00"), "created"),
        (_plan("0.00", Plan.PlanType.FREE), _plan("10.00"), "created"),
        (_plan("10.00"), _plan("20.00"), "upgraded"),
        (_plan("20.00"), _plan("10.00"), "downgraded"),
        (_plan("15.00"), _plan("15.00", Plan.PlanType.YEARLY), "created"),
        (_plan("10.00"), _plan("0.00", Plan.PlanType.FREE), "downgraded"),
    ],
)
def test_classify_transition_compares_prices(current, new, expected):
    assert classify_transition(current, new) == expected


@pytest.mark.parametrize(
    "start,months,expected",
    [
        (date(2024, 1, 15), 1, date(2024, 2, 15)),
        (date(2024, 1, 31), 1, date(2024, 2, 29)),
        (date(2023, 1, 31), 1, date(2023, 2, 28)),
        (date(2024, 12, 10), 1, date(2025, 1, 10)),
        (date(2024, 2, 29), 12, date(2025, 2, 28)),
    ],
)
def test_add_months_clamps_to_month_length(start, months, expected):
    assert add_months(start, months) == expected


def test_compute_period_end_by_plan_type():
    start = date(2024, 5, 31)

    assert compute_period_end(_plan("0.00", Plan.PlanType.FREE), start) is None
    assert compute_period_end(_plan("10.00"), start) == date(2024, 6, 30)
    assert compute_period_end(_plan("100.00", Plan.PlanType.YEARLY), start) == date(2025, 5, 31)


@pytest.mark.django_db
def test_new_account_starts_on_free_plan():
    plans = seed_plans()
    user = create_user()

    subscription = get_active_subscription(user)
    assert subscription.plan == plans["Free"]
    assert subscription.end_date is None
    assert subscription.auto_renew is False
    entry = SubscriptionAuditLog.objects.get(account=user)
    assert entry.action == SubscriptionAuditLog.Action.CREATED
    assert entry.actor == "system.signup"
    assert not PaymentTransaction.objects.filter(account=user).exists()


@pytest.mark.django_db
def test_free_to_paid_to_upgrade_records_each_step():
    seed_plans()
    starter = create_plan("Starter", "10.00")
    growth = create_plan("Growth", "20.00")
    user = create_user()

    with patch(GATEWAY_LOOKUP, return_value=succeeded_intent("pi_starter", "10.00", account=user, plan=starter)):
        first = create_subscription(user, starter.pk, "pi_starter")
    with patch(GATEWAY_LOOKUP, return_value=succeeded_intent("pi_growth", "20.00", account=user, plan=growth)):
        second = create_subscription(user, growth.pk, "pi_growth")

    assert first.action == "created"
    assert first.subscription.auto_renew is True
    assert first.subscription.end_date == add_months(first.subscription.start_date, 1)
    assert second.action == "upgraded"
    assert second.previous.pk == first.subscription.pk

    first.subscription.refresh_from_db()
    assert first.subscription.status == Subscription.Status.ENDED
    assert first.subscription.ended_at is not None

    assert list(_active_rows(user)) == [second.subscription]
    actions = list(
        SubscriptionAuditLog.objects.filter(account=user).order_by("created_at", "id").values_list("action", flat=True)
    )
    assert actions == ["created", "created", "upgraded"]

    payment = PaymentTransaction.objects.get(transaction_reference="pi_growth")
    assert payment.status == PaymentTransaction.Status.COMPLETED
    assert payment.amount == Decimal("20.00")
    assert payment.reference_kind == ReferenceKind.GATEWAY
    assert second.audit_entries[0].payment_status == SubscriptionAuditLog.PaymentStatus.COMPLETED


@pytest.mark.django_db
def test_downgrade_between_paid_plans():
    seed_plans()
    starter = create_plan("Starter", "10.00")
    growth = create_plan("Growth", "20.00")
    user = create_user()

    with patch(GATEWAY_LOOKUP, return_value=succeeded_intent("pi_growth", "20.00", account=user, plan=growth)):
        create_subscription(user, growth.pk, "pi_growth")
    with patch(GATEWAY_LOOKUP, return_value=succeeded_intent("pi_starter", "10.00", account=user, plan=starter)):
        result = create_subscription(user, starter.pk, "pi_starter")

    assert result.action == "downgraded"
    assert _active_rows(user).get().plan == starter


@pytest.mark.django_db
def test_paid_plan_requires_gateway_reference():
    plans = seed_plans()
    user = create_user()

    with pytest.raises(PaymentVerificationError):
        create_subscription(user, plans["Monthly"].pk)

    assert _active_rows(user).get().plan == plans["Free"]
    assert SubscriptionAuditLog.objects.filter(account=user).count() == 1


@pytest.mark.django_db
@pytest.mark.parametrize(
    "intent",
    [
        succeeded_intent("pi_x", "15.00", status="requires_payment_method"),
        succeeded_intent("pi_x", "10.00"),
        succeeded_intent("pi_x", "15.00", currency="eur"),
    ],
)
def test_unverified_charge_leaves_state_untouched(intent):
    plans = seed_plans()
    user = create_user()

    with patch(GATEWAY_LOOKUP, return_value=intent):
        with pytest.raises(PaymentVerificationError):
            create_subscription(user, plans["Monthly"].pk, "pi_x")

    assert _active_rows(user).get().plan == plans["Free"]
    assert not PaymentTransaction.objects.filter(account=user).exists()


@pytest.mark.django_db
def test_charge_paid_by_another_account_is_rejected():
    plans = seed_plans()
    alice = create_user()
    bob = create_user("bob")
    bobs_intent = succeeded_intent("pi_bob", "15.00", account=bob, plan=plans["Monthly"])

    with patch(GATEWAY_LOOKUP, return_value=bobs_intent):
        with pytest.raises(PaymentVerificationError):
            create_subscription(alice, plans["Monthly"].pk, "pi_bob")
        result = create_subscription(bob, plans["Monthly"].pk, "pi_bob")

    assert _active_rows(alice).get().plan == plans["Free"]
    assert result.subscription.payment_reference == "pi_bob"


@pytest.mark.django_db
def test_charge_for_another_plan_or_without_metadata_is_rejected():
    plans = seed_plans()
    user = create_user()
    other_monthly = create_plan("Monthly Plus", "15.00")

    for intent in (
        succeeded_intent("pi_other", "15.00", account=user, plan=other_monthly),
        succeeded_intent("pi_other", "15.00"),
    ):
        with patch(GATEWAY_LOOKUP, return_value=intent):
            with pytest.raises(PaymentVerificationError):
                create_subscription(user, plans["Monthly"].pk, "pi_other")

    assert not PaymentTransaction.objects.filter(account=user).exists()


@pytest.mark.django_db
def test_free_plan_ignores_caller_reference():
    plans = seed_plans()
    user = create_user()
    admin = create_user("root", is_staff=True)
    assign_plan(user, plans["Monthly"].pk, admin_user=admin)

    result = create_subscription(user, plans["Free"].pk, "pi_free")

    assert result.subscription.reference_kind == ReferenceKind.SYNTHETIC
    assert result.subscription.payment_reference.startswith("FREE_PLAN_")
    assert not SubscriptionAuditLog.objects.filter(payment_reference="pi_free").exists()


@pytest.mark.django_db
def test_failed_write_leaves_no_partial_state():
    plans = seed_plans()
    user = create_user()
    admin = create_user("root", is_staff=True)
    before = (Subscription.objects.count(), SubscriptionAuditLog.objects.count())

    with patch(
        "billing.services.subscription_lifecycle._record_transaction",
        side_effect=DatabaseError("disk full"),
    ):
        with pytest.raises(AtomicWriteFailure):
            assign_plan(user, plans["Monthly"].pk, admin_user=admin)

    assert (Subscription.objects.count(), SubscriptionAuditLog.objects.count()) == before
    assert _active_rows(user).get().plan == plans["Free"]
    assert not PaymentTransaction.objects.exists()


@pytest.mark.django_db
def test_storage_rejects_second_active_subscription():
    plans = seed_plans()
    user = create_user()
    current = _active_rows(user).get()

    with pytest.raises(IntegrityError):
        with transaction.atomic():
            Subscription.objects.create(
                account=user,
                plan=plans["Monthly"],
                status=Subscription.Status.ACTIVE,
                start_date=current.start_date,
                payment_reference="pi_second",
            )

    assert _active_rows(user).count() == 1


@pytest.mark.django_db(transaction=True)
def test_concurrent_transitions_keep_one_active_subscription():
    plans = seed_plans()
    user = create_user()
    admin = create_user("root", is_staff=True)
    barrier = threading.Barrier(2)
    errors = []

    def assign(plan):
        barrier.wait()
        try:
            assign_plan(user, plan.pk, admin_user=admin)
        except (AtomicWriteFailure, DatabaseError) as exc:
            # SQLite may refuse a concurrent writer outright; the unit still rolls back.
            errors.append(exc)
        finally:
            connection.close()

    workers = [threading.Thread(target=assign, args=(plan,)) for plan in (plans["Monthly"], plans["Yearly"])]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert _active_rows(user).count() == 1
    applied = PaymentTransaction.objects.filter(account=user).count()
    assert applied == 2 - len(errors)
    assert Subscription.objects.filter(account=user).count() == 1 + applied


@pytest.mark.django_db
def test_reserved_reference_is_rejected_as_gateway_reference():
    plans = seed_plans()
    user = create_user()

    with pytest.raises(PaymentVerificationError):
        create_subscription(user, plans["Monthly"].pk, "ADMIN_ASSIGNED_1_1_abc")


@pytest.mark.django_db
def test_without_verification_audit_entry_stays_pending(settings):
    settings.BILLING_VERIFY_GATEWAY_PAYMENTS = False
    plans = seed_plans()
    user = create_user()

    with patch(GATEWAY_LOOKUP) as lookup:
        result = create_subscription(user, plans["Monthly"].pk, "pi_unverified")

    lookup.assert_not_called()
    assert result.audit_entries[0].payment_status == SubscriptionAuditLog.PaymentStatus.PENDING
    assert result.transaction.status == PaymentTransaction.Status.COMPLETED
    assert result.subscription.payment_reference == "pi_unverified"


@pytest.mark.django_db
def test_without_verification_missing_reference_gets_internal_marker(settings):
    settings.BILLING_VERIFY_GATEWAY_PAYMENTS = False
    plans = seed_plans()
    user = create_user()

    result = create_subscription(user, plans["Monthly"].pk)

    assert result.subscription.payment_reference.startswith("TXN_")
    assert result.subscription.reference_kind == ReferenceKind.SYNTHETIC


@pytest.mark.django_db
def test_gateway_reference_cannot_be_applied_twice(settings):
    settings.BILLING_VERIFY_GATEWAY_PAYMENTS = False
    plans = seed_plans()
    user = create_user()
    other = create_user("bob")

    create_subscription(user, plans["Monthly"].pk, "pi_once")
    with pytest.raises(DuplicatePaymentReference):
        create_subscription(other, plans["Yearly"].pk, "pi_once")

    assert _active_rows(other).get().plan == plans["Free"]


@pytest.mark.django_db
def test_unknown_or_inactive_plan_is_rejected():
    seed_plans()
    retired = create_plan("Legacy", "5.00", is_active=False)
    user = create_user()

    with pytest.raises(PlanNotFound):
        create_subscription(user, retired.pk, "pi_legacy")
    with pytest.raises(PlanNotFound):
        create_subscription(user, 999999, "pi_missing")


@pytest.mark.django_db
def test_cancel_returns_account_to_free_plan_atomically():
    plans = seed_plans()
    user = create_user()
    with patch(GATEWAY_LOOKUP, return_value=succeeded_intent("pi_monthly", "15.00", account=user, plan=plans["Monthly"])):
        paid = create_subscription(user, plans["Monthly"].pk, "pi_monthly")

    result = cancel_subscription(user)

    assert result.action == "cancelled"
    assert result.previous.pk == paid.subscription.pk
    assert result.subscription.plan == plans["Free"]
    assert [entry.action for entry in result.audit_entries] == ["cancelled", "created"]

    cancelled_entry = result.audit_entries[0]
    assert cancelled_entry.amount == Decimal("0")
    assert cancelled_entry.payment_reference.startswith("CANCELLED_")
    assert result.audit_entries[1].payment_reference.startswith("FREE_PLAN_")

    paid.subscription.refresh_from_db()
    assert paid.subscription.status == Subscription.Status.ENDED
    assert paid.subscription.auto_renew is False
    assert _active_rows(user).get() == result.subscription
    assert PaymentTransaction.objects.filter(account=user).count() == 1


@pytest.mark.django_db
def test_cancel_on_free_plan_is_rejected():
    seed_plans()
    user = create_user()

    with pytest.raises(AlreadyOnFreePlan):
        cancel_subscription(user)


@pytest.mark.django_db
def test_cancel_without_subscription_is_rejected(settings):
    settings.BILLING_AUTO_ASSIGN_FREE_PLAN = False
    seed_plans()
    user = create_user()

    with pytest.raises(NoActiveSubscription):
        cancel_subscription(user)


@pytest.mark.django_db
def test_assign_plan_requires_staff():
    plans = seed_plans()
    user = create_user()
    not_staff = create_user("mallory")

    with pytest.raises(UnauthorizedPlanAssignment):
        assign_plan(user, plans["Yearly"].pk, admin_user=not_staff)

    assert _active_rows(user).get().plan == plans["Free"]


@pytest.mark.django_db
def test_assign_plan_settles_with_administrative_reference():
    plans = seed_plans()
    user = create_user()
    admin = create_user("root", is_staff=True)

    with patch(GATEWAY_LOOKUP) as lookup:
        result = assign_plan(user, plans["Yearly"].pk, admin_user=admin, reason="partner deal")

    lookup.assert_not_called()
    assert result.subscription.reference_kind == ReferenceKind.ADMINISTRATIVE
    assert result.subscription.payment_reference.startswith(f"ADMIN_ASSIGNED_{admin.pk}_")
    assert result.audit_entries[0].payment_status == SubscriptionAuditLog.PaymentStatus.COMPLETED
    assert result.audit_entries[0].actor == f"admin:{admin.pk}"
    assert result.audit_entries[0].details["reason"] == "partner deal"
    assert result.transaction.status == PaymentTransaction.Status.COMPLETED
    assert result.subscription.end_date == add_months(result.subscription.start_date, 12)


@pytest.mark.django_db
def test_place_on_free_plan_supersedes_paid_subscription():
    plans = seed_plans()
    user = create_user()
    admin = create_user("root", is_staff=True)
    assign_plan(user, plans["Monthly"].pk, admin_user=admin)

    result = place_on_free_plan(user, actor="support")

    assert result.action == "downgraded"
    assert _active_rows(user).get().plan == plans["Free"]


@pytest.mark.django_db
def test_single_active_subscription_across_transition_sequence(settings):
    settings.BILLING_VERIFY_GATEWAY_PAYMENTS = False
    plans = seed_plans()
    user = create_user()
    admin = create_user("root", is_staff=True)

    create_subscription(user, plans["Monthly"].pk, "pi_1")
    assert _active_rows(user).count() == 1
    create_subscription(user, plans["Yearly"].pk, "pi_2")
    assert _active_rows(user).count() == 1
    cancel_subscription(user)
    assert _active_rows(user).count() == 1
    assign_plan(user, plans["Monthly"].pk, admin_user=admin)
    assert _active_rows(user).count() == 1

    assert Subscription.objects.filter(account=user).count() == 5


@pytest.mark.django_db
def test_subscription_details_and_stats():
    plans = seed_plans()
    admin = create_user("root", is_staff=True)
    users = [create_user(f"user{i}") for i in range(3)]
    assign_plan(users[0], plans["Monthly"].pk, admin_user=admin)
    assign_plan(users[1], plans["Yearly"].pk, admin_user=admin)

    details = get_subscription_details(users[0])
    assert details.subscription.plan == plans["Monthly"]
    assert [entry.action for entry in details.recent_audit_entries] == ["created", "created"]
    assert len(details.recent_transactions) == 1

    stats = get_subscription_stats()
    by_type = {row["plan_type"]: row for row in stats["by_plan_type"]}
    assert stats["total_active"] == 4
    assert by_type["free"]["count"] == 2
    assert by_type["monthly"]["revenue"] == Decimal("15.00")
    assert by_type["yearly"]["count"] == 1
