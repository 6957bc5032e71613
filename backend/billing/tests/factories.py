from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from billing.apps import ensure_default_plans
from billing.models import Plan
from billing.services.payment_gateway import ChargeIntent

User = get_user_model()


def seed_plans():
    """Return the default catalog keyed by plan name, creating it if needed."""
    ensure_default_plans()
    return {plan.name: plan for plan in Plan.objects.filter(name__in=["Free", "Monthly", "Yearly"])}


def create_plan(name: str, price: str, plan_type: str = Plan.PlanType.MONTHLY, **extra) -> Plan:
    return Plan.objects.create(
        name=name,
        type=plan_type,
        price=Decimal(price),
        currency="usd",
        **extra,
    )


def create_user(username: str = "alice", password: str = "pass1234", **extra):
    return User.objects.create_user(username=username, password=password, email=f"{username}@example.com", **extra)


def auth_client(user=None):
    if user is None:
        user = create_user()
    client = APIClient()
    client.force_authenticate(user=user)
    return client, user


def succeeded_intent(
    intent_id: str,
    amount: str,
    currency: str = "usd",
    status: str = "succeeded",
    *,
    account=None,
    plan=None,
) -> ChargeIntent:
    """Charge intent as the gateway returns it, stamped for ``account`` and ``plan``."""
    metadata = {}
    if account is not None:
        metadata["account_id"] = str(account.pk)
    if plan is not None:
        metadata["plan_id"] = str(plan.pk)
    return ChargeIntent(intent_id=intent_id, status=status, amount=Decimal(amount), currency=currency, metadata=metadata)
