"""
Billing permission checks

Two audiences reach the billing API:
1. Account holders, who only ever see their own subscription, history and payments.
2. Billing administrators (staff users), who may list every account and assign plans
   without a gateway charge.
"""
import logging

from django.contrib.auth import get_user_model
from rest_framework.exceptions import NotAuthenticated, NotFound
from rest_framework.permissions import BasePermission

from billing.models import PaymentTransaction

logger = logging.getLogger(__name__)
User = get_user_model()


class IsBillingAdmin(BasePermission):
    """Grant access to active staff users only."""

    message = "Billing administration requires staff privileges."

    def has_permission(self, request, view) -> bool:
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        if user.is_active and user.is_staff:
            return True
        logger.warning("User %s denied access to %s", user.pk, view.__class__.__name__)
        return False


def get_owned_transaction(user: User, transaction_id) -> PaymentTransaction:
    """
    Return the payment transaction if it belongs to ``user``.

    Transactions of other accounts are reported as missing rather than
    forbidden so their identifiers cannot be discovered.
    """
    if not user or not user.is_authenticated:
        raise NotAuthenticated("Authentication required.")

    try:
        return PaymentTransaction.objects.select_related("plan", "account").get(
            pk=transaction_id,
            account=user,
        )
    except PaymentTransaction.DoesNotExist:
        logger.info("User %s requested unknown or foreign transaction %s", user.pk, transaction_id)
        raise NotFound("Transaction not found.")
