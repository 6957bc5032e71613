import logging

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import User

logger = logging.getLogger(__name__)


@receiver(post_save, sender=User)
def assign_free_plan_on_signup(sender, instance, created, raw=False, **kwargs):
    """
    Place every newly created account on the designated free plan so the
    usage limiter always finds an active subscription.
    """
    if not created or raw:
        return
    if not getattr(settings, "BILLING_AUTO_ASSIGN_FREE_PLAN", True):
        return

    from billing.services.plan_catalog import BillingConfigurationError
    from billing.services.subscription_lifecycle import place_on_free_plan

    try:
        place_on_free_plan(instance, actor="system.signup")
    except BillingConfigurationError:
        logger.warning("No active free plan configured; user %s created without a subscription.", instance.pk)
        return

    logger.info("New user created: %s (%s) placed on the free plan.", instance.username, instance.email)
