import logging
from decimal import Decimal
from typing import Dict, List

from django.apps import AppConfig
from django.db.models.signals import post_migrate

logger = logging.getLogger(__name__)

_PLAN_FIELDS = ("type", "price", "site_limit", "ai_call_limit", "description")


def ensure_default_plans(*, update: bool = False) -> Dict[str, List[str]]:
    """Ensure the plans listed in ``BILLING_DEFAULT_PLANS`` exist.

    Existing plans are only rewritten when ``update`` is set, so prices edited
    by operators survive a migrate run.
    """

    from django.conf import settings
    from django.db import OperationalError, ProgrammingError
    from .models import Plan

    created, updated = [], []
    plan_config = getattr(settings, "BILLING_DEFAULT_PLANS", []) or []

    try:
        for config in plan_config:
            plan_name = config["name"]
            defaults = {
                "type": config["type"],
                "price": Decimal(str(config.get("price", 0))),
                "site_limit": config.get("site_limit"),
                "ai_call_limit": config.get("ai_call_limit"),
                "description": config.get("description", f"Auto-generated {plan_name} plan"),
            }

            plan, was_created = Plan.objects.get_or_create(name=plan_name, defaults=defaults)
            if was_created:
                created.append(plan_name)
                continue
            if not update:
                continue

            fields_to_update = []
            for field in _PLAN_FIELDS:
                expected = defaults[field]
                if getattr(plan, field) != expected:
                    setattr(plan, field, expected)
                    fields_to_update.append(field)

            if fields_to_update:
                plan.save(update_fields=[*fields_to_update, "updated_at"])
                updated.append(plan_name)

    except (OperationalError, ProgrammingError):
        logger.debug("Database not ready for plan initialisation.")
        return {"created": [], "updated": []}

    if created or updated:
        logger.info("Plan initialisation completed. created=%s updated=%s", created, updated)
    else:
        logger.info("Plan initialisation completed. No changes required.")

    return {"created": created, "updated": updated}


def init_plans_after_migrate(sender, **kwargs):
    """Called automatically after migrations to initialize default plans."""
    logger.info("[Billing] Running ensure_default_plans() after migrate")
    ensure_default_plans()


class BillingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'billing'

    def ready(self):
        # Connect signal so plans are ensured after every migrate run
        post_migrate.connect(init_plans_after_migrate, sender=self)
