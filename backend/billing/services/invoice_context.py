"""Fields handed to the external invoice renderer for one payment transaction."""
from __future__ import annotations

from typing import Any, Dict

from billing.models import PaymentTransaction


def build_invoice_context(payment: PaymentTransaction) -> Dict[str, Any]:
    plan = payment.plan
    account = payment.account
    return {
        "transaction_id": str(payment.id),
        "reference": payment.transaction_reference,
        "reference_kind": payment.reference_kind,
        "status": payment.status,
        "amount": str(payment.amount),
        "currency": payment.currency.upper(),
        "plan": {
            "id": plan.pk,
            "name": plan.name,
            "type": plan.type,
        },
        "account": {
            "id": account.pk,
            "username": account.get_username(),
            "email": account.email,
            "name": account.get_full_name(),
        },
        "subscription_id": payment.subscription_id,
        "created_at": payment.created_at.isoformat(),
        "updated_at": payment.updated_at.isoformat(),
    }


__all__ = ["build_invoice_context"]
