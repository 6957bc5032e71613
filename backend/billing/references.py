"""Payment references tagged with their origin.

A reference is either the gateway's own charge intent identifier, an
administrative marker, or an internal synthetic marker. Markers carry a
reserved prefix and a millisecond timestamp with a random suffix, so they
never collide with gateway identifiers or with each other.
"""
from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from django.utils import timezone

from billing.constants import (
    ADMIN_REFERENCE_PREFIX,
    RESERVED_REFERENCE_PREFIXES,
    ReferenceKind,
    SyntheticReason,
)

_ACTOR_SAFE = re.compile(r"[^A-Za-z0-9]+")


class InvalidPaymentReference(ValueError):
    """Raised when a caller-supplied reference cannot be a gateway reference."""


def _stamp(moment: Optional[datetime] = None) -> str:
    moment = moment or timezone.now()
    return f"{int(moment.timestamp() * 1000)}_{secrets.token_hex(3)}"


@dataclass(frozen=True)
class PaymentReference:
    kind: str
    value: str

    @classmethod
    def gateway(cls, intent_id: str) -> "PaymentReference":
        value = (intent_id or "").strip()
        if not value:
            raise InvalidPaymentReference("Gateway reference must not be empty.")
        if value.startswith(RESERVED_REFERENCE_PREFIXES):
            raise InvalidPaymentReference(f"'{value}' uses a prefix reserved for internal markers.")
        return cls(kind=ReferenceKind.GATEWAY, value=value)

    @classmethod
    def administrative(cls, actor: str, *, moment: Optional[datetime] = None) -> "PaymentReference":
        actor_part = _ACTOR_SAFE.sub("-", str(actor)).strip("-") or "admin"
        return cls(kind=ReferenceKind.ADMINISTRATIVE, value=f"{ADMIN_REFERENCE_PREFIX}_{actor_part}_{_stamp(moment)}")

    @classmethod
    def synthetic(cls, reason: str, *, moment: Optional[datetime] = None) -> "PaymentReference":
        if reason not in SyntheticReason.values:
            raise ValueError(f"Unknown synthetic reference reason '{reason}'.")
        return cls(kind=ReferenceKind.SYNTHETIC, value=f"{reason}_{_stamp(moment)}")

    @property
    def is_gateway(self) -> bool:
        return self.kind == ReferenceKind.GATEWAY

    def __str__(self) -> str:
        return self.value


__all__ = ["InvalidPaymentReference", "PaymentReference"]
