# persistence/models.py
"""
Entitlement data models.

One EntitlementRecord per device. Absence of a record is equivalent
to DEFAULT_STATUS (free / inactive / no expiry).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Plan(str, Enum):
    """Billing interval tier. Descriptive only."""

    FREE = "free"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class EntitlementStatus(str, Enum):
    """Processor lifecycle state. The sole entitlement authority."""

    INACTIVE = "inactive"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"

    @classmethod
    def from_stripe(cls, value: Optional[str]) -> EntitlementStatus:
        """
        Map a Stripe subscription status onto the local vocabulary.

        canceled, unpaid, incomplete, incomplete_expired, paused and
        anything unknown collapse to INACTIVE.
        """
        try:
            return cls(value)
        except ValueError:
            return cls.INACTIVE

    @property
    def is_entitled(self) -> bool:
        return self in (EntitlementStatus.TRIALING, EntitlementStatus.ACTIVE)


@dataclass(frozen=True)
class EntitlementRecord:
    """
    Latest known entitlement for one device.

    Attributes:
        device_id: Client-generated installation identifier (primary key)
        plan: free, monthly or yearly
        status: inactive, trialing, active or past_due
        expires_at: Trial/period end in ms since epoch, or None
        customer_id: Stripe customer ID, sticky once set
        updated_at: ISO timestamp of the last write
    """

    device_id: str
    plan: Plan = Plan.FREE
    status: EntitlementStatus = EntitlementStatus.INACTIVE
    expires_at: Optional[int] = None
    customer_id: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> EntitlementRecord:
        return cls(
            device_id=row["device_id"],
            plan=Plan(row["plan"]),
            status=EntitlementStatus.from_stripe(row["status"]),
            expires_at=row["expires_at"],
            customer_id=row["customer_id"],
            updated_at=row["updated_at"],
        )

    def to_status_dict(self) -> dict:
        """Client-facing view polled by the app."""
        return {
            "plan": self.plan.value,
            "status": self.status.value,
            "expiresAt": self.expires_at,
        }


def default_status() -> dict:
    """Status reported for a device with no record."""
    return {
        "plan": Plan.FREE.value,
        "status": EntitlementStatus.INACTIVE.value,
        "expiresAt": None,
    }
