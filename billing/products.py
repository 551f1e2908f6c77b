# billing/products.py
"""
Stripe price configuration.

Products:
- EyeBalance monthly subscription
- EyeBalance yearly subscription

Price IDs should be set via environment variables for flexibility
between test and production environments.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from persistence.models import Plan


@dataclass(frozen=True)
class PriceConfig:
    """Subscription price configuration."""
    plan: Plan
    price_id: str


# Default test price IDs (create in Stripe Dashboard)
DEFAULT_MONTHLY_PRICE_ID = "price_1Sk8Y50V3msArFU1a5GYycxV"
DEFAULT_YEARLY_PRICE_ID = "price_1Sjtj10V3msArFU1pteEpDbb"

# Plans a client may start a checkout for
CHECKOUT_PLANS = (Plan.MONTHLY.value, Plan.YEARLY.value)

YEARLY_INTERVAL = "year"


def get_monthly_price_id() -> str:
    """Get the monthly price ID from environment."""
    return os.environ.get("STRIPE_PRICE_MONTHLY", DEFAULT_MONTHLY_PRICE_ID)


def get_yearly_price_id() -> str:
    """Get the yearly price ID from environment."""
    return os.environ.get("STRIPE_PRICE_YEARLY", DEFAULT_YEARLY_PRICE_ID)


def get_price_config(plan: str) -> Optional[PriceConfig]:
    """Get price configuration for a checkout plan, or None if not purchasable."""
    if plan == Plan.MONTHLY.value:
        return PriceConfig(plan=Plan.MONTHLY, price_id=get_monthly_price_id())
    if plan == Plan.YEARLY.value:
        return PriceConfig(plan=Plan.YEARLY, price_id=get_yearly_price_id())
    return None


def plan_from_interval(interval: Optional[str]) -> Plan:
    """Yearly if the billing interval is "year", otherwise monthly."""
    return Plan.YEARLY if interval == YEARLY_INTERVAL else Plan.MONTHLY


def plan_from_price_id(price_id: Optional[str]) -> Optional[Plan]:
    """
    Determine plan from a Stripe price ID.

    Returns:
        Plan or None if not a known price
    """
    if not price_id:
        return None
    if price_id == get_yearly_price_id():
        return Plan.YEARLY
    if price_id == get_monthly_price_id():
        return Plan.MONTHLY
    return None
