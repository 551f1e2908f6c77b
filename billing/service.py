# billing/service.py
"""
Billing service for Stripe checkout and portal sessions.

Handles:
- Checkout session creation (device linkage baked into metadata)
- Customer portal session creation
"""

from __future__ import annotations

import logging
from typing import Optional

from billing.products import CHECKOUT_PLANS, get_price_config
from billing.stripe_client import DEVICE_METADATA_KEY, is_billing_enabled
from persistence.entitlements import EntitlementStore

_logger = logging.getLogger(__name__)

DEFAULT_TRIAL_PERIOD_DAYS = 7
DEFAULT_SUCCESS_URL = "eyebalance://success"
DEFAULT_CANCEL_URL = "eyebalance://cancel"
DEFAULT_PORTAL_RETURN_URL = "eyebalance://subscription"


class BillingError(Exception):
    """Base billing error."""
    pass


class BillingDisabledError(BillingError):
    """Billing is not enabled."""
    pass


class InvalidCheckoutRequest(BillingError):
    """Checkout request has an unknown plan or no device."""
    pass


class CheckoutError(BillingError):
    """Checkout session creation failed."""
    pass


class PortalError(BillingError):
    """Portal session creation failed."""
    pass


class NoCustomerError(PortalError):
    """Device has no Stripe customer yet."""
    pass


def validate_checkout_request(plan: Optional[str], device_id: Optional[str]) -> None:
    """
    Raises:
        InvalidCheckoutRequest: If plan is not purchasable or device_id is empty
    """
    if not device_id or not isinstance(device_id, str):
        raise InvalidCheckoutRequest("deviceId is required")
    if plan not in CHECKOUT_PLANS:
        raise InvalidCheckoutRequest(f"Unknown plan: {plan}")


def create_checkout_session(
    processor,
    plan: str,
    device_id: str,
    success_url: str = DEFAULT_SUCCESS_URL,
    cancel_url: str = DEFAULT_CANCEL_URL,
    trial_period_days: int = DEFAULT_TRIAL_PERIOD_DAYS,
) -> dict:
    """
    Create a Stripe Checkout session for a device subscription.

    The device ID goes into both the session metadata and the
    subscription metadata so lifecycle events can be linked back.

    Args:
        processor: Stripe gateway
        plan: "monthly" or "yearly"
        device_id: Client installation identifier
        success_url: URL to redirect on success
        cancel_url: URL to redirect on cancel
        trial_period_days: Free trial length (0 disables the trial)

    Returns:
        Dict with session_id and checkout_url

    Raises:
        InvalidCheckoutRequest: If plan/device are invalid
        BillingDisabledError: If billing is not enabled
        CheckoutError: If session creation fails
    """
    validate_checkout_request(plan, device_id)

    if not is_billing_enabled():
        raise BillingDisabledError("Billing is not enabled. Check STRIPE_SECRET_KEY.")

    price = get_price_config(plan)

    subscription_data = {"metadata": {DEVICE_METADATA_KEY: device_id}}
    if trial_period_days > 0:
        subscription_data["trial_period_days"] = trial_period_days

    session_params = {
        "mode": "subscription",
        "line_items": [
            {
                "price": price.price_id,
                "quantity": 1,
            }
        ],
        "subscription_data": subscription_data,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": {
            DEVICE_METADATA_KEY: device_id,
            "plan": plan,
        },
    }

    try:
        session = processor.create_checkout_session(**session_params)
    except Exception as e:
        _logger.error(f"Checkout session creation failed: {e}")
        raise CheckoutError(f"Failed to create checkout session: {e}")

    _logger.info(
        f"Created {plan} checkout session",
        extra={"session_id": session.id, "device_id": device_id},
    )

    return {
        "session_id": session.id,
        "checkout_url": session.url,
    }


def get_customer_portal_url(
    processor,
    store: EntitlementStore,
    device_id: str,
    return_url: str = DEFAULT_PORTAL_RETURN_URL,
) -> str:
    """
    Create a Stripe Customer Portal session URL.

    Args:
        processor: Stripe gateway
        store: Entitlement store holding the device's customer
        device_id: Client installation identifier
        return_url: URL to return to after portal

    Returns:
        Portal URL

    Raises:
        NoCustomerError: If the device has no Stripe customer
        PortalError: If the store or Stripe call fails
    """
    try:
        customer_id = store.get_customer_id(device_id) if device_id else None
    except Exception as e:
        _logger.error(f"Failed to look up customer: {e}")
        raise PortalError(f"Customer lookup failed: {e}")

    if not customer_id:
        raise NoCustomerError("No customer found")

    try:
        session = processor.create_portal_session(customer_id, return_url)
    except Exception as e:
        _logger.error(f"Failed to create portal session: {e}")
        raise PortalError(f"Failed to create portal session: {e}")

    return session.url
