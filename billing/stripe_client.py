# billing/stripe_client.py
"""
Stripe SDK initialization and configuration.

Environment variables:
- STRIPE_SECRET_KEY: Stripe API secret key (required for production)
- STRIPE_WEBHOOK_SECRET: Webhook signing secret (required for webhooks)
- STRIPE_TEST_MODE: Set to "true" to use test mode (default: true)
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

import stripe

_logger = logging.getLogger(__name__)

# Pinned so subscription/invoice payload shapes stay stable
STRIPE_API_VERSION = "2023-10-16"

# Metadata key carrying the local device linkage on Stripe objects
DEVICE_METADATA_KEY = "deviceId"


def get_stripe_key() -> str:
    """Get Stripe secret key from environment."""
    return os.environ.get("STRIPE_SECRET_KEY", "")


def get_webhook_secret() -> str:
    """Get Stripe webhook signing secret from environment."""
    return os.environ.get("STRIPE_WEBHOOK_SECRET", "")


def is_test_mode() -> bool:
    """Check if running in Stripe test mode."""
    return os.environ.get("STRIPE_TEST_MODE", "true").lower() == "true"


def is_billing_enabled() -> bool:
    """Check if billing is enabled (Stripe key configured)."""
    key = get_stripe_key()
    return bool(key and len(key) > 10)


def init_stripe() -> bool:
    """
    Initialize Stripe SDK with API key.

    Returns:
        True if initialized successfully, False otherwise
    """
    key = get_stripe_key()
    if not key:
        _logger.warning("STRIPE_SECRET_KEY not set. Billing disabled.")
        return False

    stripe.api_key = key
    stripe.api_version = STRIPE_API_VERSION

    mode = "test" if is_test_mode() else "live"
    _logger.info(f"Stripe initialized in {mode} mode")

    return True


def get_stripe():
    """
    Get initialized Stripe module.

    Raises:
        RuntimeError: If Stripe is not initialized
    """
    if not stripe.api_key:
        if not init_stripe():
            raise RuntimeError("Stripe not initialized. Check STRIPE_SECRET_KEY.")

    return stripe


def object_id(value: Any) -> Optional[str]:
    """ID of a Stripe reference that may be a bare ID or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    try:
        return value.get("id")
    except AttributeError:
        return None


class StripeProcessor:
    """
    Thin gateway over the Stripe API calls this service makes.

    Injected into the reconciler and routes so tests can substitute it.
    """

    def retrieve_subscription(self, subscription_id: str):
        """Fetch the current subscription object from Stripe."""
        client = get_stripe()
        return client.Subscription.retrieve(subscription_id)

    def link_device(self, subscription_id: str, device_id: str):
        """Write the device linkage onto the subscription's metadata."""
        client = get_stripe()
        _logger.info(
            f"Linking subscription {subscription_id} to device",
            extra={"device_id": device_id},
        )
        return client.Subscription.modify(
            subscription_id,
            metadata={DEVICE_METADATA_KEY: device_id},
        )

    def create_checkout_session(self, **params):
        client = get_stripe()
        return client.checkout.Session.create(**params)

    def create_portal_session(self, customer_id: str, return_url: str):
        client = get_stripe()
        return client.billing_portal.Session.create(
            customer=customer_id,
            return_url=return_url,
        )
