# billing/__init__.py
"""
Billing module for Stripe device subscriptions.

Provides:
- Stripe Checkout and Customer Portal session creation
- Webhook verification
- Lifecycle event reconciliation onto device entitlements
"""

from billing.reconciler import (
    EntitlementReconciler,
    ReconcileOutcome,
    ReconcileResult,
)
from billing.service import (
    create_checkout_session,
    get_customer_portal_url,
)
from billing.stripe_client import StripeProcessor
from billing.webhooks import handle_webhook_delivery

__all__ = [
    "EntitlementReconciler",
    "ReconcileOutcome",
    "ReconcileResult",
    "create_checkout_session",
    "get_customer_portal_url",
    "StripeProcessor",
    "handle_webhook_delivery",
]
