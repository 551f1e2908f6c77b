# billing/webhooks.py
"""
Stripe webhook handling with signature verification.

Security:
- All webhooks verified using Stripe signing secret
- Never trust unverified payloads
- Log all webhook events for audit trail

Only a failed signature check rejects a delivery. Anything that goes
wrong after verification is acknowledged, since Stripe redelivers on
non-2xx and a permanently malformed event would be retried forever.
"""

from __future__ import annotations

import json
import logging

import stripe

from billing.reconciler import EntitlementReconciler, ReconcileOutcome, ReconcileResult
from billing.stripe_client import get_webhook_secret

_logger = logging.getLogger(__name__)

# Maximum age of a signed delivery, in seconds
DEFAULT_TOLERANCE_SECONDS = 300


class WebhookError(Exception):
    """Webhook processing error."""
    pass


class SignatureVerificationError(WebhookError):
    """Webhook signature verification failed."""
    pass


def verify_webhook_signature(
    payload: bytes,
    signature: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> None:
    """
    Verify a Stripe webhook signature.

    Args:
        payload: Raw request body bytes
        signature: Stripe-Signature header value
        tolerance: Maximum allowed age of the signed timestamp

    Raises:
        SignatureVerificationError: If signature is missing or invalid
    """
    if not signature:
        raise SignatureVerificationError("Missing signature")

    webhook_secret = get_webhook_secret()
    if not webhook_secret:
        raise SignatureVerificationError("Webhook secret not configured")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise SignatureVerificationError("Payload is not valid UTF-8")

    try:
        stripe.WebhookSignature.verify_header(body, signature, webhook_secret, tolerance)
    except stripe.SignatureVerificationError as e:
        _logger.warning(f"Webhook signature verification failed: {e}")
        raise SignatureVerificationError("Invalid webhook signature")


def decode_event(payload: bytes) -> dict:
    """
    Decode a verified payload into an event envelope.

    Raises:
        WebhookError: If the payload is not a JSON event object
    """
    try:
        event = json.loads(payload)
    except ValueError as e:
        raise WebhookError(f"Failed to parse webhook: {e}")

    if not isinstance(event, dict) or not event.get("type"):
        raise WebhookError("Webhook payload is not an event")

    return event


def process_webhook_event(event: dict, reconciler: EntitlementReconciler) -> ReconcileResult:
    """
    Process a verified Stripe webhook event.

    Args:
        event: Decoded Stripe event
        reconciler: Reconciler bound to the entitlement store

    Returns:
        Reconciliation result
    """
    event_type = event.get("type", "unknown")
    event_id = event.get("id", "unknown")

    _logger.info(f"Processing webhook event: {event_type}", extra={"event_id": event_id})

    return reconciler.reconcile(event)


def handle_webhook_delivery(
    payload: bytes,
    signature: str,
    reconciler: EntitlementReconciler,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> ReconcileResult:
    """
    Verify, decode and reconcile one delivery.

    Raises:
        SignatureVerificationError: Only when authenticity cannot be established
    """
    verify_webhook_signature(payload, signature, tolerance)

    try:
        event = decode_event(payload)
    except WebhookError as e:
        _logger.error(f"Webhook error: {e}")
        return ReconcileResult(ReconcileOutcome.FAILED, "unknown", detail=str(e))

    return process_webhook_event(event, reconciler)
