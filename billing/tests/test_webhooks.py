"""
Tests for webhook verification and delivery handling.

Signatures are computed the way Stripe signs deliveries, so the real
SDK verification routine is exercised.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from unittest.mock import MagicMock, patch

import pytest

from billing.reconciler import ReconcileOutcome, ReconcileResult

WEBHOOK_SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header for payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture(autouse=True)
def webhook_secret():
    with patch.dict(os.environ, {"STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET}):
        yield


class TestVerifyWebhookSignature:
    """Tests for verify_webhook_signature."""

    def test_valid_signature(self):
        from billing.webhooks import verify_webhook_signature

        payload = b'{"id": "evt_1", "type": "customer.created"}'
        verify_webhook_signature(payload, sign(payload))  # Should not raise

    def test_missing_signature(self):
        from billing.webhooks import SignatureVerificationError, verify_webhook_signature

        with pytest.raises(SignatureVerificationError, match="Missing"):
            verify_webhook_signature(b"{}", "")

    def test_requires_secret(self):
        from billing.webhooks import SignatureVerificationError, verify_webhook_signature

        with patch("billing.webhooks.get_webhook_secret", return_value=""):
            with pytest.raises(SignatureVerificationError, match="not configured"):
                verify_webhook_signature(b"{}", sign(b"{}"))

    def test_wrong_secret(self):
        from billing.webhooks import SignatureVerificationError, verify_webhook_signature

        payload = b'{"id": "evt_1"}'
        with pytest.raises(SignatureVerificationError, match="Invalid"):
            verify_webhook_signature(payload, sign(payload, secret="whsec_other"))

    def test_tampered_payload(self):
        from billing.webhooks import SignatureVerificationError, verify_webhook_signature

        header = sign(b'{"id": "evt_1"}')
        with pytest.raises(SignatureVerificationError):
            verify_webhook_signature(b'{"id": "evt_2"}', header)

    def test_stale_timestamp_outside_tolerance(self):
        from billing.webhooks import SignatureVerificationError, verify_webhook_signature

        payload = b'{"id": "evt_1"}'
        header = sign(payload, timestamp=int(time.time()) - 3600)

        with pytest.raises(SignatureVerificationError):
            verify_webhook_signature(payload, header, tolerance=300)

    def test_stale_timestamp_inside_wider_tolerance(self):
        from billing.webhooks import verify_webhook_signature

        payload = b'{"id": "evt_1"}'
        header = sign(payload, timestamp=int(time.time()) - 3600)

        verify_webhook_signature(payload, header, tolerance=7200)

    def test_garbage_header(self):
        from billing.webhooks import SignatureVerificationError, verify_webhook_signature

        with pytest.raises(SignatureVerificationError):
            verify_webhook_signature(b"{}", "not-a-signature")

    def test_non_utf8_payload(self):
        from billing.webhooks import SignatureVerificationError, verify_webhook_signature

        with pytest.raises(SignatureVerificationError):
            verify_webhook_signature(b"\xff\xfe", "t=1,v1=abc")


class TestDecodeEvent:
    """Tests for decode_event."""

    def test_decodes_event(self):
        from billing.webhooks import decode_event

        event = decode_event(b'{"id": "evt_1", "type": "invoice.payment_failed", "data": {"object": {}}}')
        assert event["type"] == "invoice.payment_failed"

    @pytest.mark.parametrize("payload", [b"not json", b"[]", b'{"id": "evt_1"}', b'"string"'])
    def test_rejects_non_events(self, payload):
        from billing.webhooks import WebhookError, decode_event

        with pytest.raises(WebhookError):
            decode_event(payload)


class TestHandleWebhookDelivery:
    """Tests for handle_webhook_delivery."""

    def test_verified_event_is_reconciled(self):
        from billing.webhooks import handle_webhook_delivery

        reconciler = MagicMock()
        reconciler.reconcile.return_value = ReconcileResult(ReconcileOutcome.IGNORED, "customer.created")
        payload = json.dumps({"id": "evt_1", "type": "customer.created", "data": {"object": {}}}).encode()

        result = handle_webhook_delivery(payload, sign(payload), reconciler)

        assert result.outcome is ReconcileOutcome.IGNORED
        reconciler.reconcile.assert_called_once()
        assert reconciler.reconcile.call_args[0][0]["id"] == "evt_1"

    def test_bad_signature_never_reaches_reconciler(self):
        from billing.webhooks import SignatureVerificationError, handle_webhook_delivery

        reconciler = MagicMock()
        payload = b'{"id": "evt_1", "type": "customer.subscription.deleted"}'

        with pytest.raises(SignatureVerificationError):
            handle_webhook_delivery(payload, sign(payload, secret="whsec_wrong"), reconciler)

        reconciler.reconcile.assert_not_called()

    def test_signed_malformed_payload_is_failed_not_raised(self):
        from billing.webhooks import handle_webhook_delivery

        reconciler = MagicMock()
        payload = b"{not json"

        result = handle_webhook_delivery(payload, sign(payload), reconciler)

        assert result.outcome is ReconcileOutcome.FAILED
        reconciler.reconcile.assert_not_called()
