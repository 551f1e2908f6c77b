"""Configure pytest for the billing service."""
import os
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# =============================================================================
# CI/Test Environment Configuration
# =============================================================================
# Set environment for tests BEFORE any imports
os.environ.setdefault("ENV", "test")
os.environ.setdefault("ENTITLEMENT_DB_PATH", ":memory:")

# Add project root so tests can import app, billing and persistence
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


# =============================================================================
# Shared fixtures
# =============================================================================


@pytest.fixture
def database():
    """Fresh in-memory database per test."""
    from persistence.db import Database

    db = Database(":memory:").open()
    yield db
    db.close()


@pytest.fixture
def store(database):
    from persistence.entitlements import EntitlementStore

    return EntitlementStore(database)


@pytest.fixture
def make_subscription():
    """Build a Stripe-shaped subscription payload."""

    def _make(
        sub_id="sub_123",
        device_id="abc",
        status="trialing",
        interval="month",
        customer="cus_1",
        trial_end=1700000000,
        current_period_end=None,
        metadata=None,
    ):
        if metadata is None:
            metadata = {"deviceId": device_id} if device_id else {}
        return {
            "id": sub_id,
            "object": "subscription",
            "status": status,
            "customer": customer,
            "trial_end": trial_end,
            "current_period_end": current_period_end,
            "metadata": metadata,
            "items": {
                "data": [
                    {
                        "price": {
                            "id": "price_test",
                            "recurring": {"interval": interval},
                        }
                    }
                ]
            },
        }

    return _make


@pytest.fixture
def make_event():
    """Wrap an object in a Stripe event envelope."""

    def _make(event_type, obj, event_id="evt_123"):
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }

    return _make


@pytest.fixture
def processor():
    """Mocked Stripe gateway."""
    mock = MagicMock()
    mock.create_checkout_session.return_value = MagicMock(
        id="cs_test_123",
        url="https://checkout.stripe.com/c/pay/cs_test_123",
    )
    mock.create_portal_session.return_value = MagicMock(
        url="https://billing.stripe.com/p/session/test_123",
    )
    return mock
