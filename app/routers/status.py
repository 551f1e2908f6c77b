# app/routers/status.py
"""
Subscription status endpoint polled by the mobile app.

Unknown devices and store failures both report the free/inactive
default; this path never surfaces an error to the client.
"""

import logging

from fastapi import APIRouter, Depends, Request

from app.dependencies import get_store
from app.middleware import get_request_id
from persistence.entitlements import EntitlementStore
from persistence.models import default_status

_logger = logging.getLogger(__name__)

router = APIRouter(tags=["status"])


@router.get("/subscription-status/{device_id}")
def get_subscription_status(
    device_id: str,
    raw_request: Request,
    store: EntitlementStore = Depends(get_store),
):
    """
    Get current entitlement for a device.

    Response:
        {"plan": "free|monthly|yearly",
         "status": "inactive|trialing|active|past_due",
         "expiresAt": <ms since epoch> | null}
    """
    try:
        return store.get_status(device_id)
    except Exception as e:
        _logger.error(f"Status error: {e}", extra={"request_id": get_request_id(raw_request)})
        return default_status()
