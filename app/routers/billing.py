# app/routers/billing.py
"""
Billing endpoints used by the mobile app and by Stripe.

Endpoints:
- POST /create-checkout-session : start a subscription checkout for a device
- POST /create-portal-session   : open the Stripe billing portal for a device
- POST /webhook                 : Stripe webhook receiver

The webhook rejects only on signature failure; every other path
answers {"received": true} so Stripe does not redeliver.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.config import AppConfig
from app.dependencies import get_config, get_processor, get_reconciler, get_store
from app.middleware import get_request_id
from billing.reconciler import EntitlementReconciler
from billing.service import (
    BillingError,
    InvalidCheckoutRequest,
    NoCustomerError,
    create_checkout_session,
    get_customer_portal_url,
)
from billing.webhooks import SignatureVerificationError, handle_webhook_delivery
from persistence.entitlements import EntitlementStore

_logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])

ACKNOWLEDGED = {"received": True}


class CheckoutRequest(BaseModel):
    """Request to create a checkout session."""
    plan: Optional[str] = Field(default=None, description="monthly or yearly")
    device_id: Optional[str] = Field(default=None, alias="deviceId", description="Client device identifier")


class PortalRequest(BaseModel):
    """Request to open the billing portal."""
    device_id: Optional[str] = Field(default=None, alias="deviceId", description="Client device identifier")


@router.post("/create-checkout-session")
def create_checkout(
    request: CheckoutRequest,
    raw_request: Request,
    config: AppConfig = Depends(get_config),
    processor=Depends(get_processor),
):
    """Create a Stripe Checkout session and return its redirect URL."""
    request_id = get_request_id(raw_request)

    try:
        result = create_checkout_session(
            processor,
            plan=request.plan,
            device_id=request.device_id,
            success_url=config.checkout_success_url,
            cancel_url=config.checkout_cancel_url,
            trial_period_days=config.trial_period_days,
        )

    except InvalidCheckoutRequest as e:
        _logger.info(f"Rejected checkout request: {e}", extra={"request_id": request_id})
        return JSONResponse(status_code=400, content={"error": "Invalid checkout request"})

    except BillingError as e:
        _logger.error(f"Checkout error: {e}", extra={"request_id": request_id})
        return JSONResponse(status_code=500, content={"error": "Checkout failed"})

    return {"url": result["checkout_url"]}


@router.post("/create-portal-session")
def create_portal(
    request: PortalRequest,
    raw_request: Request,
    config: AppConfig = Depends(get_config),
    processor=Depends(get_processor),
    store: EntitlementStore = Depends(get_store),
):
    """Create a Stripe Customer Portal session for the device's customer."""
    request_id = get_request_id(raw_request)

    try:
        url = get_customer_portal_url(
            processor,
            store,
            device_id=request.device_id,
            return_url=config.portal_return_url,
        )

    except NoCustomerError:
        return JSONResponse(status_code=400, content={"error": "No customer found"})

    except BillingError as e:
        _logger.error(f"Portal error: {e}", extra={"request_id": request_id})
        return JSONResponse(status_code=500, content={"error": "Portal unavailable"})

    return {"url": url}


@router.post("/webhook")
async def stripe_webhook(
    raw_request: Request,
    config: AppConfig = Depends(get_config),
    reconciler: EntitlementReconciler = Depends(get_reconciler),
):
    """
    Handle Stripe webhook events.

    Body is read raw; JSON parsing would break signature verification.
    """
    request_id = get_request_id(raw_request)
    payload = await raw_request.body()
    signature = raw_request.headers.get("stripe-signature", "")

    try:
        result = await run_in_threadpool(
            handle_webhook_delivery,
            payload,
            signature,
            reconciler,
            config.webhook_tolerance_seconds,
        )

    except SignatureVerificationError as e:
        _logger.warning(f"Webhook rejected: {e}", extra={"request_id": request_id})
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    except Exception:
        # Never let a verified delivery turn into a redelivery loop
        _logger.exception("Webhook fatal error", extra={"request_id": request_id})
        return ACKNOWLEDGED

    _logger.info(
        f"Webhook {result.event_type} {result.outcome.value}",
        extra={"request_id": request_id, "detail": result.detail},
    )
    return ACKNOWLEDGED
