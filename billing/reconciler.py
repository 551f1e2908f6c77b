# billing/reconciler.py
"""
Stripe lifecycle event reconciliation.

Maps a verified, decoded Stripe event onto the single entitlement
record of the device it is linked to.

Events arrive unordered, possibly duplicated, and possibly without
device linkage. Rules:
- Linkage comes from `metadata.deviceId` on the checkout session or
  subscription; invoices are resolved through their subscription.
- No linkage is a benign skip, never an error.
- Every Stripe lookup happens before the store write, so a failed
  lookup leaves no partial write.
- Re-applying an event writes identical values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

import stripe

from billing.products import plan_from_interval, plan_from_price_id
from billing.stripe_client import DEVICE_METADATA_KEY, object_id
from persistence.db import DatabaseError
from persistence.entitlements import UNSET, EntitlementStore, _Unset
from persistence.models import EntitlementRecord, EntitlementStatus, Plan

_logger = logging.getLogger(__name__)

# Handled Stripe event types
CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class MalformedEventError(Exception):
    """Event payload does not have the shape its type promises."""
    pass


class ReconcileOutcome(Enum):
    """What happened to an event."""

    APPLIED = "applied"     # Store was written
    SKIPPED = "skipped"     # No resolvable linkage (or no row to touch)
    IGNORED = "ignored"     # Event type not handled
    FAILED = "failed"       # Dependency/store/shape failure, still acknowledged


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of reconciling one event."""

    outcome: ReconcileOutcome
    event_type: str
    device_id: Optional[str] = None
    detail: str = ""
    record: Optional[EntitlementRecord] = None

    @property
    def applied(self) -> bool:
        return self.outcome is ReconcileOutcome.APPLIED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "event_type": self.event_type,
            "device_id": self.device_id,
            "detail": self.detail,
        }


# =============================================================================
# Payload helpers
# =============================================================================


def _get(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    try:
        return obj.get(key)
    except AttributeError:
        return None


def _device_id(obj: Any) -> Optional[str]:
    """Device linkage stored in an object's metadata, if any."""
    device_id = _get(_get(obj, "metadata"), DEVICE_METADATA_KEY)
    return device_id or None


def _first_item(subscription: Any) -> Any:
    items = _get(_get(subscription, "items"), "data") or []
    return items[0] if items else None


def _plan_for(subscription: Any, fallback: Optional[str] = None) -> Plan:
    """
    Plan from the subscription's billing interval.

    Falls back to the price ID, then to the supplied plan name.

    Raises:
        MalformedEventError: If none of these identify a plan
    """
    price = _get(_first_item(subscription), "price")
    interval = _get(_get(price, "recurring"), "interval")
    if interval:
        return plan_from_interval(interval)

    plan = plan_from_price_id(_get(price, "id"))
    if plan is not None:
        return plan

    if fallback in (Plan.MONTHLY.value, Plan.YEARLY.value):
        return Plan(fallback)

    raise MalformedEventError("Subscription carries no billing interval")


def _status_of(subscription: Any) -> Union[EntitlementStatus, _Unset]:
    """Mapped status, or UNSET when the snapshot carries none."""
    value = _get(subscription, "status")
    if value is None:
        return UNSET
    return EntitlementStatus.from_stripe(value)


def _expires_at(subscription: Any, status: Union[EntitlementStatus, _Unset]) -> Union[int, None, _Unset]:
    """
    Trial end, else current period end, in ms since epoch.

    None when inactive. UNSET when the snapshot has no expiry at all,
    so the stored value is kept.
    """
    if status is EntitlementStatus.INACTIVE:
        return None

    seconds = _get(subscription, "trial_end")
    if not seconds:
        seconds = _get(subscription, "current_period_end")
    if not seconds:
        seconds = _get(_first_item(subscription), "current_period_end")

    return int(seconds) * 1000 if seconds else UNSET


def _invoice_subscription_id(invoice: Any) -> Optional[str]:
    subscription_id = object_id(_get(invoice, "subscription"))
    if subscription_id:
        return subscription_id
    # Newer API versions nest the reference under parent
    details = _get(_get(invoice, "parent"), "subscription_details")
    return object_id(_get(details, "subscription"))


# =============================================================================
# Reconciler
# =============================================================================


class EntitlementReconciler:
    """
    Applies Stripe lifecycle events to the entitlement store.

    Args:
        store: Entitlement store to write to
        processor: Stripe gateway (see billing.stripe_client.StripeProcessor)
    """

    def __init__(self, store: EntitlementStore, processor):
        self._store = store
        self._processor = processor
        self._handlers: dict[str, Callable[[str, Any], ReconcileResult]] = {
            CHECKOUT_COMPLETED: self._handle_checkout_completed,
            SUBSCRIPTION_CREATED: self._handle_subscription_created,
            SUBSCRIPTION_UPDATED: self._handle_subscription_updated,
            SUBSCRIPTION_DELETED: self._handle_subscription_deleted,
            INVOICE_PAYMENT_FAILED: self._handle_invoice_payment_failed,
        }

    def reconcile(self, event: Any) -> ReconcileResult:
        """
        Reconcile one decoded event.

        Never raises: every failure is reported as ReconcileOutcome.FAILED.
        """
        event_type = _get(event, "type") or "unknown"
        event_id = _get(event, "id") or "unknown"

        handler = self._handlers.get(event_type)
        if handler is None:
            _logger.debug(f"Unhandled webhook event type: {event_type}")
            return ReconcileResult(
                ReconcileOutcome.IGNORED, event_type, detail=f"Event type {event_type} not handled"
            )

        try:
            obj = _get(_get(event, "data"), "object")
            if obj is None:
                raise MalformedEventError("Event has no data.object")
            result = handler(event_type, obj)

        except MalformedEventError as e:
            _logger.error(f"Malformed {event_type} event: {e}", extra={"event_id": event_id})
            return ReconcileResult(ReconcileOutcome.FAILED, event_type, detail=f"Malformed event: {e}")

        except stripe.StripeError as e:
            _logger.error(f"Stripe lookup failed for {event_type}: {e}", extra={"event_id": event_id})
            return ReconcileResult(ReconcileOutcome.FAILED, event_type, detail=f"Stripe error: {e}")

        except DatabaseError as e:
            _logger.error(f"Store write failed for {event_type}: {e}", extra={"event_id": event_id})
            return ReconcileResult(ReconcileOutcome.FAILED, event_type, detail=f"Store error: {e}")

        except Exception as e:
            _logger.exception(f"Webhook handler error for {event_type}", extra={"event_id": event_id})
            return ReconcileResult(ReconcileOutcome.FAILED, event_type, detail=f"Handler error: {e}")

        if result.outcome is ReconcileOutcome.SKIPPED:
            _logger.info(
                f"Skipped {event_type}: {result.detail}",
                extra={"event_id": event_id},
            )
        else:
            _logger.info(
                f"Applied {event_type}",
                extra={"event_id": event_id, "device_id": result.device_id},
            )
        return result

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _handle_checkout_completed(self, event_type: str, session: Any) -> ReconcileResult:
        """
        Checkout finished: settle the subscription and record the device.

        The session's own status precedes trial/activation settling, so
        status and expiry come from the retrieved subscription.
        """
        device_id = _device_id(session)
        subscription_id = object_id(_get(session, "subscription"))

        if not device_id:
            return ReconcileResult(ReconcileOutcome.SKIPPED, event_type, detail="No deviceId in session metadata")
        if not subscription_id:
            return ReconcileResult(
                ReconcileOutcome.SKIPPED, event_type, device_id, detail="Session has no subscription"
            )

        subscription = self._processor.retrieve_subscription(subscription_id)

        # Propagate linkage so later subscription events resolve the device
        if _device_id(subscription) != device_id:
            self._processor.link_device(subscription_id, device_id)

        status = _status_of(subscription)
        plan = _plan_for(subscription, fallback=_get(_get(session, "metadata"), "plan"))
        customer_id = object_id(_get(subscription, "customer")) or object_id(_get(session, "customer"))

        record = self._store.upsert(
            device_id,
            plan=plan,
            status=status,
            expires_at=_expires_at(subscription, status),
            customer_id=customer_id,
        )
        return ReconcileResult(ReconcileOutcome.APPLIED, event_type, device_id, record=record)

    def _handle_subscription_created(self, event_type: str, subscription: Any) -> ReconcileResult:
        return self._apply_subscription(event_type, subscription)

    def _handle_subscription_updated(self, event_type: str, subscription: Any) -> ReconcileResult:
        # Carries trial->active and active->past_due transitions
        return self._apply_subscription(event_type, subscription)

    def _apply_subscription(self, event_type: str, subscription: Any) -> ReconcileResult:
        device_id = _device_id(subscription)
        if not device_id:
            return ReconcileResult(
                ReconcileOutcome.SKIPPED, event_type, detail="No deviceId in subscription metadata"
            )

        status = _status_of(subscription)
        record = self._store.upsert(
            device_id,
            plan=_plan_for(subscription),
            status=status,
            expires_at=_expires_at(subscription, status),
            customer_id=object_id(_get(subscription, "customer")),
        )
        return ReconcileResult(ReconcileOutcome.APPLIED, event_type, device_id, record=record)

    def _handle_invoice_payment_failed(self, event_type: str, invoice: Any) -> ReconcileResult:
        """Payment failed: revoke entitlement, keep plan and expiry."""
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            return ReconcileResult(ReconcileOutcome.SKIPPED, event_type, detail="Invoice has no subscription")

        # Invoices carry no device metadata
        subscription = self._processor.retrieve_subscription(subscription_id)
        device_id = _device_id(subscription)
        if not device_id:
            return ReconcileResult(
                ReconcileOutcome.SKIPPED, event_type, detail="No deviceId in subscription metadata"
            )

        if not self._store.update_status(device_id, EntitlementStatus.INACTIVE):
            return ReconcileResult(ReconcileOutcome.SKIPPED, event_type, device_id, detail="No record for device")

        return ReconcileResult(
            ReconcileOutcome.APPLIED, event_type, device_id, record=self._store.get(device_id)
        )

    def _handle_subscription_deleted(self, event_type: str, subscription: Any) -> ReconcileResult:
        """Subscription ended: soft reset, customer_id kept."""
        device_id = _device_id(subscription)
        if not device_id:
            return ReconcileResult(
                ReconcileOutcome.SKIPPED, event_type, detail="No deviceId in subscription metadata"
            )

        if not self._store.soft_reset(device_id):
            return ReconcileResult(ReconcileOutcome.SKIPPED, event_type, device_id, detail="No record for device")

        return ReconcileResult(
            ReconcileOutcome.APPLIED, event_type, device_id, record=self._store.get(device_id)
        )
