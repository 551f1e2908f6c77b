# persistence/entitlements.py
"""
Entitlement storage.

One row per device in the subscriptions table:
- upsert overwrites only the fields it is given
- customer_id is sticky (never cleared by a later write)
- soft_reset returns a device to free/inactive without deleting the row
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional, Union

from persistence.db import Database, DatabaseError
from persistence.models import (
    EntitlementRecord,
    EntitlementStatus,
    Plan,
    default_status,
)

_logger = logging.getLogger(__name__)


class _Unset:
    """Marker for a field the caller did not supply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EntitlementStore:
    """
    Durable key-value table keyed by device_id.

    Every write is a single statement inside one locked transaction,
    so two deliveries for the same device never leave a mixed-field row.
    """

    def __init__(self, database: Database):
        self._db = database

    def get(self, device_id: str) -> Optional[EntitlementRecord]:
        """Get the record for a device, or None if absent."""
        try:
            with self._db.connection() as conn:
                row = conn.execute(
                    "SELECT * FROM subscriptions WHERE device_id = ?",
                    (device_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to read entitlement for {device_id}: {e}") from e

        return EntitlementRecord.from_row(row) if row else None

    def get_status(self, device_id: str) -> dict:
        """Client view of a device's entitlement, defaulting to free/inactive."""
        record = self.get(device_id)
        if record is None:
            return default_status()
        return record.to_status_dict()

    def upsert(
        self,
        device_id: str,
        plan: Union[Plan, _Unset] = UNSET,
        status: Union[EntitlementStatus, _Unset] = UNSET,
        expires_at: Union[int, None, _Unset] = UNSET,
        customer_id: Union[str, None, _Unset] = UNSET,
    ) -> EntitlementRecord:
        """
        Insert the device row if absent, otherwise overwrite the supplied fields.

        Fields left as UNSET keep their stored value (or the default on
        insert). A None customer_id never clears a stored customer.

        Returns:
            The record as stored after the write
        """
        if not device_id:
            raise ValueError("device_id is required")

        insert_values = {
            "plan": Plan.FREE.value if plan is UNSET else Plan(plan).value,
            "status": (
                EntitlementStatus.INACTIVE.value
                if status is UNSET
                else EntitlementStatus(status).value
            ),
            "expires_at": None if expires_at is UNSET else expires_at,
            "customer_id": None if customer_id is UNSET else customer_id,
        }

        assignments = []
        if plan is not UNSET:
            assignments.append("plan = excluded.plan")
        if status is not UNSET:
            assignments.append("status = excluded.status")
        if expires_at is not UNSET:
            assignments.append("expires_at = excluded.expires_at")
        if customer_id is not UNSET:
            assignments.append("customer_id = COALESCE(excluded.customer_id, customer_id)")
        assignments.append("updated_at = excluded.updated_at")

        sql = f"""
            INSERT INTO subscriptions
                (device_id, plan, status, expires_at, customer_id, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(device_id) DO UPDATE SET {', '.join(assignments)}
        """

        try:
            with self._db.connection() as conn:
                conn.execute(
                    sql,
                    (
                        device_id,
                        insert_values["plan"],
                        insert_values["status"],
                        insert_values["expires_at"],
                        insert_values["customer_id"],
                        _now(),
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM subscriptions WHERE device_id = ?",
                    (device_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to upsert entitlement for {device_id}: {e}") from e

        return EntitlementRecord.from_row(row)

    def update_status(self, device_id: str, status: EntitlementStatus) -> bool:
        """
        Set status on an existing row; plan, expiry and customer untouched.

        Returns:
            True if a row was updated
        """
        try:
            with self._db.connection() as conn:
                cursor = conn.execute(
                    "UPDATE subscriptions SET status = ?, updated_at = ? WHERE device_id = ?",
                    (EntitlementStatus(status).value, _now(), device_id),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to update status for {device_id}: {e}") from e

    def soft_reset(self, device_id: str) -> bool:
        """
        Reset a device to free/inactive/no-expiry, keeping customer_id.

        Returns:
            True if a row was reset
        """
        try:
            with self._db.connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE subscriptions
                    SET plan = ?, status = ?, expires_at = NULL, updated_at = ?
                    WHERE device_id = ?
                    """,
                    (Plan.FREE.value, EntitlementStatus.INACTIVE.value, _now(), device_id),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to reset entitlement for {device_id}: {e}") from e

    def get_customer_id(self, device_id: str) -> Optional[str]:
        """Stripe customer linked to a device, if any."""
        record = self.get(device_id)
        return record.customer_id if record else None

    def count(self) -> int:
        """Number of device rows (for tests and health checks)."""
        with self._db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM subscriptions").fetchone()
        return row["n"]
