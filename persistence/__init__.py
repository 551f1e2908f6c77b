"""
Persistence layer for device entitlements.

Provides SQLite-backed storage for:
- Entitlement records (one row per device)
"""

from persistence.db import Database, DatabaseError, get_db_path
from persistence.entitlements import EntitlementStore, UNSET
from persistence.models import EntitlementRecord, EntitlementStatus, Plan, default_status

__all__ = [
    "Database",
    "DatabaseError",
    "get_db_path",
    "EntitlementStore",
    "UNSET",
    "EntitlementRecord",
    "EntitlementStatus",
    "Plan",
    "default_status",
]
