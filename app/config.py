# app/config.py
"""
Centralized configuration management with startup validation.

Defines REQUIRED vs OPTIONAL environment variables and provides
safe configuration loading with validation and logging.
"""
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Optional

from billing.service import (
    DEFAULT_CANCEL_URL,
    DEFAULT_PORTAL_RETURN_URL,
    DEFAULT_SUCCESS_URL,
    DEFAULT_TRIAL_PERIOD_DAYS,
)
from billing.webhooks import DEFAULT_TOLERANCE_SECONDS
from persistence.db import get_db_path

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

SERVICE_NAME = "eyebalance-billing"
SERVICE_VERSION = "0.1.0"

# Default values
DEFAULT_PORT = 4242
DEFAULT_MAX_REQUEST_SIZE_BYTES = 1_048_576  # 1MB
MIN_REQUEST_SIZE_BYTES = 1024  # 1KB minimum
MIN_TOLERANCE_SECONDS = 1

# Sensitive substrings that should never appear in logs
SENSITIVE_SUBSTRINGS = ("key", "token", "secret", "password", "credential", "auth")


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class AppConfig:
    """Application configuration loaded from environment."""

    # Service info
    service_name: str = SERVICE_NAME
    service_version: str = SERVICE_VERSION
    environment: str = "development"
    port: int = DEFAULT_PORT

    # Security settings
    max_request_size_bytes: int = DEFAULT_MAX_REQUEST_SIZE_BYTES
    webhook_tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS

    # Checkout / portal
    trial_period_days: int = DEFAULT_TRIAL_PERIOD_DAYS
    checkout_success_url: str = DEFAULT_SUCCESS_URL
    checkout_cancel_url: str = DEFAULT_CANCEL_URL
    portal_return_url: str = DEFAULT_PORTAL_RETURN_URL

    # Storage
    db_path: str = field(default_factory=get_db_path)

    # Stripe secrets (presence only - values stay in the environment)
    stripe_secret_key_present: bool = False
    stripe_webhook_secret_present: bool = False

    # Warnings collected during config load
    warnings: list = field(default_factory=list)


# =============================================================================
# Configuration Loading
# =============================================================================


def _parse_int_env(
    name: str, default: int, min_value: Optional[int] = None
) -> tuple[int, Optional[str]]:
    """
    Parse an integer environment variable with validation.

    Returns (value, warning_message).
    On invalid input, returns default with a warning.
    """
    raw = os.environ.get(name)
    if raw is None:
        return default, None

    try:
        value = int(raw)
    except ValueError:
        warning = f"{name}='{raw}' is not a valid integer; using default {default}"
        return default, warning

    if min_value is not None and value < min_value:
        warning = f"{name}={value} is below minimum {min_value}; using default {default}"
        return default, warning

    return value, None


def load_config(fail_fast: bool = True) -> AppConfig:
    """
    Load and validate application configuration from environment.

    Args:
        fail_fast: If True, raise ConfigurationError on critical issues.
                   If False, collect warnings and continue.

    Returns:
        AppConfig instance with validated configuration.

    Raises:
        ConfigurationError: If required configuration is missing/invalid
                           and fail_fast is True.
    """
    warnings = []

    # Environment
    environment = os.environ.get("RAILWAY_ENVIRONMENT", "development")

    int_settings = {}
    for attr, env_name, default, min_value in (
        ("port", "PORT", DEFAULT_PORT, 1),
        ("max_request_size_bytes", "MAX_REQUEST_SIZE_BYTES", DEFAULT_MAX_REQUEST_SIZE_BYTES, MIN_REQUEST_SIZE_BYTES),
        ("webhook_tolerance_seconds", "STRIPE_WEBHOOK_TOLERANCE_SECONDS", DEFAULT_TOLERANCE_SECONDS, MIN_TOLERANCE_SECONDS),
        ("trial_period_days", "TRIAL_PERIOD_DAYS", DEFAULT_TRIAL_PERIOD_DAYS, 0),
    ):
        value, warning = _parse_int_env(env_name, default, min_value=min_value)
        if warning:
            warnings.append(warning)
        int_settings[attr] = value

    # Secret presence (OPTIONAL at boot - check presence, don't store value)
    stripe_key = os.environ.get("STRIPE_SECRET_KEY")
    stripe_secret_key_present = bool(stripe_key and len(stripe_key) > 0)
    webhook_secret = os.environ.get("STRIPE_WEBHOOK_SECRET")
    stripe_webhook_secret_present = bool(webhook_secret and len(webhook_secret) > 0)

    if not stripe_secret_key_present:
        warnings.append("STRIPE_SECRET_KEY is not set; checkout and portal will fail")
    if not stripe_webhook_secret_present:
        warnings.append("STRIPE_WEBHOOK_SECRET is not set; every webhook will be rejected")

    is_production = environment == "production"
    if fail_fast and is_production and not (stripe_secret_key_present and stripe_webhook_secret_present):
        raise ConfigurationError(
            "STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET are required in production"
        )

    # Log warnings
    for warning in warnings:
        logger.warning(f"[CONFIG] {warning}")

    return AppConfig(
        environment=environment,
        checkout_success_url=os.environ.get("CHECKOUT_SUCCESS_URL", DEFAULT_SUCCESS_URL),
        checkout_cancel_url=os.environ.get("CHECKOUT_CANCEL_URL", DEFAULT_CANCEL_URL),
        portal_return_url=os.environ.get("PORTAL_RETURN_URL", DEFAULT_PORTAL_RETURN_URL),
        db_path=get_db_path(),
        stripe_secret_key_present=stripe_secret_key_present,
        stripe_webhook_secret_present=stripe_webhook_secret_present,
        warnings=warnings,
        **int_settings,
    )


def log_config_snapshot(config: AppConfig) -> str:
    """
    Generate and log a safe configuration snapshot.

    Returns the snapshot string for testing purposes.
    Never logs actual secret values - only boolean presence flags.
    """
    snapshot = (
        f"[STARTUP] service={config.service_name} "
        f"version={config.service_version} "
        f"environment={config.environment} "
        f"port={config.port} "
        f"db_path={config.db_path} "
        f"max_request_size_bytes={config.max_request_size_bytes} "
        f"webhook_tolerance_seconds={config.webhook_tolerance_seconds} "
        f"trial_period_days={config.trial_period_days} "
        f"stripe_secret_key_present={config.stripe_secret_key_present} "
        f"stripe_webhook_secret_present={config.stripe_webhook_secret_present}"
    )
    logger.info(snapshot)
    return snapshot


def validate_config_snapshot_safety(snapshot: str) -> bool:
    """
    Validate that a config snapshot doesn't contain sensitive values.

    Returns True if safe, False if potentially unsafe.
    """
    snapshot_lower = snapshot.lower()

    # We allow "key_present=" but not "key=" followed by a non-boolean value
    for sensitive in SENSITIVE_SUBSTRINGS:
        pattern = rf"{sensitive}=(?!true|false)"
        if re.search(pattern, snapshot_lower):
            return False

    return True
