"""
Runtime configuration for the ingestion service.

Values come from environment variables (a local ``.env`` file is loaded via
python-dotenv).  Automation settings are validated against the same bounds
the controller enforces when settings are changed at runtime.

Environment variables
---------------------
EMAIL_CHECK_INTERVAL_MINUTES         Minutes between check cycles (5-1440, default 30)
MAX_EMAILS_PER_CHECK                 Messages listed per account per cycle (1-100, default 20)
MAX_CONSECUTIVE_EMPTY_CHECKS         Empty cycles before monitoring mode (1-50, default 3)
EMAIL_BATCH_SIZE                     Messages processed per batch (default 5)
EMAIL_BATCH_DELAY_SECONDS            Pause between batches (default 2)
EMAIL_PROCESSING_TIMEOUT             Per-message timeout in seconds (default 300)
ACCOUNT_MONITORING_INTERVAL_MINUTES  Monitor tick interval (default 5)
AUTO_START_EMAIL_AUTOMATION          "false" disables auto-start (default true)
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

from intake.errors import SettingsError

load_dotenv()

logger = logging.getLogger(__name__)

# Bounds shared by env parsing and runtime updates
CHECK_INTERVAL_BOUNDS = (5, 1440)
MAX_EMAILS_BOUNDS = (1, 100)
MAX_EMPTY_CHECKS_BOUNDS = (1, 50)
BATCH_SIZE_BOUNDS = (1, 50)

# Lookback limits for the per-account search window
MAX_LOOKBACK_DAYS = 30
DEFAULT_LOOKBACK_DAYS = 1


def _check_bounds(name: str, value: int, bounds: tuple) -> int:
    low, high = bounds
    if value < low or value > high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")
    return value


class AutomationSettings(BaseModel):
    """Hot-updatable controller settings."""

    check_interval_minutes: int = 30
    max_emails_per_check: int = 20
    max_consecutive_empty_checks: int = 3
    batch_size: int = 5
    batch_delay_seconds: float = 2.0
    processing_timeout_seconds: float = 300.0
    monitoring_interval_minutes: int = 5
    auto_start: bool = True

    @field_validator("check_interval_minutes")
    @classmethod
    def _interval_in_range(cls, v: int) -> int:
        return _check_bounds("check_interval_minutes", v, CHECK_INTERVAL_BOUNDS)

    @field_validator("max_emails_per_check")
    @classmethod
    def _max_emails_in_range(cls, v: int) -> int:
        return _check_bounds("max_emails_per_check", v, MAX_EMAILS_BOUNDS)

    @field_validator("max_consecutive_empty_checks")
    @classmethod
    def _max_empty_in_range(cls, v: int) -> int:
        return _check_bounds("max_consecutive_empty_checks", v, MAX_EMPTY_CHECKS_BOUNDS)

    @field_validator("batch_size")
    @classmethod
    def _batch_size_in_range(cls, v: int) -> int:
        return _check_bounds("batch_size", v, BATCH_SIZE_BOUNDS)

    @field_validator("batch_delay_seconds")
    @classmethod
    def _delay_not_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("batch_delay_seconds must not be negative")
        return v

    @field_validator("processing_timeout_seconds")
    @classmethod
    def _timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("processing_timeout_seconds must be positive")
        return v

    @field_validator("monitoring_interval_minutes")
    @classmethod
    def _monitor_interval_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("monitoring_interval_minutes must be at least 1")
        return v

    def updated(self, **changes) -> "AutomationSettings":
        """
        Return a validated copy with ``changes`` applied.

        Unknown keys and ``None`` values are ignored.  Raises SettingsError when
        a value is out of range.
        """
        data = self.model_dump()
        for key, value in changes.items():
            if key in data and value is not None:
                data[key] = value
        try:
            return AutomationSettings(**data)
        except ValidationError as exc:
            raise SettingsError(str(exc)) from exc


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s: %r", name, raw)
        return None


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric value for %s: %r", name, raw)
        return None


def load_settings() -> AutomationSettings:
    """
    Build AutomationSettings from environment variables.

    Missing variables fall back to the model defaults.  Out-of-range values
    raise SettingsError so a misconfigured deployment fails at startup.
    """
    timeout_seconds = _env_float("EMAIL_PROCESSING_TIMEOUT")
    auto_start_raw = os.getenv("AUTO_START_EMAIL_AUTOMATION", "true").strip().lower()

    return AutomationSettings().updated(
        check_interval_minutes=_env_int("EMAIL_CHECK_INTERVAL_MINUTES"),
        max_emails_per_check=_env_int("MAX_EMAILS_PER_CHECK"),
        max_consecutive_empty_checks=_env_int("MAX_CONSECUTIVE_EMPTY_CHECKS"),
        batch_size=_env_int("EMAIL_BATCH_SIZE"),
        batch_delay_seconds=_env_float("EMAIL_BATCH_DELAY_SECONDS"),
        processing_timeout_seconds=timeout_seconds,
        monitoring_interval_minutes=_env_int("ACCOUNT_MONITORING_INTERVAL_MINUTES"),
        auto_start=auto_start_raw != "false",
    )
