"""
Unit tests for automation settings and environment loading.
"""

import os
from unittest.mock import patch

import pytest

from intake.config import AutomationSettings, load_settings
from intake.errors import SettingsError

ENV_KEYS = (
    "EMAIL_CHECK_INTERVAL_MINUTES",
    "MAX_EMAILS_PER_CHECK",
    "MAX_CONSECUTIVE_EMPTY_CHECKS",
    "EMAIL_BATCH_SIZE",
    "EMAIL_BATCH_DELAY_SECONDS",
    "EMAIL_PROCESSING_TIMEOUT",
    "ACCOUNT_MONITORING_INTERVAL_MINUTES",
    "AUTO_START_EMAIL_AUTOMATION",
)


@pytest.fixture
def clean_env():
    with patch.dict(os.environ, {}, clear=False):
        for key in ENV_KEYS:
            os.environ.pop(key, None)
        yield


class TestAutomationSettings:
    def test_defaults(self):
        settings = AutomationSettings()
        assert settings.check_interval_minutes == 30
        assert settings.max_emails_per_check == 20
        assert settings.max_consecutive_empty_checks == 3
        assert settings.processing_timeout_seconds == 300
        assert settings.auto_start is True

    @pytest.mark.parametrize("value", [5, 1440])
    def test_interval_bounds_inclusive(self, value):
        assert AutomationSettings(check_interval_minutes=value).check_interval_minutes == value

    def test_updated_ignores_unknown_and_none(self):
        settings = AutomationSettings().updated(check_interval_minutes=None, colour="blue", batch_size=10)
        assert settings.check_interval_minutes == 30
        assert settings.batch_size == 10

    def test_updated_raises_settings_error(self):
        with pytest.raises(SettingsError, match="check_interval_minutes"):
            AutomationSettings().updated(check_interval_minutes=2)

    def test_settings_error_is_value_error(self):
        with pytest.raises(ValueError):
            AutomationSettings().updated(max_emails_per_check=500)


class TestLoadSettings:
    """Test environment variable parsing."""

    def test_defaults_without_env(self, clean_env):
        assert load_settings() == AutomationSettings()

    def test_values_from_env(self, clean_env):
        os.environ.update({
            "EMAIL_CHECK_INTERVAL_MINUTES": "15",
            "MAX_EMAILS_PER_CHECK": "50",
            "EMAIL_PROCESSING_TIMEOUT": "120",
            "EMAIL_BATCH_DELAY_SECONDS": "0.5",
            "AUTO_START_EMAIL_AUTOMATION": "false",
        })

        settings = load_settings()

        assert settings.check_interval_minutes == 15
        assert settings.max_emails_per_check == 50
        assert settings.processing_timeout_seconds == 120
        assert settings.batch_delay_seconds == 0.5
        assert settings.auto_start is False

    def test_non_numeric_value_ignored(self, clean_env):
        os.environ["MAX_EMAILS_PER_CHECK"] = "lots"
        assert load_settings().max_emails_per_check == 20

    def test_out_of_range_env_fails(self, clean_env):
        os.environ["EMAIL_CHECK_INTERVAL_MINUTES"] = "1"
        with pytest.raises(SettingsError):
            load_settings()
