"""Tests for application settings."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from kanban.core.config import Settings, get_settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.report_timezone == "UTC"
        assert settings.transition_max_retries == 1
        assert settings.max_batch_size == 50
        assert settings.requester_report_limit == 20
        assert settings.pc_department_code == "PC"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("KANBAN_REPORT_TIMEZONE", "Asia/Jakarta")
        monkeypatch.setenv("KANBAN_MAX_BATCH_SIZE", "10")
        settings = Settings(_env_file=None)
        assert settings.report_timezone == "Asia/Jakarta"
        assert settings.report_tz.key == "Asia/Jakarta"
        assert settings.max_batch_size == 10

    def test_unknown_timezone_rejected(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, report_timezone="Mars/Olympus")

    def test_retry_bounds(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, transition_max_retries=-1)

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()
