import logging

import pytest

from casedesk.config import Settings, get_settings, reset_settings_cache
from casedesk.logging_setup import configure_logging


@pytest.fixture(autouse=True)
def fresh_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.stale_threshold_hours == 18
    assert settings.telegram_timeout_seconds == 5.0
    assert settings.default_requester_id is None
    assert settings.telegram_configured is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CASEDESK_STALE_THRESHOLD_HOURS", "24")
    monkeypatch.setenv("CASEDESK_TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("CASEDESK_TELEGRAM_CHAT_ID", "-100")

    settings = get_settings()
    assert settings.stale_threshold_hours == 24
    assert settings.telegram_configured is True
    assert get_settings() is settings


def test_configure_logging_returns_service_logger():
    logger = configure_logging("debug")
    assert logger.name == "casedesk"
    assert logger.level == logging.DEBUG

    assert configure_logging("nonsense").level == logging.INFO
