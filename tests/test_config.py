import dataclasses

import pytest

from dealerflow.config import Settings, get_settings, reset_settings_cache


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


def test_defaults(monkeypatch):
    for name in ("OPENAI_API_KEY", "HOT_LEAD_THRESHOLD", "DEFAULT_TIMEZONE", "CHAT_RATE_LIMIT"):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings.openai_api_key is None
    assert settings.hot_lead_threshold == 60
    assert settings.high_score_threshold == 80
    assert settings.default_timezone == "America/New_York"
    assert settings.chat_rate_limit == "30/minute"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("HOT_LEAD_THRESHOLD", "50")
    monkeypatch.setenv("OPENAI_TIMEOUT_SECONDS", "5.5")
    monkeypatch.setenv("SYSTEM_PROMPT", "")
    monkeypatch.setenv("GHL_LOCATION_ID", "loc-1")

    settings = get_settings()

    assert settings.hot_lead_threshold == 50
    assert settings.openai_timeout_seconds == 5.5
    assert settings.system_prompt is None
    assert settings.ghl_location_id == "loc-1"


def test_settings_are_cached_until_reset(monkeypatch):
    monkeypatch.setenv("REPLY_WINDOW", "4")
    first = get_settings()
    monkeypatch.setenv("REPLY_WINDOW", "8")

    assert get_settings() is first
    reset_settings_cache()
    assert get_settings().reply_window == 8


def test_settings_are_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        Settings().reply_window = 3
