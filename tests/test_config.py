import pytest
from pydantic import ValidationError

from sessionauth.config import SameSite, Settings, get_settings, reset_settings_cache


def test_defaults():
    settings = Settings(jwt_secret="k" * 32)

    assert settings.access_token_ttl_ms == 900_000
    assert settings.refresh_days == 30
    assert settings.remember_days == 90
    assert settings.refresh_rotate is True
    assert settings.max_active_sessions == 5
    assert settings.refresh_cookie_name == "refresh_token"
    assert settings.refresh_cookie_path == "/api/auth"
    assert settings.refresh_cookie_secure is False
    assert settings.refresh_cookie_same_site is SameSite.LAX
    assert settings.session_retention_days == 7
    assert settings.sweep_interval_seconds == 86_400


def test_missing_secret_is_generated():
    first = Settings()
    second = Settings()

    assert len(first.jwt_secret) >= 32
    assert first.jwt_secret != second.jwt_secret


def test_short_secret_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="too-short")


@pytest.mark.parametrize("field,value", [("max_active_sessions", 0), ("refresh_days", 0)])
def test_bounds(field, value):
    with pytest.raises(ValidationError):
        Settings(jwt_secret="k" * 32, **{field: value})


def test_same_site_is_case_insensitive():
    settings = Settings(jwt_secret="k" * 32, refresh_cookie_same_site="Strict")
    assert settings.refresh_cookie_same_site is SameSite.STRICT


def test_from_env_reads_environment(monkeypatch):
    monkeypatch.setenv("REFRESH_DAYS", "14")
    monkeypatch.setenv("REFRESH_ROTATE", "false")
    monkeypatch.setenv("MAX_ACTIVE_SESSIONS", "2")

    settings = Settings.from_env()

    assert settings.refresh_days == 14
    assert settings.refresh_rotate is False
    assert settings.max_active_sessions == 2


def test_settings_cache_reset(monkeypatch):
    reset_settings_cache()
    cached = get_settings()
    assert get_settings() is cached

    monkeypatch.setenv("REMEMBER_DAYS", "45")
    reset_settings_cache()
    assert get_settings().remember_days == 45
