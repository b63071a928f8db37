"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from warden.config import Settings, get_settings, reset_settings_cache

VALID_SECRET = "s" * 40


def test_defaults():
    settings = Settings(jwt_secret=VALID_SECRET)

    assert settings.access_token_ttl_seconds == 900
    assert settings.jwt_leeway_seconds == 0
    assert settings.cache_prefix == "warden"
    assert settings.redis_url.startswith("redis://")


@pytest.mark.parametrize("secret", [None, "", "too-short"])
def test_jwt_secret_required_and_long_enough(secret):
    with pytest.raises(ValidationError):
        Settings(jwt_secret=secret)


@pytest.mark.parametrize("prefix", ["", "   ", "sessions:"])
def test_invalid_cache_prefix(prefix):
    with pytest.raises(ValidationError):
        Settings(jwt_secret=VALID_SECRET, cache_prefix=prefix)


def test_non_positive_ttl_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_secret=VALID_SECRET, access_token_ttl_seconds=0)


def test_negative_leeway_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_secret=VALID_SECRET, jwt_leeway_seconds=-1)


def test_from_env_reads_environment(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("JWT_SECRET", VALID_SECRET)
    monkeypatch.setenv("ACCESS_TOKEN_TTL_SECONDS", "120")
    monkeypatch.setenv("CACHE_PREFIX", "sessions")

    settings = Settings.from_env()

    assert settings.access_token_ttl_seconds == 120
    assert settings.cache_prefix == "sessions"


def test_from_env_falls_back_to_dotenv(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("REDIS_URL", raising=False)
    (tmp_path / ".env").write_text("REDIS_URL=redis://cache.internal:6380/2\n")

    settings = Settings.from_env()

    assert settings.redis_url == "redis://cache.internal:6380/2"


def test_environment_overrides_dotenv(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CACHE_PREFIX", "from-env")
    (tmp_path / ".env").write_text("CACHE_PREFIX=from-file\n")

    assert Settings.from_env().cache_prefix == "from-env"


def test_get_settings_is_cached(monkeypatch):
    reset_settings_cache()
    first = get_settings()

    monkeypatch.setenv("CACHE_PREFIX", "changed")

    assert get_settings() is first
    reset_settings_cache()
    assert get_settings().cache_prefix == "changed"
