import pytest
from pydantic import ValidationError

from authgate.config import Settings, get_settings, reset_settings_cache


def test_defaults_match_service_contract():
    settings = Settings(jwt_secret="s" * 32)
    assert settings.token_ttl_seconds == 3600
    assert settings.challenge_ttl_seconds == 600
    assert settings.challenge_max_attempts == 5
    assert settings.argon2_time_cost == 2
    assert settings.argon2_memory_cost == 15000
    assert settings.argon2_parallelism == 1
    assert settings.auth_cookie_name == "jwt"


def test_short_secret_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="too-short")


def test_missing_secret_outside_test_mode():
    with pytest.raises(ValidationError):
        Settings(test_mode=False)


def test_missing_secret_generated_in_test_mode():
    first = Settings(test_mode=True)
    second = Settings(test_mode=True)
    assert len(first.jwt_secret) >= 32
    assert first.jwt_secret != second.jwt_secret


def test_from_env_reads_environment(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "e" * 40)
    monkeypatch.setenv("TOKEN_TTL_SECONDS", "120")
    monkeypatch.setenv("CHALLENGE_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("USE_MEMORY_STORE", "true")
    settings = Settings.from_env()
    assert settings.jwt_secret == "e" * 40
    assert settings.token_ttl_seconds == 120
    assert settings.challenge_max_attempts == 3
    assert settings.use_memory_store is True


def test_non_positive_ttl_rejected(monkeypatch):
    monkeypatch.setenv("TOKEN_TTL_SECONDS", "0")
    with pytest.raises(ValidationError):
        Settings.from_env()


def test_settings_cache(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    assert get_settings() is first
    monkeypatch.setenv("JWT_ISSUER", "other-issuer")
    assert get_settings().jwt_issuer == first.jwt_issuer
    reset_settings_cache()
    assert get_settings().jwt_issuer == "other-issuer"
    reset_settings_cache()
