"""Tests for configuration module."""

from __future__ import annotations

import pytest

from runquest.config import Settings, _ENV_PROFILES, get_database_url, get_settings


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_dataclass():
    s = Settings(database_url="sqlite://")
    assert s.database_url == "sqlite://"
    assert s.app_env == "dev"
    assert s.max_level == 10
    assert s.progress_write_retries == 3
    assert s.catalog_path is None
    assert s.default_locale == "pt"


def test_settings_frozen():
    s = Settings(database_url="x")
    with pytest.raises(AttributeError):
        s.database_url = "y"


def test_settings_is_production():
    s = Settings(database_url="x", app_env="production")
    assert s.is_production is True
    assert s.is_dev is False


def test_get_database_url_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg2://from-env/db")
    assert get_database_url() == "postgresql+psycopg2://from-env/db"


def test_get_database_url_defaults_to_local_sqlite(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert get_database_url().startswith("sqlite")


def test_env_profiles_exist():
    assert set(_ENV_PROFILES) >= {"dev", "test", "staging", "production"}
    assert _ENV_PROFILES["dev"]["log_level"] == "DEBUG"


def test_get_settings_uses_profile_then_env(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.delenv("PROGRESS_WRITE_RETRIES", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    s = get_settings()
    assert s.app_env == "production"
    assert s.progress_write_retries == 5
    assert s.log_level == "WARNING"

    get_settings.cache_clear()
    monkeypatch.setenv("PROGRESS_WRITE_RETRIES", "1")
    monkeypatch.setenv("RUNQUEST_CATALOG_PATH", "/etc/runquest/catalog.json")
    s = get_settings()
    assert s.progress_write_retries == 1
    assert s.catalog_path == "/etc/runquest/catalog.json"


def test_unknown_env_falls_back_to_dev_profile(monkeypatch):
    monkeypatch.setenv("APP_ENV", "qa-cluster")
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    assert get_settings().log_level == "DEBUG"
