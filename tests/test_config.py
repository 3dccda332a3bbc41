"""Tests for server and client settings."""

import os

import pytest
from pydantic import ValidationError

os.environ.setdefault("DATABASE_URL", "sqlite://")

from changestreams.config import (
    ClientSettings,
    Settings,
    get_settings,
    reset_settings_cache,
)
from changestreams.infrastructure.database import build_listener_dsn


@pytest.fixture
def fresh_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


def test_settings_defaults():
    settings = Settings(database_url="postgresql+psycopg2://app:secret@db:5432/app")

    assert settings.change_channel == "table_changed"
    assert settings.change_listener_enabled is True
    assert settings.install_change_triggers is True
    assert settings.listener_retry_initial_delay == 1.0
    assert settings.listener_retry_max_delay == 30.0
    assert settings.hub_require_token is False
    assert settings.hub_send_timeout == 5.0
    assert settings.cors_allow_origins == ["http://localhost:4200"]


def test_settings_read_from_environment(monkeypatch, fresh_settings):
    monkeypatch.setenv("DATABASE_URL", "postgresql://app@db/app")
    monkeypatch.setenv("CHANGE_CHANNEL", "row_changes")
    monkeypatch.setenv("CHANGE_LISTENER_ENABLED", "false")

    settings = get_settings()

    assert settings.database_url == "postgresql://app@db/app"
    assert settings.change_channel == "row_changes"
    assert settings.change_listener_enabled is False
    assert get_settings() is settings


def test_channel_must_be_a_plain_identifier():
    with pytest.raises(ValidationError):
        Settings(database_url="postgresql://db/app", change_channel="table changed; DROP")


def test_token_requirement_needs_a_secret_key():
    with pytest.raises(ValidationError):
        Settings(database_url="postgresql://db/app", hub_require_token=True, secret_key=None)

    settings = Settings(
        database_url="postgresql://db/app", hub_require_token=True, secret_key="s3cret"
    )
    assert settings.hub_require_token is True


def test_retry_delays_must_be_ordered():
    with pytest.raises(ValidationError):
        Settings(
            database_url="postgresql://db/app",
            listener_retry_initial_delay=10,
            listener_retry_max_delay=5,
        )


def test_listener_dsn_strips_the_sqlalchemy_driver():
    settings = Settings(database_url="postgresql+psycopg2://app:secret@db:5432/app")

    assert build_listener_dsn(settings) == "postgresql://app:secret@db:5432/app"


def test_listener_dsn_prefers_explicit_value():
    settings = Settings(
        database_url="postgresql+psycopg2://app@db/app",
        listener_dsn="postgresql://listener@replica/app",
    )

    assert build_listener_dsn(settings) == "postgresql://listener@replica/app"


def test_listener_dsn_requires_postgres():
    with pytest.raises(ValueError):
        build_listener_dsn(Settings(database_url="sqlite://"))


@pytest.mark.parametrize(
    ("base_url", "expected"),
    [
        ("http://localhost:8000", "ws://localhost:8000/changes"),
        ("https://api.example.com/", "wss://api.example.com/changes"),
    ],
)
def test_client_hub_url_is_derived_from_api_url(monkeypatch, base_url, expected):
    monkeypatch.delenv("CHANGESTREAMS_HUB_URL", raising=False)

    settings = ClientSettings(api_base_url=base_url)

    assert settings.resolved_hub_url() == expected


def test_client_hub_url_can_be_overridden(monkeypatch):
    monkeypatch.setenv("CHANGESTREAMS_HUB_URL", "wss://hub.example.com/stream")
    monkeypatch.setenv("CHANGESTREAMS_ACCESS_TOKEN", "abc")

    settings = ClientSettings()

    assert settings.resolved_hub_url() == "wss://hub.example.com/stream"
    assert settings.access_token == "abc"
