from __future__ import annotations

import logging

import pytest

import app
from config import runtime

_ENV_NAMES = (
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_FROM_NUMBER",
    "TWILIO_MESSAGING_SERVICE_SID",
    "SMS_RECIPIENTS",
    "OWNER_NUMBERS",
    "DISCORD_WEBHOOK_URL",
    "NOTIFY_WEBHOOK_URL",
    "NOTIFY_BACKEND",
    "RATE_LIMIT_SECRET",
    "BOOKING_FORM_VARIANT",
    "PORT",
    "LOG_LEVEL",
    "APP_ENV",
    "ENV",
    "PYTHON_ENV",
    "RENDER",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_load_booking_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TWILIO_ACCOUNT_SID", " AC1 ")
    monkeypatch.setenv("TWILIO_AUTH_TOKEN", "tok")
    monkeypatch.setenv("TWILIO_MESSAGING_SERVICE_SID", "MG1")
    monkeypatch.setenv("SMS_RECIPIENTS", "0701111111, ,+46702222222")
    monkeypatch.setenv("RATE_LIMIT_SECRET", "s3cret")
    monkeypatch.setenv("BOOKING_FORM_VARIANT", "FULL")
    monkeypatch.setenv("NOTIFY_BACKEND", "SMS")

    config = runtime.load_booking_config()

    assert config.twilio_account_sid == "AC1"
    assert config.twilio_auth_token == "tok"
    assert config.twilio_messaging_service_sid == "MG1"
    assert config.sms_recipients == ("0701111111", "+46702222222")
    assert hash(config) == hash(runtime.load_booking_config())
    assert config.rate_limit_secret == "s3cret"
    assert config.uses_insecure_secret is False
    assert config.form_variant == "full"
    assert config.notify_backend == "sms"


def test_runtime_aliases(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OWNER_NUMBERS", "0701111111")
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://legacy.example/hook")

    assert runtime.sms_recipients() == ["0701111111"]
    assert runtime.discord_webhook_url() == "https://legacy.example/hook"

    monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.example/hook")
    assert runtime.discord_webhook_url() == "https://discord.example/hook"


def test_missing_secret_falls_back_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="config.runtime"):
        config = runtime.load_booking_config()
    assert config.rate_limit_secret == runtime.INSECURE_DEFAULT_RATE_LIMIT_SECRET
    assert config.uses_insecure_secret is True
    assert any("RATE_LIMIT_SECRET" in record.getMessage() for record in caplog.records)


def test_unknown_values_fall_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOOKING_FORM_VARIANT", "fancy")
    monkeypatch.setenv("NOTIFY_BACKEND", "pigeon")
    monkeypatch.setenv("PORT", "eighty")

    config = runtime.load_booking_config()

    assert config.form_variant == "basic"
    assert config.notify_backend == ""
    assert runtime.port() == 8000


def test_production_requires_rate_limit_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setattr(app, "create_server", lambda *_args: pytest.fail("server must not start"))

    assert runtime.is_production_environment() is True
    with pytest.raises(RuntimeError, match="RATE_LIMIT_SECRET"):
        app.run()


def test_render_flag_counts_as_production(monkeypatch: pytest.MonkeyPatch) -> None:
    assert runtime.is_production_environment() is False
    monkeypatch.setenv("RENDER", "true")
    assert runtime.is_production_environment() is True
