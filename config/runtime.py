from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

INSECURE_DEFAULT_RATE_LIMIT_SECRET = "weak"
FORM_VARIANTS = {"basic", "two_times", "full"}
NOTIFY_BACKENDS = {"sms", "webhook"}


def env_first(*names: str, default: str = "") -> str:
    for name in names:
        value = (os.environ.get(name) or "").strip()
        if value:
            return value
    return default


def twilio_account_sid() -> str:
    return env_first("TWILIO_ACCOUNT_SID")


def twilio_auth_token() -> str:
    return env_first("TWILIO_AUTH_TOKEN")


def twilio_from_number() -> str:
    return env_first("TWILIO_FROM_NUMBER")


def twilio_messaging_service_sid() -> str:
    return env_first("TWILIO_MESSAGING_SERVICE_SID")


def sms_recipients() -> List[str]:
    raw = env_first("SMS_RECIPIENTS", "OWNER_NUMBERS")
    return [part.strip() for part in raw.split(",") if part.strip()]


def discord_webhook_url() -> str:
    return env_first("DISCORD_WEBHOOK_URL", "NOTIFY_WEBHOOK_URL")


def notify_backend() -> str:
    return env_first("NOTIFY_BACKEND").lower()


def rate_limit_secret() -> str:
    return env_first("RATE_LIMIT_SECRET")


def booking_form_variant() -> str:
    value = env_first("BOOKING_FORM_VARIANT", default="basic").lower()
    if value not in FORM_VARIANTS:
        logger.warning("Unknown BOOKING_FORM_VARIANT=%s, falling back to basic", value)
        return "basic"
    return value


def log_level() -> str:
    return env_first("LOG_LEVEL", default="INFO").upper()


def port() -> int:
    raw = env_first("PORT", default="8000")
    try:
        return int(raw)
    except ValueError:
        return 8000


def is_production_environment() -> bool:
    """Best-effort check for production runtime."""
    env_name = env_first("APP_ENV", "ENV", "PYTHON_ENV").lower()
    if env_name in {"production", "prod"}:
        return True
    return env_first("RENDER").lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class BookingConfig:
    """Everything the booking flow needs, read once from the environment."""

    rate_limit_secret: str = INSECURE_DEFAULT_RATE_LIMIT_SECRET
    form_variant: str = "basic"
    notify_backend: str = ""
    webhook_url: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    twilio_messaging_service_sid: str = ""
    sms_recipients: Tuple[str, ...] = ()

    @property
    def uses_insecure_secret(self) -> bool:
        return self.rate_limit_secret == INSECURE_DEFAULT_RATE_LIMIT_SECRET


def load_booking_config() -> BookingConfig:
    secret = rate_limit_secret()
    if not secret:
        logger.warning("RATE_LIMIT_SECRET is not set; rate-limit cookies are signed with an insecure default.")
        secret = INSECURE_DEFAULT_RATE_LIMIT_SECRET
    backend: Optional[str] = notify_backend() or None
    if backend is not None and backend not in NOTIFY_BACKENDS:
        logger.warning("Unknown NOTIFY_BACKEND=%s, selecting backend from configured collaborators", backend)
        backend = None
    return BookingConfig(
        rate_limit_secret=secret,
        form_variant=booking_form_variant(),
        notify_backend=backend or "",
        webhook_url=discord_webhook_url(),
        twilio_account_sid=twilio_account_sid(),
        twilio_auth_token=twilio_auth_token(),
        twilio_from_number=twilio_from_number(),
        twilio_messaging_service_sid=twilio_messaging_service_sid(),
        sms_recipients=tuple(sms_recipients()),
    )
