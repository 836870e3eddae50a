"""Booking notifications to the shop owner.

Two interchangeable backends exist: Twilio SMS to a short list of owner
numbers, or a single chat webhook (Discord style ``{"content": ...}``).
Which one is used depends on what is configured.  Both are best effort
with a single attempt; the caller maps failures to HTTP responses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

import requests

import sms_provider
import utils
import validation
from config.runtime import BookingConfig

logger = logging.getLogger(__name__)

WEBHOOK_HEADER = "**Ny pantbokning – HEMPANT**"
SMS_HEADER = "Ny pantbokning"
SMS_FOOTER = "Skickat från hemsidan"
WEBHOOK_TIMEOUT_SECONDS = 10


class NotifierConfigError(Exception):
    """Raised when the configured backend lacks required settings."""


class NotificationError(Exception):
    """Raised when the outbound notification was not accepted."""

    def __init__(self, message: str, *, sent: int = 0, failed: int = 0) -> None:
        super().__init__(message)
        self.sent = sent
        self.failed = failed


@dataclass(frozen=True)
class NotifyResult:
    backend: str
    sent: int = 1
    failed: int = 0


class Notifier(Protocol):
    backend: str

    def compose(self, payload: Dict[str, Any]) -> str:
        """Build the message text for a validated booking."""

    def send(self, message: str) -> NotifyResult:
        """Deliver the message or raise ``NotificationError``."""


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _display_phone(value: Any) -> str:
    raw = _text(value)
    return sms_provider.normalize_swedish_mobile(raw) or raw


def _payout_label(payload: Dict[str, Any]) -> str:
    method = _text(payload.get("utbetalning"))
    if not method:
        return ""
    if method.lower() == "swish":
        swish = _display_phone(payload.get("swishnummer"))
        return f"Swish ({swish})" if swish else "Swish"
    return method


def booking_fields(data: Dict[str, Any]) -> List[Tuple[str, str]]:
    """Label/value pairs for a booking; optional empty fields are left out."""
    payload = validation.normalize_payload(data)
    postal_line = " ".join(part for part in (_text(payload.get("postnummer")), _text(payload.get("ort"))) if part)
    deposit = _text(payload.get("pantbelopp"))
    time1 = _text(payload.get("tid1"))
    time2 = _text(payload.get("tid2"))
    time2_label = utils.format_pickup_time(time2)
    if time1 and time2:
        time2_label = f"{time2_label} (≥ 1h från tid 1)"
    candidates: List[Tuple[str, str, bool]] = [
        ("Namn", _text(payload.get("namn")), False),
        ("Telefon", _display_phone(payload.get("telefon")), True),
        ("Adress", _text(payload.get("adress")), True),
        ("Postnr/Ort", postal_line, False),
        ("Önskad tid", utils.format_pickup_time(payload.get("onskadTid")), False),
        ("Tid 1", utils.format_pickup_time(time1), False),
        ("Tid 2", time2_label, False),
        ("Antal säckar", _text(payload.get("antalSakar")), False),
        ("Pantbelopp", f"{deposit} kr" if deposit else "", False),
        ("Utbetalning", _payout_label(payload), False),
    ]
    return [(label, value) for label, value, always in candidates if value or always]


def compose_sms_message(data: Dict[str, Any]) -> str:
    lines = [SMS_HEADER]
    lines.extend(f"{label}: {value}" for label, value in booking_fields(data))
    lines.append(SMS_FOOTER)
    return "\n".join(lines)


def compose_webhook_message(data: Dict[str, Any]) -> str:
    lines = [WEBHOOK_HEADER]
    lines.extend(f"**{label}:** {value}" for label, value in booking_fields(data))
    return "\n".join(lines)


class SmsNotifier:
    """Sends the booking to every owner number, one Twilio call each."""

    backend = "sms"

    def __init__(
        self,
        credentials: sms_provider.TwilioCredentials,
        recipients: List[str],
        invalid_recipients: int = 0,
    ) -> None:
        self.credentials = credentials
        self.recipients = recipients
        # Configured numbers that did not normalise; reported as failed sends.
        self.invalid_recipients = invalid_recipients

    def compose(self, payload: Dict[str, Any]) -> str:
        return compose_sms_message(payload)

    def send(self, message: str) -> NotifyResult:
        sent = 0
        failed = self.invalid_recipients
        for recipient in self.recipients:
            if sms_provider.send_sms(recipient, message, self.credentials):
                sent += 1
            else:
                failed += 1
        logger.info("SMS_RESULT sent=%s failed=%s", sent, failed)
        if sent == 0:
            raise NotificationError("SMS sending failed", sent=sent, failed=failed)
        return NotifyResult(self.backend, sent=sent, failed=failed)


class WebhookNotifier:
    """POSTs ``{"content": message}`` to a chat webhook."""

    backend = "webhook"

    def __init__(self, url: str, timeout_seconds: int = WEBHOOK_TIMEOUT_SECONDS) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds

    def compose(self, payload: Dict[str, Any]) -> str:
        return compose_webhook_message(payload)

    def send(self, message: str) -> NotifyResult:
        try:
            response = requests.post(
                self.url,
                json={"content": message},
                timeout=self.timeout_seconds,
                allow_redirects=False,
            )
        except requests.RequestException as exc:
            logger.warning("WEBHOOK_FAIL status=0 error=%s", str(exc)[:120])
            raise NotificationError("Notification failed") from exc
        status_code = int(response.status_code or 0)
        if 200 <= status_code < 300:
            logger.info("WEBHOOK_OK status=%s", status_code)
            return NotifyResult(self.backend)
        logger.warning("WEBHOOK_FAIL status=%s body=%s", status_code, (response.text or "")[:120])
        raise NotificationError("Notification failed")


def _select_backend(config: BookingConfig) -> Optional[str]:
    if config.notify_backend:
        return config.notify_backend
    if config.webhook_url:
        return "webhook"
    twilio_values = (
        config.twilio_account_sid,
        config.twilio_auth_token,
        config.twilio_from_number,
        config.twilio_messaging_service_sid,
    )
    if any(twilio_values) or config.sms_recipients:
        return "sms"
    return None


def create_notifier(config: BookingConfig) -> Notifier:
    """Build the notifier for ``config`` or raise ``NotifierConfigError``."""
    backend = _select_backend(config)
    if backend is None:
        raise NotifierConfigError("Notification not configured (DISCORD_WEBHOOK_URL or TWILIO_* missing)")

    if backend == "webhook":
        if not config.webhook_url:
            raise NotifierConfigError("DISCORD_WEBHOOK_URL missing")
        return WebhookNotifier(config.webhook_url)

    credentials = sms_provider.TwilioCredentials(
        account_sid=config.twilio_account_sid,
        auth_token=config.twilio_auth_token,
        from_number=config.twilio_from_number,
        messaging_service_sid=config.twilio_messaging_service_sid,
    )
    if not credentials.is_complete():
        raise NotifierConfigError(
            "Twilio config missing (TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER or TWILIO_MESSAGING_SERVICE_SID)"
        )
    recipients: List[str] = []
    invalid = 0
    for raw in config.sms_recipients:
        normalized = sms_provider.normalize_recipient(raw)
        if normalized:
            recipients.append(normalized)
        else:
            invalid += 1
            logger.error("SMS_RECIPIENTS contains an invalid number: %s", sms_provider.mask_phone(raw))
    if not recipients:
        raise NotifierConfigError("SMS_RECIPIENTS missing")
    return SmsNotifier(credentials, recipients, invalid_recipients=invalid)
