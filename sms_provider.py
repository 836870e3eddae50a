"""SMS provider integration (Twilio)."""

from __future__ import annotations

import base64
import logging
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
SMS_MAX_BODY_LENGTH = 1600
SMS_TIMEOUT_SECONDS = 8


@dataclass(frozen=True)
class TwilioCredentials:
    account_sid: str
    auth_token: str
    from_number: str = ""
    messaging_service_sid: str = ""

    def is_complete(self) -> bool:
        has_sender = bool(self.from_number or self.messaging_service_sid)
        return bool(self.account_sid and self.auth_token and has_sender)


def normalize_swedish_mobile(raw_value: Optional[str]) -> Optional[str]:
    """Normalize Swedish mobile to E.164 format (+467XXXXXXXX)."""
    value = (raw_value or "").strip()
    if not value:
        return None
    compact = "".join(ch for ch in value if ch.isdigit() or ch == "+")
    if compact.startswith("0046"):
        compact = f"+46{compact[4:]}"
    if compact.startswith("+46"):
        national = compact[3:]
        if national.startswith("0"):
            national = national[1:]
        if len(national) != 9 or not national.startswith("7") or not national.isdigit():
            return None
        return f"+46{national}"
    if compact.startswith("07") and len(compact) == 10 and compact.isdigit():
        return f"+46{compact[1:]}"
    return None


def normalize_recipient(raw_value: str) -> Optional[str]:
    """Swedish numbers become E.164; other ``+`` numbers pass through."""
    normalized = normalize_swedish_mobile(raw_value)
    if normalized:
        return normalized
    compact = "".join(ch for ch in (raw_value or "") if ch.isdigit() or ch == "+")
    if compact.startswith("+") and len(compact) >= 8:
        return compact
    return None


def mask_phone(value: str) -> str:
    value = (value or "").strip()
    if len(value) <= 4:
        return "***"
    return f"{value[:3]}***{value[-2:]}"


def send_sms(to_e164: str, message: str, credentials: TwilioCredentials) -> bool:
    """Send one SMS through Twilio. Returns False on any failure."""
    if not credentials.is_complete():
        logger.warning(
            "SMS disabled: missing Twilio config (account sid, auth token and from number or messaging service)."
        )
        return False

    target = normalize_recipient(to_e164)
    if not target:
        logger.warning("SMS not sent: invalid target phone number.")
        return False

    endpoint = f"{TWILIO_API_BASE}/Accounts/{credentials.account_sid}/Messages.json"
    fields = {"To": target, "Body": message[:SMS_MAX_BODY_LENGTH]}
    if credentials.messaging_service_sid:
        fields["MessagingServiceSid"] = credentials.messaging_service_sid
    else:
        fields["From"] = credentials.from_number
    payload = urllib.parse.urlencode(fields).encode("utf-8")
    basic_auth = base64.b64encode(
        f"{credentials.account_sid}:{credentials.auth_token}".encode("utf-8")
    ).decode("ascii")
    request = urllib.request.Request(
        endpoint,
        data=payload,
        method="POST",
        headers={
            "Authorization": f"Basic {basic_auth}",
            "Content-Type": "application/x-www-form-urlencoded",
        },
    )
    try:
        with urllib.request.urlopen(request, timeout=SMS_TIMEOUT_SECONDS) as response:
            if 200 <= response.status < 300:
                return True
            body = response.read().decode("utf-8", errors="replace")
            logger.error("SMS_FAIL to=%s status=%s body=%s", mask_phone(target), response.status, body[:200])
            return False
    except Exception as exc:
        logger.exception("SMS_FAIL to=%s error=%s", mask_phone(target), exc)
        return False
