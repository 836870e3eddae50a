"""Per-client submission throttle carried in a signed cookie.

The server keeps no state: the browser holds a cookie ``rl`` whose value
is ``<payload>.<signature>``.  The payload is the unpadded URL-safe
base64 of ``{"ts": <issued at, epoch millis>}`` and the signature is an
HMAC-SHA256 over ``payload + "|" + client_key`` with the rate-limit
secret, also unpadded URL-safe base64.  The client key is the first
``X-Forwarded-For`` hop, so a token minted for one apparent IP does not
verify for another.

Throttling is advisory.  Any cookie that fails to parse or verify is
treated as absent, and clients that control their own proxy headers can
pick any client key they like.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from typing import Optional

from config.runtime import INSECURE_DEFAULT_RATE_LIMIT_SECRET

logger = logging.getLogger(__name__)

COOKIE_NAME = "rl"
COOKIE_MAX_AGE_SECONDS = 60 * 60 * 24
RATE_LIMIT_WINDOW_MS = 60_000
UNKNOWN_CLIENT_KEY = "unknown"


def client_key(forwarded_for: Optional[str]) -> str:
    first_hop = (forwarded_for or "").split(",")[0].strip()
    return first_hop or UNKNOWN_CLIENT_KEY


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def sign(payload_b64: str, secret: str, key: str) -> str:
    message = f"{payload_b64}|{key}".encode("utf-8")
    digest = hmac.new((secret or INSECURE_DEFAULT_RATE_LIMIT_SECRET).encode("utf-8"), message, hashlib.sha256)
    return _b64encode(digest.digest())


def _cookie_value(cookie_header: Optional[str]) -> Optional[str]:
    # Parsed pair by pair so one malformed neighbour cannot hide the token.
    value: Optional[str] = None
    for part in (cookie_header or "").split(";"):
        name, sep, raw = part.strip().partition("=")
        if sep and name == COOKIE_NAME:
            value = raw.strip()
    return value


def check(cookie_header: Optional[str], key: str, secret: str) -> Optional[int]:
    """Return the issue time of a valid ``rl`` cookie, else ``None``."""
    raw_value = _cookie_value(cookie_header)
    if not raw_value or "." not in raw_value:
        return None
    payload_b64, signature = raw_value.split(".", 1)
    if not payload_b64 or not signature:
        return None
    expected = sign(payload_b64, secret, key)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
        return None
    try:
        record = json.loads(_b64decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(record, dict):
        return None
    issued_at = record.get("ts")
    if isinstance(issued_at, bool) or not isinstance(issued_at, int):
        return None
    return issued_at


def issue(now_ms: int, key: str, secret: str) -> str:
    """Build the ``Set-Cookie`` directive for a fresh token."""
    payload = json.dumps({"ts": int(now_ms)}, separators=(",", ":")).encode("utf-8")
    payload_b64 = _b64encode(payload)
    parts = [
        f"{COOKIE_NAME}={payload_b64}.{sign(payload_b64, secret, key)}",
        "Path=/",
        "HttpOnly",
        "SameSite=Lax",
        f"Max-Age={COOKIE_MAX_AGE_SECONDS}",
    ]
    return "; ".join(parts)


def is_rate_limited(issued_at_ms: Optional[int], now_ms: int, window_ms: int = RATE_LIMIT_WINDOW_MS) -> bool:
    if issued_at_ms is None:
        return False
    return now_ms - issued_at_ms < window_ms
