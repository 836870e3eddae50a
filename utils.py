"""
Small helpers shared by the booking API and the notifiers.

* ``new_server_id`` – display/correlation id returned to the browser as
  ``serverId``.  It is random and short, not a primary key, so no
  collision guarantee is made.
* ``now_millis`` / ``iso_utc`` – wall-clock helpers.  The API reports
  ``serverTime`` as UTC ISO 8601 with millisecond precision and a ``Z``
  suffix, matching what browsers produce with ``Date.toISOString()``.
* ``format_pickup_time`` – renders a pickup date-time the way a Swedish
  reader expects it (``12 maj 2026 10:00``).  Values that do not parse
  are returned unchanged so free-text answers survive.
"""

from __future__ import annotations

import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import validation

SERVER_ID_PREFIX = "svr_"
SERVER_ID_LENGTH = 11
_BASE36_ALPHABET = string.digits + string.ascii_lowercase
SWEDISH_MONTHS = ("jan.", "feb.", "mars", "apr.", "maj", "juni", "juli", "aug.", "sep.", "okt.", "nov.", "dec.")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def new_server_id() -> str:
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(SERVER_ID_LENGTH))
    return f"{SERVER_ID_PREFIX}{suffix}"


def now_millis() -> int:
    return int(time.time() * 1000)


def iso_utc(millis: Optional[int] = None) -> str:
    effective = now_millis() if millis is None else millis
    moment = EPOCH + timedelta(milliseconds=effective)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_pickup_time(value: Any) -> str:
    raw = "" if value is None else str(value).strip()
    parsed = validation.parse_datetime(raw)
    if parsed is None:
        return raw
    local = parsed.astimezone()
    month = SWEDISH_MONTHS[local.month - 1]
    return f"{local.day} {month} {local.year} {local:%H:%M}"
