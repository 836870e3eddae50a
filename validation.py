"""Validation of pant pickup bookings submitted from the web form.

The validator is a pure function of the decoded payload and the form
variant in use.  It never raises for bad input; instead it returns a
list of Swedish, human-readable error messages which the API hands back
to the browser under ``details``.  An empty list means the booking is
accepted.

Three form variants exist:

* ``basic`` – address and a loosely formatted phone number.
* ``two_times`` – address, Swedish mobile number and two alternative
  pickup times at least one hour apart.
* ``full`` – the detailed form with name, postal address, bag count,
  deposit amount, pickup time and payout method.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

PERMISSIVE_PHONE_RE = re.compile(r"\+?[0-9 -]{7,}")
SE_MOBILE_LOCAL_RE = re.compile(r"0?7[02369]\d{7}")
SE_MOBILE_E164_RE = re.compile(r"\+467[02369]\d{7}")
MIN_PICKUP_GAP = timedelta(hours=1)
MAX_INT_DIGITS = 9

FIELD_ALIASES = {
    "adress": ("address",),
    "telefon": ("phone",),
    "namn": ("name",),
    "onskadTid": ("desiredPickupTime",),
    "tid1": ("pickupTime1",),
    "tid2": ("pickupTime2",),
    "postnummer": ("postalCode",),
    "ort": ("city",),
    "utbetalning": ("payoutMethod",),
    "swishnummer": ("swishNumber",),
    "antalSakar": ("bagCount",),
    "pantbelopp": ("depositAmount",),
}

MSG_ADDRESS_MISSING = "Adress saknas"
MSG_PHONE_INVALID = "Telefon ogiltigt"
MSG_PHONE_INVALID_SE = "Telefon ogiltigt (svenskt mobilnummer)"
MSG_BOTH_TIMES_REQUIRED = "Båda tiderna måste anges"
MSG_TIME_GAP = "Minst 1 timme mellan tid 1 och tid 2"
MSG_NAME_MISSING = "Namn saknas"
MSG_POSTAL_CODE_MISSING = "Postnummer saknas"
MSG_CITY_MISSING = "Ort saknas"
MSG_PICKUP_TIME_MISSING = "Önskad upphämtningstid saknas"
MSG_BAG_COUNT_MISSING = "Antal säckar saknas"
MSG_BAG_COUNT_INVALID = "Antal säckar måste vara ett positivt heltal"
MSG_DEPOSIT_MISSING = "Pantbelopp saknas"
MSG_DEPOSIT_INVALID = "Pantbelopp måste vara ett tal"
MSG_SWISH_INVALID = "Swishnummer ogiltigt"


def normalize_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy keyed by the canonical Swedish field names.

    English aliases are accepted; when both spellings are present the
    canonical key wins.
    """
    normalized = dict(data)
    for canonical, aliases in FIELD_ALIASES.items():
        if _is_blank(normalized.get(canonical)):
            for alias in aliases:
                if not _is_blank(data.get(alias)):
                    normalized[canonical] = data[alias]
                    break
    return normalized


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def compact_phone(value: Any) -> str:
    """Strip everything but digits and ``+``."""
    return "".join(ch for ch in _text(value) if ch.isdigit() or ch == "+")


def valid_phone_permissive(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return bool(PERMISSIVE_PHONE_RE.fullmatch(value))


def valid_se_mobile(value: Any) -> bool:
    if _is_blank(value):
        return False
    compact = compact_phone(value)
    return bool(SE_MOBILE_LOCAL_RE.fullmatch(compact) or SE_MOBILE_E164_RE.fullmatch(compact))


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 date-time; naive values are read as local time."""
    raw = _text(value)
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            parsed = parsed.astimezone()
    except (ValueError, OverflowError, OSError):
        return None
    return parsed


def valid_time_pair(first: Any, second: Any) -> bool:
    start = parse_datetime(first)
    end = parse_datetime(second)
    if start is None or end is None:
        return False
    return abs(end - start) >= MIN_PICKUP_GAP


def _positive_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    raw = _text(value)
    if not raw.isdecimal() or len(raw) > MAX_INT_DIGITS:
        return False
    return int(raw) > 0


def _non_negative_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return value >= 0
    raw = _text(value).replace(",", ".")
    try:
        return float(raw) >= 0
    except ValueError:
        return False


def validate_booking(data: Dict[str, Any], variant: str = "basic") -> List[str]:
    """Return validation errors for ``data`` (empty list when valid)."""
    payload = normalize_payload(data)
    errors: List[str] = []
    strict_phone = variant in {"two_times", "full"}
    phone_ok = valid_se_mobile if strict_phone else valid_phone_permissive

    if variant == "full" and _is_blank(payload.get("namn")):
        errors.append(MSG_NAME_MISSING)
    if _is_blank(payload.get("adress")):
        errors.append(MSG_ADDRESS_MISSING)
    if not phone_ok(payload.get("telefon")):
        errors.append(MSG_PHONE_INVALID_SE if strict_phone else MSG_PHONE_INVALID)

    if variant == "full":
        if _is_blank(payload.get("postnummer")):
            errors.append(MSG_POSTAL_CODE_MISSING)
        if _is_blank(payload.get("ort")):
            errors.append(MSG_CITY_MISSING)
        if _is_blank(payload.get("antalSakar")):
            errors.append(MSG_BAG_COUNT_MISSING)
        elif not _positive_int(payload.get("antalSakar")):
            errors.append(MSG_BAG_COUNT_INVALID)
        if _is_blank(payload.get("pantbelopp")):
            errors.append(MSG_DEPOSIT_MISSING)
        elif not _non_negative_number(payload.get("pantbelopp")):
            errors.append(MSG_DEPOSIT_INVALID)
        if _is_blank(payload.get("onskadTid")):
            errors.append(MSG_PICKUP_TIME_MISSING)
        if _text(payload.get("utbetalning")).lower() == "swish" and not phone_ok(payload.get("swishnummer")):
            errors.append(MSG_SWISH_INVALID)

    time1 = payload.get("tid1")
    time2 = payload.get("tid2")
    if variant == "two_times" and (_is_blank(time1) or _is_blank(time2)):
        errors.append(MSG_BOTH_TIMES_REQUIRED)
    if not _is_blank(time1) and not _is_blank(time2) and not valid_time_pair(time1, time2):
        errors.append(MSG_TIME_GAP)
    return errors
