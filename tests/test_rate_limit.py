from __future__ import annotations

import base64
import hashlib
import hmac
import json

import pytest

import rate_limit

SECRET = "test-rate-limit-secret"


def _cookie_pair(set_cookie: str) -> str:
    return set_cookie.split(";", 1)[0]


def _value(set_cookie: str) -> str:
    return _cookie_pair(set_cookie).split("=", 1)[1]


@pytest.mark.parametrize("key", ["unknown", "203.0.113.9", "2001:db8::1", "klient-åäö"])
@pytest.mark.parametrize("issued_at", [0, 1, 59_999, 1_760_000_000_000, 2**53])
def test_issue_then_check_returns_timestamp(key: str, issued_at: int) -> None:
    cookie = rate_limit.issue(issued_at, key, SECRET)
    assert rate_limit.check(_cookie_pair(cookie), key, SECRET) == issued_at


def test_check_finds_cookie_among_others() -> None:
    cookie = rate_limit.issue(1234, "198.51.100.7", SECRET)
    header = f"theme=dark; {_cookie_pair(cookie)}; lang=sv"
    assert rate_limit.check(header, "198.51.100.7", SECRET) == 1234


@pytest.mark.parametrize(
    "neighbour",
    ['consent={"necessary":true,"stats":false}', 'prefs="unterminated', "flag", "a=b=c"],
)
def test_check_survives_unparseable_neighbour_cookies(neighbour: str) -> None:
    cookie = rate_limit.issue(1000, "k", SECRET)
    header = f"{neighbour}; {_cookie_pair(cookie)}"
    assert rate_limit.check(header, "k", SECRET) == 1000


def test_issue_cookie_attributes() -> None:
    cookie = rate_limit.issue(1000, "unknown", SECRET)
    assert cookie.startswith("rl=")
    assert cookie.endswith("; Path=/; HttpOnly; SameSite=Lax; Max-Age=86400")
    payload_b64, signature = _value(cookie).split(".")
    assert "=" not in payload_b64 and "=" not in signature
    decoded = base64.urlsafe_b64decode(payload_b64 + "=" * (-len(payload_b64) % 4))
    assert json.loads(decoded) == {"ts": 1000}


def test_signature_covers_payload_then_client_key() -> None:
    payload_b64 = "eyJ0cyI6MTAwMH0"
    expected = base64.urlsafe_b64encode(
        hmac.new(SECRET.encode(), f"{payload_b64}|10.0.0.1".encode(), hashlib.sha256).digest()
    ).decode().rstrip("=")
    assert rate_limit.sign(payload_b64, SECRET, "10.0.0.1") == expected


def test_empty_secret_uses_insecure_default() -> None:
    assert rate_limit.sign("abc", "", "k") == rate_limit.sign("abc", "weak", "k")


def test_flipping_any_signature_character_invalidates_cookie() -> None:
    value = _value(rate_limit.issue(1_700_000_000_000, "192.0.2.1", SECRET))
    payload_b64, signature = value.split(".")
    for index, char in enumerate(signature):
        replacement = "A" if char != "A" else "B"
        tampered = signature[:index] + replacement + signature[index + 1:]
        header = f"rl={payload_b64}.{tampered}"
        assert rate_limit.check(header, "192.0.2.1", SECRET) is None


def test_token_does_not_verify_for_other_client_or_secret() -> None:
    header = _cookie_pair(rate_limit.issue(5000, "192.0.2.1", SECRET))
    assert rate_limit.check(header, "192.0.2.2", SECRET) is None
    assert rate_limit.check(header, "192.0.2.1", "another-secret") is None


def test_swapped_payload_is_rejected() -> None:
    value = _value(rate_limit.issue(5000, "k", SECRET))
    _, signature = value.split(".")
    forged_payload = base64.urlsafe_b64encode(b'{"ts":0}').decode().rstrip("=")
    assert rate_limit.check(f"rl={forged_payload}.{signature}", "k", SECRET) is None


@pytest.mark.parametrize("record", [b'{"ts":1.5}', b'{"ts":"1000"}', b'{"ts":true}', b"[1000]", b"not json", b'{"t":1}'])
def test_signed_but_malformed_payload_is_ignored(record: bytes) -> None:
    payload_b64 = base64.urlsafe_b64encode(record).decode().rstrip("=")
    header = f"rl={payload_b64}.{rate_limit.sign(payload_b64, SECRET, 'k')}"
    assert rate_limit.check(header, "k", SECRET) is None


@pytest.mark.parametrize(
    "header",
    [None, "", "rl=", "rl=abc", "rl=.", "rl=abc.", "rl=.abc", "rl=abc.ä", "other=1", 'rl="unterminated'],
)
def test_garbage_cookies_yield_no_token(header: str | None) -> None:
    assert rate_limit.check(header, "k", SECRET) is None


@pytest.mark.parametrize(
    ("forwarded_for", "expected"),
    [
        (None, "unknown"),
        ("", "unknown"),
        ("   ", "unknown"),
        ("203.0.113.9", "203.0.113.9"),
        (" 203.0.113.9 , 10.0.0.1", "203.0.113.9"),
        (", 10.0.0.1", "unknown"),
    ],
)
def test_client_key(forwarded_for: str | None, expected: str) -> None:
    assert rate_limit.client_key(forwarded_for) == expected


def test_is_rate_limited_window() -> None:
    assert rate_limit.is_rate_limited(None, 10_000) is False
    assert rate_limit.is_rate_limited(0, 59_999) is True
    assert rate_limit.is_rate_limited(0, 60_000) is False
    assert rate_limit.is_rate_limited(0, 10_000, window_ms=5_000) is False
