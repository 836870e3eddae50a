"""
Webserver for the Hempant pant pickup booking form.

The website posts a pickup booking as JSON; this module validates it,
throttles repeat submissions from the same client with a signed cookie
and forwards the booking to the owner by SMS or chat webhook.  Nothing
is stored on the server.

Endpoints
~~~~~~~~~

* ``POST /api/book`` – body JSON with at least ``adress`` and
  ``telefon`` (see ``validation.py`` for the form variants).  Returns
  ``{ok: true, serverId, serverTime}`` on success, plus ``sent`` and
  ``failed`` counts when the SMS backend is used.
* ``OPTIONS`` – CORS preflight, answered with 200 and an empty body.

Every response carries permissive CORS headers so the form can be
hosted on a different origin.

Run the server from the project root with:

```
python3 app.py
```
"""

from __future__ import annotations

import json
import logging
import re
import urllib.parse
import uuid
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Mapping, Optional, Union

import notifications
import rate_limit
import utils
import validation
from config import runtime

logger = logging.getLogger(__name__)

BOOK_PATH = "/api/book"
MAX_BODY_BYTES = 64 * 1024
CORS_HEADERS = (
    ("Access-Control-Allow-Origin", "*"),
    ("Access-Control-Allow-Methods", "POST, OPTIONS"),
    ("Access-Control-Allow-Headers", "Content-Type"),
)

RequestBody = Union[Dict[str, Any], str, bytes, None]
NotifierFactory = Callable[[runtime.BookingConfig], notifications.Notifier]


@dataclass
class BookingResponse:
    status: int
    payload: Optional[Dict[str, Any]] = None
    set_cookie: Optional[str] = None


def _error(status: int, message: str, *, set_cookie: Optional[str] = None, **extra: Any) -> BookingResponse:
    payload: Dict[str, Any] = {"ok": False, "error": message}
    payload.update(extra)
    return BookingResponse(status, payload, set_cookie)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def decode_body(body: RequestBody) -> Dict[str, Any]:
    """Accept a pre-parsed mapping or raw JSON text/bytes.

    Raises ``ValueError`` for undecodable bytes, malformed JSON, a JSON
    document that is not an object or a pre-parsed body of any other
    type.  An empty body decodes to ``{}``.
    """
    if isinstance(body, dict):
        return body
    if body is None:
        return {}
    if not isinstance(body, (str, bytes)):
        raise ValueError(f"unsupported body type {type(body).__name__}")
    text = body.decode("utf-8") if isinstance(body, bytes) else body
    if not text.strip():
        return {}
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("JSON body must be an object")
    return data


def handle_booking_request(
    method: str,
    headers: Mapping[str, str],
    body: RequestBody,
    config: runtime.BookingConfig,
    *,
    now_ms: Optional[int] = None,
    notifier_factory: NotifierFactory = notifications.create_notifier,
) -> BookingResponse:
    """Run one booking submission through validation, throttling and notification.

    Validation happens before any side effect, so a rejected payload
    neither refreshes the rate-limit cookie nor reaches the notifier.
    Once a payload is accepted and not throttled a fresh cookie is issued
    and returned with the response, whatever the notification outcome.
    """
    method = (method or "").upper()
    if method == "OPTIONS":
        return BookingResponse(200)
    if method != "POST":
        return _error(405, "Method not allowed")

    try:
        data = decode_body(body)
    except ValueError:
        return _error(400, "Invalid JSON body")

    errors = validation.validate_booking(data, config.form_variant)
    if errors:
        logger.info("BOOKING_INVALID variant=%s errors=%s", config.form_variant, len(errors))
        return _error(400, "Validation error", details=errors)

    effective_now = utils.now_millis() if now_ms is None else now_ms
    set_cookie: Optional[str] = None
    try:
        client = rate_limit.client_key(_header(headers, "X-Forwarded-For"))
        issued_at = rate_limit.check(_header(headers, "Cookie"), client, config.rate_limit_secret)
        if rate_limit.is_rate_limited(issued_at, effective_now):
            logger.info("BOOKING_RATE_LIMITED client=%s ageMs=%s", client, effective_now - (issued_at or 0))
            return _error(429, "Rate limited")
        set_cookie = rate_limit.issue(effective_now, client, config.rate_limit_secret)
    except Exception:
        logger.warning("RATE_LIMIT_SKIPPED reason=cookie_error", exc_info=True)

    try:
        notifier = notifier_factory(config)
    except notifications.NotifierConfigError as exc:
        logger.error("NOTIFY_CONFIG_MISSING error=%s", exc)
        return _error(500, str(exc), set_cookie=set_cookie)

    try:
        result = notifier.send(notifier.compose(data))
    except notifications.NotificationError as exc:
        logger.warning("BOOKING_NOTIFY_FAILED backend=%s sent=%s failed=%s", notifier.backend, exc.sent, exc.failed)
        return _error(502, str(exc), set_cookie=set_cookie)

    payload: Dict[str, Any] = {
        "ok": True,
        "serverId": utils.new_server_id(),
        "serverTime": utils.iso_utc(effective_now),
    }
    if result.backend == "sms":
        payload["sent"] = result.sent
        payload["failed"] = result.failed
    logger.info("BOOKING_OK backend=%s serverId=%s", result.backend, payload["serverId"])
    return BookingResponse(200, payload, set_cookie)


class Handler(BaseHTTPRequestHandler):
    """HTTP front for ``handle_booking_request``."""

    server_version = "HempantBooking/1.0"

    def log_message(self, fmt: str, *args: Any) -> None:
        # Silence default logging
        return

    def _request_id(self) -> str:
        value = getattr(self, "_request_id_value", "")
        if value:
            return value
        incoming = (self.headers.get("X-Request-Id") or "").strip()
        if incoming and re.match(r"^[A-Za-z0-9._:-]{1,64}$", incoming):
            rid = incoming
        else:
            rid = uuid.uuid4().hex
        self._request_id_value = rid
        return rid

    def _booking_config(self) -> runtime.BookingConfig:
        config = getattr(self.server, "booking_config", None)
        if config is None:
            config = runtime.load_booking_config()
            self.server.booking_config = config  # type: ignore[attr-defined]
        return config

    def _send_common_headers(self, set_cookie: Optional[str]) -> None:
        for name, value in CORS_HEADERS:
            self.send_header(name, value)
        self.send_header("Cache-Control", "no-store")
        self.send_header("X-Request-Id", self._request_id())
        if set_cookie:
            self.send_header("Set-Cookie", set_cookie)

    def end_json(self, code: int, payload: Dict[str, Any], *, set_cookie: Optional[str] = None) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self._send_common_headers(set_cookie)
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def end_empty(self, code: int) -> None:
        self.send_response(code)
        self.send_header("Content-Length", "0")
        self._send_common_headers(None)
        self.end_headers()

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or "0")
        if length < 0 or length > MAX_BODY_BYTES:
            raise ValueError("unsupported_content_length")
        return self.rfile.read(length) if length > 0 else b""

    def _dispatch(self, method: str) -> None:
        path = urllib.parse.urlparse(self.path).path
        logger.info("REQUEST method=%s path=%s requestId=%s", method, path, self._request_id())
        # Drain the body so the client is not reset when the connection closes.
        try:
            body: RequestBody = self._read_body()
        except ValueError:
            body = None
            if method == "POST":
                return self.end_json(400, {"ok": False, "error": "Invalid JSON body"})

        if method != "OPTIONS" and path.rstrip("/") != BOOK_PATH:
            return self.end_json(404, {"ok": False, "error": "Not Found"})
        if method != "POST":
            body = None

        try:
            response = handle_booking_request(method, self.headers, body, self._booking_config())
        except Exception:
            logger.exception("BOOKING_ERROR requestId=%s", self._request_id())
            return self.end_json(500, {"ok": False, "error": "Internal server error"})

        if response.payload is None:
            return self.end_empty(response.status)
        return self.end_json(response.status, response.payload, set_cookie=response.set_cookie)

    def do_HEAD(self) -> None:
        self._dispatch("HEAD")

    def do_OPTIONS(self) -> None:
        self._dispatch("OPTIONS")

    def do_POST(self) -> None:
        self._dispatch("POST")

    def do_GET(self) -> None:
        self._dispatch("GET")

    def do_PUT(self) -> None:
        self._dispatch("PUT")

    def do_PATCH(self) -> None:
        self._dispatch("PATCH")

    def do_DELETE(self) -> None:
        self._dispatch("DELETE")


def create_server(host: str, port: int, config: runtime.BookingConfig) -> ThreadingHTTPServer:
    server = ThreadingHTTPServer((host, port), Handler)
    server.booking_config = config  # type: ignore[attr-defined]
    return server


def run() -> None:
    logging.basicConfig(level=runtime.log_level(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    config = runtime.load_booking_config()
    if runtime.is_production_environment() and config.uses_insecure_secret:
        raise RuntimeError("RATE_LIMIT_SECRET is required in production environments")
    port = runtime.port()
    server = create_server("0.0.0.0", port, config)
    print(f"Running Hempant booking API on http://localhost:{port}{BOOK_PATH}")
    server.serve_forever()


if __name__ == "__main__":
    run()
