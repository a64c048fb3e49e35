"""
HTTP transport, session/report requests, and token validation for codecks-mcp.
"""

import hashlib
import json
import re
import sys
import time
import urllib.error
import urllib.parse
import urllib.request
import uuid

from codecks_mcp.exceptions import (
    HTTPError,
    ProtocolError,
    RateLimitError,
    SetupError,
    TransportError,
)

_RETRYABLE_HTTP_CODES = frozenset({429, 502, 503, 504})

# ---------------------------------------------------------------------------
# Security helpers
# ---------------------------------------------------------------------------


def _mask_token(token):
    """Show only first 6 chars of a token for safe logging."""
    return token[:6] + "..." if len(token) > 6 else token


def _sanitize_error(body, max_len=500):
    """Truncate and clean error body for safe display."""
    if not body:
        return ""
    cleaned = re.sub(r"<[^>]+>", "", body)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if len(cleaned) > max_len:
        return cleaned[:max_len] + "... [truncated]"
    return cleaned


def _sanitize_url_for_log(url):
    """Mask sensitive query params in URLs before logging."""
    parsed = urllib.parse.urlsplit(url)
    if not parsed.query:
        return url
    pairs = urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
    masked = [
        (key, "***" if key.lower() in {"token", "accesskey"} else value) for key, value in pairs
    ]
    safe_query = urllib.parse.urlencode(masked, doseq=True)
    return urllib.parse.urlunsplit(
        (parsed.scheme, parsed.netloc, parsed.path, safe_query, parsed.fragment)
    )


def _error_envelope(message, status=None, request_id=None, retryable=None, detail=None):
    """Build a consistent HTTP error message with status/request metadata."""
    meta = []
    if status is not None:
        meta.append(f"status={status}")
    if request_id:
        meta.append(f"request_id={request_id}")
    if retryable is not None:
        meta.append(f"retryable={'yes' if retryable else 'no'}")
    suffix = f" ({', '.join(meta)})" if meta else ""
    body = f"[ERROR] {message}{suffix}"
    if detail:
        body += f"\n{detail}"
    return body


def _expect_object_response(result, operation):
    """Ensure API helpers only return JSON objects (dict)."""
    if isinstance(result, dict):
        return result
    raise ProtocolError(
        f"[ERROR] Unexpected {operation} response shape: "
        f"expected JSON object, got {type(result).__name__}."
    )


def _parse_retry_after(headers):
    """Return Retry-After seconds from response headers, or None."""
    if not headers:
        return None
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        secs = float(str(value).strip())
    except ValueError:
        return None
    return max(0.0, secs)


def _is_timeout(exc):
    if isinstance(exc, TimeoutError):
        return True
    return isinstance(getattr(exc, "reason", None), TimeoutError)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class Transport:
    """Bounded-timeout JSON-over-HTTP with retries for idempotent calls.

    Retry happens only when the caller declared the call idempotent and the
    failure is a timeout, a connection error, or a status in
    ``_RETRYABLE_HTTP_CODES``. Delay is the server's ``Retry-After`` when
    present, else ``base * 2**attempt``.
    """

    def __init__(self, settings):
        self.settings = settings

    # -- logging ---------------------------------------------------------

    def _log_event(self, **fields):
        """Emit structured HTTP logs to stderr when enabled."""
        if not self.settings.http_log_enabled:
            return
        print("[HTTP] " + json.dumps(fields, ensure_ascii=False, sort_keys=True), file=sys.stderr)

    def _is_sampled(self, request_id):
        """Decide if a request should be logged based on sample rate."""
        rate = self.settings.http_log_sample_rate
        if rate <= 0:
            return False
        if rate >= 1:
            return True
        if not request_id:
            return False
        digest = hashlib.sha256(request_id.encode("utf-8")).digest()
        bucket = int.from_bytes(digest[:4], "big") / 4294967295.0
        return bucket < rate

    def _backoff(self, attempt):
        return self.settings.http_retry_base_seconds * (2**attempt)

    # -- request ---------------------------------------------------------

    def request(self, url, data=None, headers=None, method="POST", idempotent=False):
        """Send one logical request and return the parsed JSON body.

        Raises HTTPError for terminal HTTP failures (callers translate the
        status), TransportError for timeouts and connection failures, and
        ProtocolError for oversize or non-JSON bodies.
        """
        settings = self.settings
        body = json.dumps(data).encode("utf-8") if data is not None else None
        request_id = (headers or {}).get("X-Request-Id")
        safe_url = _sanitize_url_for_log(url)
        sampled = self._is_sampled(request_id)
        max_attempts = 1 + (settings.http_max_retries if idempotent else 0)
        timeout = max(1, settings.http_timeout_seconds)
        max_bytes = settings.http_max_response_bytes

        for attempt in range(max_attempts):
            last_attempt = attempt >= max_attempts - 1
            start = time.perf_counter()
            req = urllib.request.Request(url, data=body, headers=headers or {}, method=method)
            if sampled:
                self._log_event(
                    phase="request",
                    method=method,
                    url=safe_url,
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    idempotent=idempotent,
                    request_id=request_id,
                    timeout_seconds=timeout,
                )
            try:
                with urllib.request.urlopen(req, timeout=timeout) as resp:
                    content_type = resp.headers.get("Content-Type", "")
                    raw = resp.read(max_bytes + 1)
            except urllib.error.HTTPError as e:
                error_body = e.read(max_bytes).decode("utf-8", errors="replace") if e.fp else ""
                retryable = e.code in _RETRYABLE_HTTP_CODES
                will_retry = idempotent and retryable and not last_attempt
                if sampled:
                    self._log_event(
                        phase="response",
                        method=method,
                        url=safe_url,
                        attempt=attempt + 1,
                        status=e.code,
                        retryable=retryable,
                        will_retry=will_retry,
                        latency_ms=round((time.perf_counter() - start) * 1000, 2),
                        request_id=request_id,
                    )
                if will_retry:
                    delay = _parse_retry_after(getattr(e, "headers", None))
                    time.sleep(self._backoff(attempt) if delay is None else delay)
                    continue
                raise HTTPError(e.code, e.reason, error_body, headers=e.headers) from e
            except (TimeoutError, urllib.error.URLError, ConnectionError) as e:
                timed_out = _is_timeout(e)
                will_retry = idempotent and not last_attempt
                if sampled:
                    self._log_event(
                        phase="network_error",
                        method=method,
                        url=safe_url,
                        attempt=attempt + 1,
                        error="timeout" if timed_out else f"url_error: {getattr(e, 'reason', e)}",
                        will_retry=will_retry,
                        request_id=request_id,
                    )
                if will_retry:
                    time.sleep(self._backoff(attempt))
                    continue
                if timed_out:
                    message = (
                        f"Request timed out after {timeout} seconds. "
                        "Is the Codecks API reachable?"
                    )
                else:
                    message = f"Connection failed: {getattr(e, 'reason', e)}"
                raise TransportError(
                    _error_envelope(message, request_id=request_id, retryable=False)
                ) from e

            if sampled:
                self._log_event(
                    phase="response",
                    method=method,
                    url=safe_url,
                    attempt=attempt + 1,
                    status=200,
                    content_type=content_type,
                    bytes=len(raw),
                    latency_ms=round((time.perf_counter() - start) * 1000, 2),
                    request_id=request_id,
                )
            return _decode_json_body(raw, content_type, max_bytes)

        raise TransportError(_error_envelope("Request failed.", request_id=request_id))


def _decode_json_body(raw, content_type, max_bytes):
    if len(raw) > max_bytes:
        raise ProtocolError(f"[ERROR] Response too large from Codecks API (>{max_bytes} bytes).")
    try:
        return json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        if content_type and "json" not in content_type.lower():
            raise ProtocolError(
                f"[ERROR] Unexpected Content-Type from server ({content_type}). "
                "This may be a proxy or network issue."
            ) from None
        raise ProtocolError(
            "[ERROR] Unexpected response from Codecks API (not valid JSON)."
        ) from None


# ---------------------------------------------------------------------------
# Authenticated API
# ---------------------------------------------------------------------------


class CodecksApi:
    """Session-token queries/dispatches and report-token card creation."""

    def __init__(self, settings, transport=None):
        self.settings = settings
        self.transport = transport or Transport(settings)

    def _translate_http_error(self, e):
        server_req_id = e.headers.get("X-Request-Id") if e.headers else None
        return TransportError(
            _error_envelope(
                f"HTTP {e.code}: {e.reason}",
                status=e.code,
                request_id=server_req_id,
                retryable=e.code in _RETRYABLE_HTTP_CODES,
                detail=_sanitize_error(e.body),
            )
        )

    def session_request(self, path="/", data=None, method="POST", idempotent=False):
        """Authenticated request using the session token and account headers."""
        url = self.settings.base_url + path
        headers = {
            "X-Auth-Token": self.settings.session_token,
            "X-Account": self.settings.account,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Request-Id": str(uuid.uuid4()),
        }
        try:
            return self.transport.request(url, data, headers, method, idempotent=idempotent)
        except HTTPError as e:
            if e.code in (401, 403):
                raise SetupError(
                    "[TOKEN_EXPIRED] The Codecks session token has expired. "
                    "Please provide a fresh 'at' cookie from browser DevTools "
                    "(Network > api.codecks.io request > Cookie header > at=...)."
                ) from e
            if e.code == 429:
                raise RateLimitError(
                    "[ERROR] Rate limit reached (Codecks allows ~40 req/5s). "
                    "Wait a few seconds and retry."
                ) from e
            raise self._translate_http_error(e) from e

    def report_request(self, content, severity=None, email=None):
        """Create a card via the Report Token endpoint."""
        if not self.settings.report_token:
            raise SetupError("[SETUP_NEEDED] CODECKS_REPORT_TOKEN is not set.")
        payload = {"content": content}
        if severity:
            payload["severity"] = severity
        if email:
            payload["userEmail"] = email
        # NOTE: Token in URL query param is required by the Codecks API design.
        query_string = urllib.parse.urlencode({"token": self.settings.report_token})
        url = f"{self.settings.base_url}/user-report/v1/create-report?{query_string}"
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Request-Id": str(uuid.uuid4()),
        }
        try:
            result = self.transport.request(url, payload, headers)
        except HTTPError as e:
            if e.code in (401, 403):
                raise SetupError(
                    "[TOKEN_EXPIRED] Report token is invalid or disabled. Generate a new one."
                ) from e
            if e.code == 429:
                raise RateLimitError(
                    "[ERROR] Rate limit reached (Codecks allows ~40 req/5s). "
                    "Wait a few seconds and retry."
                ) from e
            raise self._translate_http_error(e) from e
        return _expect_object_response(result, "report")

    # -- query / dispatch -------------------------------------------------

    def query(self, q):
        """Run a Codecks query document. Queries are idempotent."""
        result = _expect_object_response(
            self.session_request("/", {"query": q}, idempotent=True), "query"
        )
        result.pop("_root", None)
        return result

    def dispatch(self, path, data):
        """Dispatch a mutation. Never retried."""
        return _expect_object_response(
            self.session_request(f"/dispatch/{path}", data), "dispatch"
        )

    def check_token(self):
        """Validate the session token before first use."""
        if not self.settings.has_credentials:
            raise SetupError(
                "[SETUP_NEEDED] No configuration found. Set CODECKS_TOKEN and CODECKS_ACCOUNT."
            )
        result = self.query({"_root": [{"account": ["id"]}]})
        # Codecks answers unauthenticated queries with empty data, not 401.
        if not result.get("account"):
            raise SetupError(
                "[TOKEN_EXPIRED] Your session token has expired. Update CODECKS_TOKEN."
            )

