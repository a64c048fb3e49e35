"""Tests for api.py: transport retries, error mapping, protocol checks, token validation."""

import io
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from codecks_mcp.api import (
    CodecksApi,
    Transport,
    _error_envelope,
    _mask_token,
    _parse_retry_after,
    _sanitize_error,
    _sanitize_url_for_log,
)
from codecks_mcp.config import Settings
from codecks_mcp.exceptions import (
    HTTPError,
    ProtocolError,
    RateLimitError,
    SetupError,
    TransportError,
)

URL = "https://api.codecks.io/"


def _response(payload, content_type="application/json"):
    """A urlopen() result usable as a context manager."""
    resp = MagicMock()
    inner = resp.__enter__.return_value
    inner.headers.get.return_value = content_type
    if not isinstance(payload, bytes):
        payload = json.dumps(payload).encode()
    inner.read.return_value = payload
    return resp


def _http_error(code, body=b"busy", headers=None):
    return urllib.error.HTTPError(URL, code, "Err", headers or {}, io.BytesIO(body))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestMaskToken:
    def test_long_token(self):
        assert _mask_token("abcdef1234567890") == "abcdef..."

    def test_short_token(self):
        assert _mask_token("abc") == "abc"


class TestSanitizeUrlForLog:
    def test_masks_token_and_access_key(self):
        url = (
            "https://api.codecks.io/user-report/v1/create-report"
            "?token=secret-token&accessKey=secret-key&foo=bar"
        )
        safe = _sanitize_url_for_log(url)
        assert "token=%2A%2A%2A" in safe
        assert "accessKey=%2A%2A%2A" in safe
        assert "foo=bar" in safe
        assert "secret-token" not in safe
        assert "secret-key" not in safe

    def test_url_without_query_unchanged(self):
        assert _sanitize_url_for_log(URL) == URL


class TestSanitizeError:
    def test_strips_html(self):
        assert _sanitize_error("<h1>Error</h1><p>Details</p>") == "ErrorDetails"

    def test_truncates_long_body(self):
        result = _sanitize_error("x" * 1000)
        assert result.endswith("... [truncated]")
        assert len(result) <= 520

    def test_empty_body(self):
        assert _sanitize_error("") == ""
        assert _sanitize_error(None) == ""


class TestErrorEnvelope:
    def test_metadata_suffix(self):
        msg = _error_envelope("HTTP 503: Busy", status=503, request_id="r-1", retryable=True)
        assert msg == "[ERROR] HTTP 503: Busy (status=503, request_id=r-1, retryable=yes)"

    def test_detail_on_next_line(self):
        assert _error_envelope("boom", detail="more").endswith("\nmore")


class TestParseRetryAfter:
    def test_numeric(self):
        assert _parse_retry_after({"Retry-After": "3"}) == 3.0

    def test_negative_clamped(self):
        assert _parse_retry_after({"Retry-After": "-2"}) == 0.0

    def test_missing_or_invalid(self):
        assert _parse_retry_after(None) is None
        assert _parse_retry_after({}) is None
        assert _parse_retry_after({"Retry-After": "Wed, 21 Oct 2015"}) is None


class TestSampling:
    def test_rate_zero_disables(self):
        assert Transport(Settings(http_log_sample_rate=0.0))._is_sampled("req-1") is False

    def test_rate_one_enables(self):
        assert Transport(Settings(http_log_sample_rate=1.0))._is_sampled("req-1") is True

    def test_deterministic(self):
        transport = Transport(Settings(http_log_sample_rate=0.5))
        assert transport._is_sampled("req-stable") == transport._is_sampled("req-stable")


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


@patch("codecks_mcp.api.time.sleep")
@patch("codecks_mcp.api.urllib.request.urlopen")
class TestTransportRetry:
    def test_success_returns_parsed_json(self, mock_urlopen, mock_sleep, settings):
        mock_urlopen.return_value = _response({"card": {}})
        assert Transport(settings).request(URL, {"query": {}}) == {"card": {}}
        mock_sleep.assert_not_called()

    def test_idempotent_retries_retryable_status(self, mock_urlopen, mock_sleep, settings):
        mock_urlopen.side_effect = [_http_error(503), _response({"ok": 1})]
        result = Transport(settings).request(URL, {}, idempotent=True)
        assert result == {"ok": 1}
        assert mock_urlopen.call_count == 2
        assert mock_sleep.call_count == 1

    def test_non_idempotent_never_retried(self, mock_urlopen, mock_sleep, settings):
        mock_urlopen.side_effect = [_http_error(503), _response({"ok": 1})]
        with pytest.raises(HTTPError) as exc_info:
            Transport(settings).request(URL, {})
        assert exc_info.value.code == 503
        assert mock_urlopen.call_count == 1
        mock_sleep.assert_not_called()

    def test_attempts_bounded_by_retry_budget(self, mock_urlopen, mock_sleep, settings):
        mock_urlopen.side_effect = [_http_error(502), _http_error(502), _http_error(502)]
        with pytest.raises(HTTPError):
            Transport(settings).request(URL, {}, idempotent=True)
        assert mock_urlopen.call_count == 3

    def test_non_retryable_status_not_retried(self, mock_urlopen, mock_sleep, settings):
        mock_urlopen.side_effect = [_http_error(400, b"bad request")]
        with pytest.raises(HTTPError) as exc_info:
            Transport(settings).request(URL, {}, idempotent=True)
        assert exc_info.value.body == "bad request"
        assert mock_urlopen.call_count == 1

    def test_retry_after_header_sets_delay(self, mock_urlopen, mock_sleep, settings):
        mock_urlopen.side_effect = [
            _http_error(429, headers={"Retry-After": "3"}),
            _response({"ok": 1}),
        ]
        Transport(settings).request(URL, {}, idempotent=True)
        mock_sleep.assert_called_once_with(3.0)

    def test_exponential_backoff_without_retry_after(self, mock_urlopen, mock_sleep):
        s = Settings(http_max_retries=2, http_retry_base_seconds=0.5)
        mock_urlopen.side_effect = [_http_error(504), _http_error(504), _response({})]
        Transport(s).request(URL, {}, idempotent=True)
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    def test_timeout_retried_then_raises(self, mock_urlopen, mock_sleep, settings):
        mock_urlopen.side_effect = TimeoutError()
        with pytest.raises(TransportError, match="timed out after 30 seconds"):
            Transport(settings).request(URL, {}, idempotent=True)
        assert mock_urlopen.call_count == 3

    def test_timeout_on_dispatch_single_attempt(self, mock_urlopen, mock_sleep, settings):
        mock_urlopen.side_effect = TimeoutError()
        with pytest.raises(TransportError):
            Transport(settings).request(URL, {})
        assert mock_urlopen.call_count == 1

    def test_connection_error(self, mock_urlopen, mock_sleep, settings):
        mock_urlopen.side_effect = urllib.error.URLError("connection refused")
        with pytest.raises(TransportError, match="Connection failed: connection refused"):
            Transport(settings).request(URL, {})


@patch("codecks_mcp.api.urllib.request.urlopen")
class TestTransportBody:
    def test_oversize_body(self, mock_urlopen):
        mock_urlopen.return_value = _response(b'{"a": "' + b"x" * 64 + b'"}')
        with pytest.raises(ProtocolError, match="too large"):
            Transport(Settings(http_max_response_bytes=16)).request(URL, {})

    def test_html_body(self, mock_urlopen):
        mock_urlopen.return_value = _response(b"<html>proxy</html>", "text/html")
        with pytest.raises(ProtocolError, match="Content-Type"):
            Transport(Settings()).request(URL, {})

    def test_invalid_json_with_json_content_type(self, mock_urlopen):
        mock_urlopen.return_value = _response(b"{not json")
        with pytest.raises(ProtocolError, match="not valid JSON"):
            Transport(Settings()).request(URL, {})


@patch("codecks_mcp.api.urllib.request.urlopen")
class TestTransportLogging:
    def test_disabled_by_default(self, mock_urlopen, capsys):
        mock_urlopen.return_value = _response({})
        Transport(Settings()).request(URL, {}, headers={"X-Request-Id": "r1"})
        assert "[HTTP]" not in capsys.readouterr().err

    def test_logs_masked_url(self, mock_urlopen, capsys):
        mock_urlopen.return_value = _response({})
        Transport(Settings(http_log_enabled=True)).request(
            URL + "user-report/v1/create-report?token=secret-report",
            {},
            headers={"X-Request-Id": "r1"},
        )
        err = capsys.readouterr().err
        assert "[HTTP]" in err
        assert '"phase": "request"' in err
        assert "secret-report" not in err


# ---------------------------------------------------------------------------
# CodecksApi
# ---------------------------------------------------------------------------


def _api(settings, result=None, error=None):
    transport = MagicMock()
    if error is not None:
        transport.request.side_effect = error
    else:
        transport.request.return_value = result
    return CodecksApi(settings, transport), transport


class TestSessionRequest:
    def test_query_pops_root_and_is_idempotent(self, settings):
        api, transport = _api(settings, {"_root": [], "account": {"a1": {}}})
        result = api.query({"_root": [{"account": ["id"]}]})
        assert result == {"account": {"a1": {}}}
        args, kwargs = transport.request.call_args
        assert args[0] == "https://api.codecks.io/"
        assert args[1] == {"query": {"_root": [{"account": ["id"]}]}}
        assert kwargs["idempotent"] is True

    def test_auth_headers(self, settings):
        api, transport = _api(settings, {})
        api.query({})
        headers = transport.request.call_args.args[2]
        assert headers["X-Auth-Token"] == "fake-token"
        assert headers["X-Account"] == "fake-account"
        assert headers["X-Request-Id"]

    def test_dispatch_path_not_idempotent(self, settings):
        api, transport = _api(settings, {"payload": {}})
        api.dispatch("cards/update", {"id": "c1"})
        args, kwargs = transport.request.call_args
        assert args[0] == "https://api.codecks.io/dispatch/cards/update"
        assert kwargs["idempotent"] is False

    def test_non_object_query_response(self, settings):
        api, _ = _api(settings, [1, 2])
        with pytest.raises(ProtocolError, match="expected JSON object"):
            api.query({})

    @pytest.mark.parametrize("code", [401, 403])
    def test_auth_failure_is_setup_error(self, settings, code):
        api, _ = _api(settings, error=HTTPError(code, "Unauthorized", ""))
        with pytest.raises(SetupError, match=r"\[TOKEN_EXPIRED\]"):
            api.query({})

    def test_429_is_rate_limit(self, settings):
        api, _ = _api(settings, error=HTTPError(429, "Too Many", ""))
        with pytest.raises(RateLimitError, match="40 req/5s"):
            api.query({})

    def test_server_error_carries_metadata(self, settings):
        err = HTTPError(503, "Unavailable", "<p>down</p>", headers={"X-Request-Id": "srv-9"})
        api, _ = _api(settings, error=err)
        with pytest.raises(TransportError) as exc_info:
            api.dispatch("cards/update", {})
        msg = str(exc_info.value)
        assert "status=503" in msg
        assert "request_id=srv-9" in msg
        assert "retryable=yes" in msg
        assert "down" in msg
        assert not isinstance(exc_info.value, RateLimitError)

    def test_client_error_not_retryable(self, settings):
        api, _ = _api(settings, error=HTTPError(400, "Bad Request", ""))
        with pytest.raises(TransportError, match="retryable=no"):
            api.dispatch("cards/update", {})


class TestReportRequest:
    def test_requires_report_token(self):
        api, transport = _api(Settings(session_token="t", account="a"), {})
        with pytest.raises(SetupError, match="CODECKS_REPORT_TOKEN"):
            api.report_request("Title")
        transport.request.assert_not_called()

    def test_posts_content_with_token(self, settings):
        api, transport = _api(settings, {"cardId": "new-1"})
        assert api.report_request("Title", severity="high") == {"cardId": "new-1"}
        args = transport.request.call_args.args
        assert args[0].endswith("/user-report/v1/create-report?token=fake-report")
        assert args[1] == {"content": "Title", "severity": "high"}

    def test_invalid_token(self, settings):
        api, _ = _api(settings, error=HTTPError(403, "Forbidden", ""))
        with pytest.raises(SetupError, match="Report token"):
            api.report_request("Title")


class TestCheckToken:
    def test_missing_credentials(self):
        api, transport = _api(Settings(), {})
        with pytest.raises(SetupError, match=r"\[SETUP_NEEDED\]"):
            api.check_token()
        transport.request.assert_not_called()

    def test_empty_account_means_expired(self, settings):
        api, _ = _api(settings, {"_root": []})
        with pytest.raises(SetupError, match=r"\[TOKEN_EXPIRED\]"):
            api.check_token()

    def test_valid_token(self, settings):
        api, _ = _api(settings, {"account": {"a1": {"id": "a1"}}})
        assert api.check_token() is None
