"""Tests for the exception hierarchy and its contract error types."""

import pytest

from codecks_mcp.exceptions import (
    CodecksError,
    HTTPError,
    ProtocolError,
    RateLimitError,
    SetupError,
    TransportError,
    ValidationError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "cls, error_type",
        [
            (CodecksError, "error"),
            (SetupError, "setup"),
            (ValidationError, "validation"),
            (TransportError, "transport"),
            (RateLimitError, "rate_limit"),
            (ProtocolError, "protocol"),
        ],
    )
    def test_error_types(self, cls, error_type):
        assert cls.error_type == error_type
        assert issubclass(cls, CodecksError)

    def test_rate_limit_is_transport(self):
        assert issubclass(RateLimitError, TransportError)

    def test_message_preserved(self):
        assert str(SetupError("[TOKEN_EXPIRED] x")) == "[TOKEN_EXPIRED] x"


class TestHTTPError:
    def test_attributes(self):
        e = HTTPError(404, "Not Found", "body")
        assert e.code == 404
        assert e.reason == "Not Found"
        assert e.body == "body"
        assert e.headers == {}

    def test_not_a_codecks_error(self):
        assert not isinstance(HTTPError(500, "x", ""), CodecksError)
