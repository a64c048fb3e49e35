"""
codecks-mcp exception hierarchy.

All custom exceptions live here to avoid circular imports. Each class names
the ``error_type`` that the response contract reports for it.
"""


class CodecksError(Exception):
    """Generic operational failure (not-found, bad upstream answer)."""

    error_type = "error"


class SetupError(CodecksError):
    """Credentials missing or expired. Remedy is re-authentication, not retry."""

    error_type = "setup"


class ValidationError(CodecksError):
    """Caller input violates a format, length, or enum rule."""

    error_type = "validation"


class TransportError(CodecksError):
    """Network, timeout, or HTTP failure after the retry budget."""

    error_type = "transport"


class RateLimitError(TransportError):
    """HTTP 429 still returned after retries."""

    error_type = "rate_limit"


class ProtocolError(CodecksError):
    """Upstream returned a body or shape that cannot be parsed."""

    error_type = "protocol"


class HTTPError(Exception):
    """Raised by the raw transport for HTTP errors that callers translate."""

    def __init__(self, code, reason, body, headers=None):
        super().__init__(f"HTTP {code}: {reason}")
        self.code = code
        self.reason = reason
        self.body = body
        self.headers = headers or {}
