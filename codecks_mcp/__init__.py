"""codecks-mcp: Codecks.io project management for LLM agents."""

from codecks_mcp.client import CodecksClient
from codecks_mcp.config import VERSION, Settings, load_settings
from codecks_mcp.exceptions import (
    CodecksError,
    ProtocolError,
    RateLimitError,
    SetupError,
    TransportError,
    ValidationError,
)

__all__ = [
    "VERSION",
    "CodecksClient",
    "Settings",
    "load_settings",
    "CodecksError",
    "ProtocolError",
    "RateLimitError",
    "SetupError",
    "TransportError",
    "ValidationError",
]
