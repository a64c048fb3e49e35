"""Core helpers: settings/client caching, the _call dispatcher, result finalizing."""

from __future__ import annotations

from typing import Any

from codecks_mcp.client import CodecksClient
from codecks_mcp.config import Settings, load_settings
from codecks_mcp.contract import contract_error, finalize_tool_result
from codecks_mcp.exceptions import CodecksError

_settings: Settings | None = None
_client: CodecksClient | None = None


def _get_settings() -> Settings:
    """Read configuration once per process."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def _get_client() -> CodecksClient:
    """Return a cached CodecksClient, validating the token on first use."""
    global _client
    if _client is None:
        _client = CodecksClient(_get_settings())
    return _client


def _finalize(result: Any) -> Any:
    return finalize_tool_result(result, _get_settings().response_mode)


def _rejected(err: CodecksError) -> Any:
    """Failure envelope for input rejected before reaching the client."""
    return _finalize(contract_error(str(err), err.error_type))


_ALLOWED_METHODS = frozenset(
    {
        "get_account",
        "list_cards",
        "get_card",
        "list_decks",
        "list_projects",
        "list_milestones",
        "list_tags",
        "list_activity",
        "pm_focus",
        "standup",
        "list_hand",
        "add_to_hand",
        "remove_from_hand",
        "create_card",
        "update_cards",
        "mark_done",
        "mark_started",
        "archive_card",
        "unarchive_card",
        "delete_card",
        "scaffold_feature",
        "split_features",
        "create_comment",
        "reply_comment",
        "close_comment",
        "reopen_comment",
        "list_conversations",
    }
)


def _call(method_name: str, **kwargs):
    """Call a CodecksClient method, converting exceptions to error envelopes."""
    if method_name not in _ALLOWED_METHODS:
        return contract_error(f"Unknown method: {method_name}", "error")
    try:
        return getattr(_get_client(), method_name)(**kwargs)
    except CodecksError as e:
        return contract_error(str(e), e.error_type)
    except Exception as e:
        return contract_error(f"Unexpected error: {e}", "error")


def _failed(result: Any) -> bool:
    return isinstance(result, dict) and result.get("ok") is False


_SLIM_DROP = frozenset({"deck_id", "owner_id", "milestone_id", "parent_card_id"})


def _slim_card(card: dict) -> dict:
    """Drop raw relation ids and empty values from a card row."""
    return {k: v for k, v in card.items() if k not in _SLIM_DROP and v is not None}
