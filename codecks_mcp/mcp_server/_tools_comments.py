"""Comment tools: thread create/reply/close/reopen/list (5 tools)."""

from __future__ import annotations

from codecks_mcp.exceptions import ValidationError
from codecks_mcp.mcp_server._core import _call, _failed, _finalize, _rejected
from codecks_mcp.security import sanitize_card, validate_text, validate_uuid


def create_comment(card_id: str, message: str) -> dict:
    """Start a new comment thread on a card."""
    try:
        validate_uuid(card_id)
        message = validate_text(message, "message")
    except ValidationError as e:
        return _rejected(e)
    return _finalize(_call("create_comment", card_id=card_id, message=message))


def reply_comment(thread_id: str, message: str) -> dict:
    """Reply to a comment thread.

    Args:
        thread_id: Thread id from list_conversations.
    """
    try:
        validate_uuid(thread_id, "thread_id")
        message = validate_text(message, "message")
    except ValidationError as e:
        return _rejected(e)
    return _finalize(_call("reply_comment", thread_id=thread_id, message=message))


def close_comment(thread_id: str, card_id: str) -> dict:
    """Close (resolve) a comment thread."""
    try:
        validate_uuid(thread_id, "thread_id")
        validate_uuid(card_id)
    except ValidationError as e:
        return _rejected(e)
    return _finalize(_call("close_comment", thread_id=thread_id, card_id=card_id))


def reopen_comment(thread_id: str, card_id: str) -> dict:
    """Reopen a closed comment thread."""
    try:
        validate_uuid(thread_id, "thread_id")
        validate_uuid(card_id)
    except ValidationError as e:
        return _rejected(e)
    return _finalize(_call("reopen_comment", thread_id=thread_id, card_id=card_id))


def list_conversations(card_id: str) -> dict:
    """List a card's comment threads with messages and thread ids."""
    try:
        validate_uuid(card_id)
    except ValidationError as e:
        return _rejected(e)
    result = _call("list_conversations", card_id=card_id)
    if _failed(result):
        return _finalize(result)
    # Message bodies get the same tagging as card threads.
    return _finalize(sanitize_card(result))


def register(mcp):
    """Register all comment tools with the FastMCP instance."""
    for tool in (create_comment, reply_comment, close_comment, reopen_comment, list_conversations):
        mcp.tool()(tool)
