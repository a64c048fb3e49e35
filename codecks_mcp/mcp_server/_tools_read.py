"""Read tools: queries and dashboards (10 tools)."""

from __future__ import annotations

from typing import Literal

from codecks_mcp.exceptions import ValidationError
from codecks_mcp.mcp_server._core import _call, _failed, _finalize, _rejected, _slim_card
from codecks_mcp.security import sanitize_activity, sanitize_card, validate_uuid


def _sanitize_rows(rows):
    return [sanitize_card(_slim_card(r)) if isinstance(r, dict) else r for r in rows]


def get_account() -> dict:
    """Get the account the session token belongs to (id, name)."""
    return _finalize(_call("get_account"))


def list_cards(
    deck: str | None = None,
    status: str | None = None,
    project: str | None = None,
    search: str | None = None,
    milestone: str | None = None,
    tag: str | None = None,
    owner: str | None = None,
    priority: str | None = None,
    sort: Literal["status", "priority", "effort", "deck", "title", "owner", "updated", "created"]
    | None = None,
    card_type: Literal["hero", "doc"] | None = None,
    hero: str | None = None,
    hand_only: bool = False,
    stale_days: int | None = None,
    updated_after: str | None = None,
    updated_before: str | None = None,
    archived: bool = False,
    include_stats: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """List cards. Filters combine with AND.

    Args:
        status: Comma-separated. not_started, started, done, blocked, in_review, in_progress.
        priority: Comma-separated. a, b, c, null.
        owner: Owner name, or 'none' for unassigned.
        hero: Parent card UUID; lists its sub-cards.
        stale_days: Cards not updated in N days.
        updated_after/updated_before: YYYY-MM-DD.
        limit/offset: Pagination (default 50/0).

    Returns:
        Dict with cards, stats, total_count, has_more, limit, offset.
    """
    if limit < 1 or offset < 0:
        return _rejected(ValidationError("[ERROR] limit must be >= 1 and offset >= 0."))
    if hero is not None:
        try:
            validate_uuid(hero, "hero")
        except ValidationError as e:
            return _rejected(e)
    result = _call(
        "list_cards",
        deck=deck,
        status=status,
        project=project,
        search=search,
        milestone=milestone,
        tag=tag,
        owner=owner,
        priority=priority,
        sort=sort,
        card_type=card_type,
        hero=hero,
        hand_only=hand_only,
        stale_days=stale_days,
        updated_after=updated_after,
        updated_before=updated_before,
        archived=archived,
        include_stats=include_stats,
    )
    if _failed(result):
        return _finalize(result)
    rows = result["cards"]
    page = rows[offset : offset + limit]
    return _finalize(
        {
            "cards": _sanitize_rows(page),
            "stats": result.get("stats"),
            "total_count": len(rows),
            "has_more": offset + limit < len(rows),
            "limit": limit,
            "offset": offset,
        }
    )


def get_card(
    card_id: str,
    include_content: bool = True,
    include_conversations: bool = True,
    archived: bool = False,
) -> dict:
    """Get full card details: content, sub-cards and comment threads.

    Args:
        include_content: False to drop the body for metadata-only checks.
        include_conversations: False to skip comment threads.
        archived: True to look up an archived card.
    """
    try:
        validate_uuid(card_id)
    except ValidationError as e:
        return _rejected(e)
    result = _call(
        "get_card",
        card_id=card_id,
        include_content=include_content,
        include_conversations=include_conversations,
        archived=archived,
    )
    if _failed(result):
        return _finalize(result)
    return _finalize(sanitize_card(result))


def list_decks(include_card_counts: bool = False) -> dict:
    """List all decks. include_card_counts=True costs one extra query."""
    result = _call("list_decks", include_card_counts=include_card_counts)
    if _failed(result):
        return _finalize(result)
    return _finalize({"decks": result, "count": len(result)})


def list_projects() -> dict:
    """List projects with the decks they own."""
    result = _call("list_projects")
    if _failed(result):
        return _finalize(result)
    return _finalize({"projects": result, "count": len(result)})


def list_milestones() -> dict:
    """List milestones."""
    result = _call("list_milestones")
    if _failed(result):
        return _finalize(result)
    return _finalize({"milestones": result, "count": len(result)})


def list_tags() -> dict:
    """List project-level tags. Tags are created in the Codecks web UI."""
    result = _call("list_tags")
    if _failed(result):
        return _finalize(result)
    return _finalize({"tags": result, "count": len(result)})


def list_activity(limit: int = 20) -> dict:
    """Show the recent activity feed."""
    result = _call("list_activity", limit=limit)
    if _failed(result):
        return _finalize(result)
    return _finalize(dict(result, activity=sanitize_activity(result["activity"])))


def pm_focus(
    project: str | None = None,
    owner: str | None = None,
    limit: int = 5,
    stale_days: int = 14,
) -> dict:
    """PM focus dashboard: blocked, in review, stale and suggested next cards.

    Args:
        limit: Max cards per list (default 5). counts are totals before the cap.
        stale_days: Days without update to count as stale (default 14).
    """
    result = _call("pm_focus", project=project, owner=owner, limit=limit, stale_days=stale_days)
    if _failed(result):
        return _finalize(result)
    result = dict(result)
    for key in ("blocked", "in_review", "stale", "suggested"):
        result[key] = _sanitize_rows(result[key])
    return _finalize(result)


def standup(days: int = 2, project: str | None = None, owner: str | None = None) -> dict:
    """Daily standup: recently done, in progress and blocked (10 each).

    Args:
        days: Lookback window for recently done cards (default 2).
    """
    result = _call("standup", days=days, project=project, owner=owner)
    if _failed(result):
        return _finalize(result)
    result = dict(result)
    for key in ("recently_done", "in_progress", "blocked"):
        result[key] = _sanitize_rows(result[key])
    return _finalize(result)


def register(mcp):
    """Register all read tools with the FastMCP instance."""
    for tool in (
        get_account,
        list_cards,
        get_card,
        list_decks,
        list_projects,
        list_milestones,
        list_tags,
        list_activity,
        pm_focus,
        standup,
    ):
        mcp.tool()(tool)
