"""Write tools: mutations, hand and scaffolding (12 tools)."""

from __future__ import annotations

from typing import Literal

from codecks_mcp.exceptions import ValidationError
from codecks_mcp.mcp_server._core import _call, _failed, _finalize, _rejected, _slim_card
from codecks_mcp.security import (
    sanitize_card,
    sanitize_split_report,
    validate_text,
    validate_uuid,
    validate_uuid_list,
)


def create_card(
    title: str,
    content: str | None = None,
    deck: str | None = None,
    project: str | None = None,
    severity: Literal["critical", "high", "low", "null"] | None = None,
    doc: bool = False,
    allow_duplicate: bool = False,
    parent: str | None = None,
) -> dict:
    """Create a card. Set deck or project to place it, parent to nest it.

    Args:
        title: Card title (max 500 chars).
        content: Card body (max 50000 chars). Use ``- []`` for checkboxes.
        parent: Parent card UUID.
        allow_duplicate: True to skip the duplicate-title check.

    Returns:
        Dict with ok, card_id and title.
    """
    try:
        title = validate_text(title, "title")
        if content is not None:
            content = validate_text(content, "content")
        if parent is not None:
            validate_uuid(parent, "parent")
    except ValidationError as e:
        return _rejected(e)
    return _finalize(
        _call(
            "create_card",
            title=title,
            content=content,
            deck=deck,
            project=project,
            severity=severity,
            doc=doc,
            allow_duplicate=allow_duplicate,
            parent=parent,
        )
    )


def update_cards(
    card_ids: list[str],
    status: Literal["not_started", "started", "done", "blocked", "in_review", "in_progress"]
    | None = None,
    priority: Literal["a", "b", "c", "null"] | None = None,
    effort: str | None = None,
    deck: str | None = None,
    title: str | None = None,
    content: str | None = None,
    milestone: str | None = None,
    hero: str | None = None,
    owner: str | None = None,
    tags: str | None = None,
    doc: Literal["true", "false"] | None = None,
    continue_on_error: bool = False,
) -> dict:
    """Update card fields. Omitted fields stay unchanged; 'null' clears a field.

    Args:
        card_ids: Full 36-char UUIDs.
        effort: Integer string, or 'null'.
        title/content: Single card only.
        milestone/owner: Name, or 'null' to clear.
        hero: Parent card UUID, or 'null' to detach.
        tags: Comma-separated, or 'null' to clear all.
        continue_on_error: Keep going after a per-card failure.

    Returns:
        Dict with ok, updated, failed and per-card results.
    """
    try:
        validate_uuid_list(card_ids)
        if title is not None:
            title = validate_text(title, "title")
        if content is not None:
            content = validate_text(content, "content")
        if hero is not None and hero.strip().lower() not in ("null", "none"):
            validate_uuid(hero, "hero")
    except ValidationError as e:
        return _rejected(e)
    return _finalize(
        _call(
            "update_cards",
            card_ids=card_ids,
            status=status,
            priority=priority,
            effort=effort,
            deck=deck,
            title=title,
            content=content,
            milestone=milestone,
            hero=hero,
            owner=owner,
            tags=tags,
            doc=doc,
            continue_on_error=continue_on_error,
        )
    )


def _with_card_ids(method, card_ids):
    try:
        validate_uuid_list(card_ids)
    except ValidationError as e:
        return _rejected(e)
    return _finalize(_call(method, card_ids=card_ids))


def _with_card_id(method, card_id):
    try:
        validate_uuid(card_id)
    except ValidationError as e:
        return _rejected(e)
    return _finalize(_call(method, card_id=card_id))


def mark_done(card_ids: list[str]) -> dict:
    """Mark cards as done (one bulk update)."""
    return _with_card_ids("mark_done", card_ids)


def mark_started(card_ids: list[str]) -> dict:
    """Mark cards as started (one bulk update)."""
    return _with_card_ids("mark_started", card_ids)


def archive_card(card_id: str) -> dict:
    """Archive a card (reversible with unarchive_card)."""
    return _with_card_id("archive_card", card_id)


def unarchive_card(card_id: str) -> dict:
    """Restore an archived card."""
    return _with_card_id("unarchive_card", card_id)


def delete_card(card_id: str) -> dict:
    """Permanently delete a card. Archives first; if the delete step fails the
    card stays archived. Prefer archive_card when reversibility matters."""
    return _with_card_id("delete_card", card_id)


def scaffold_feature(
    title: str,
    hero_deck: str,
    code_deck: str,
    design_deck: str,
    art_deck: str | None = None,
    skip_art: bool = False,
    audio_deck: str | None = None,
    skip_audio: bool = False,
    description: str | None = None,
    owner: str | None = None,
    priority: Literal["a", "b", "c", "null"] | None = None,
    effort: int | None = None,
    allow_duplicate: bool = False,
) -> dict:
    """Create a hero card with Code/Design (and optional Art/Audio) sub-cards.

    No rollback: on failure, cards already created are kept and listed in
    the error.

    Args:
        art_deck/audio_deck: Optional lanes; omitted or skipped lanes get no card.
    """
    try:
        title = validate_text(title, "title")
        if description is not None:
            description = validate_text(description, "description")
    except ValidationError as e:
        return _rejected(e)
    return _finalize(
        _call(
            "scaffold_feature",
            title=title,
            hero_deck=hero_deck,
            code_deck=code_deck,
            design_deck=design_deck,
            art_deck=art_deck,
            skip_art=skip_art,
            audio_deck=audio_deck,
            skip_audio=skip_audio,
            description=description,
            owner=owner,
            priority=priority,
            effort=effort,
            allow_duplicate=allow_duplicate,
        )
    )


def split_features(
    deck: str,
    code_deck: str,
    design_deck: str,
    art_deck: str | None = None,
    skip_art: bool = False,
    audio_deck: str | None = None,
    skip_audio: bool = False,
    priority: Literal["a", "b", "c", "null"] | None = None,
    dry_run: bool = False,
) -> dict:
    """Split every card without sub-cards in a deck into lane sub-cards.

    Args:
        deck: Source deck holding the feature cards.
        dry_run: True to preview the lane checklists without creating cards.

    Returns:
        Dict with features_found, features_processed, features_failed,
        subcards_created and per-feature details.
    """
    result = _call(
        "split_features",
        deck=deck,
        code_deck=code_deck,
        design_deck=design_deck,
        art_deck=art_deck,
        skip_art=skip_art,
        audio_deck=audio_deck,
        skip_audio=skip_audio,
        priority=priority,
        dry_run=dry_run,
    )
    if _failed(result):
        return _finalize(result)
    return _finalize(sanitize_split_report(result))


def list_hand() -> dict:
    """List cards in the user's hand, in hand order."""
    result = _call("list_hand")
    if _failed(result):
        return _finalize(result)
    rows = [sanitize_card(_slim_card(c)) for c in result]
    return _finalize({"cards": rows, "count": len(rows)})


def add_to_hand(card_ids: list[str]) -> dict:
    """Append cards to the user's hand. Cards already there move to the end."""
    return _with_card_ids("add_to_hand", card_ids)


def remove_from_hand(card_ids: list[str]) -> dict:
    """Remove cards from the user's hand."""
    return _with_card_ids("remove_from_hand", card_ids)


def register(mcp):
    """Register all write tools with the FastMCP instance."""
    for tool in (
        create_card,
        update_cards,
        mark_done,
        mark_started,
        archive_card,
        unarchive_card,
        delete_card,
        scaffold_feature,
        split_features,
        list_hand,
        add_to_hand,
        remove_from_hand,
    ):
        mcp.tool()(tool)
