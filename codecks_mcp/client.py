"""
CodecksClient: domain operations over the Codecks API.

Single entry point for the MCP tool layer and for programmatic use.
All methods return plain dicts/lists suitable for JSON serialization and
raise the typed errors from ``codecks_mcp.exceptions`` on failure.
"""

from __future__ import annotations

import locale
import sys
from datetime import datetime, timedelta, timezone
from difflib import SequenceMatcher
from typing import Any

from codecks_mcp import cards
from codecks_mcp._utils import (
    _is_clear_sentinel,
    _parse_date,
    _parse_iso_timestamp,
    _parse_multi_value,
)
from codecks_mcp.api import CodecksApi
from codecks_mcp.config import (
    ACTIVE_STATUSES,
    VALID_CARD_TYPES,
    VALID_PRIORITIES,
    VALID_SEVERITIES,
    VALID_SORT_FIELDS,
    VALID_STATUSES,
    load_settings,
)
from codecks_mcp.exceptions import CodecksError, ValidationError
from codecks_mcp.lanes import get_lane, render_checklist, route_checklist
from codecks_mcp.models import (
    FeatureScaffoldReport,
    FeatureSpec,
    FeatureSubcard,
    SplitFeatureDetail,
    SplitFeaturesReport,
    SplitFeaturesSpec,
)
from codecks_mcp.query import entity_map

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SORT_COLUMNS = {
    "status": "status",
    "priority": "priority",
    "effort": "effort",
    "deck": "deck_name",
    "title": "title",
    "owner": "owner_name",
    "updated": "last_updated_at",
    "created": "created_at",
}
_DESCENDING_SORTS = {"updated", "created"}

_PRIORITY_RANK = {"a": 0, "b": 1, "c": 2}

STANDUP_LIST_LIMIT = 10


def _sort_rows(rows, sort_field):
    """Sort card rows by a named field. Rows missing the field go last.

    ``updated``/``created`` sort most-recent first; everything else ascends.
    Strings compare through ``locale.strxfrm``.
    """
    column = _SORT_COLUMNS[sort_field]
    present = [r for r in rows if r.get(column) not in (None, "")]
    missing = [r for r in rows if r.get(column) in (None, "")]

    def _key(row):
        value = row[column]
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return (0, value, "")
        return (1, 0, locale.strxfrm(str(value).casefold()))

    present.sort(key=_key, reverse=sort_field in _DESCENDING_SORTS)
    return present + missing


def _updated_at(row):
    return _parse_iso_timestamp(row.get("last_updated_at"))


def _normalize_title(title):
    return " ".join((title or "").strip().lower().split())


def _find_by_title(entities, name, field="title"):
    lowered = name.strip().lower()
    for entity in entities:
        if (entity.get(field) or "").strip().lower() == lowered:
            return entity
    return None


def _not_found(kind, name, entities, field="title"):
    available = [e.get(field) for e in entities if e.get(field)]
    hint = f" Available: {', '.join(available)}" if available else ""
    return CodecksError(f"[ERROR] {kind} '{name}' not found.{hint}")


def _require_ids(card_ids, field="card_ids"):
    if not card_ids:
        raise ValidationError(f"[ERROR] {field} cannot be empty.")
    for cid in card_ids:
        if not cid:
            raise ValidationError(f"[ERROR] {field} contains an empty identifier.")
    return list(card_ids)


def _parse_bool_flag(value, field):
    lowered = str(value).strip().lower()
    if lowered in ("true", "yes", "1"):
        return True
    if lowered in ("false", "no", "0"):
        return False
    raise ValidationError(f"[ERROR] Invalid {field} value '{value}'. Use true or false.")


# ---------------------------------------------------------------------------
# CodecksClient
# ---------------------------------------------------------------------------


class CodecksClient:
    """Public API surface for Codecks project management.

    Nothing is cached between calls: every read re-fetches and every write
    is a direct dispatch.
    """

    def __init__(self, settings=None, *, api=None, validate_token=True):
        """Initialize the client.

        Args:
            settings: ``Settings`` value; loaded from .env/environment if omitted.
            api: Pre-built ``CodecksApi`` (tests inject a mock here).
            validate_token: Check the session token before first use.
        """
        if api is None:
            api = CodecksApi(settings or load_settings())
        self.api = api
        self.settings = api.settings
        if validate_token:
            self.api.check_token()

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------

    def _resolve_deck_id(self, name, decks=None):
        decks = decks if decks is not None else cards.list_decks(self.api)
        deck = _find_by_title(decks, name)
        if deck is None:
            raise _not_found("Deck", name, decks)
        return deck["id"]

    def _resolve_project_deck_ids(self, name):
        projects = cards.list_projects(self.api)
        project = _find_by_title(projects, name)
        if project is None:
            raise _not_found("Project", name, projects)
        return [d["id"] for d in project["decks"] if d.get("id")]

    def _resolve_milestone_id(self, name):
        milestones = cards.list_milestones(self.api)
        milestone = _find_by_title(milestones, name)
        if milestone is None:
            raise _not_found("Milestone", name, milestones)
        return milestone["id"]

    def _resolve_owner_id(self, name):
        users = cards.load_users(self.api)
        for uid, user_name in users.items():
            if user_name.lower() == name.strip().lower():
                return uid
        available = [n for n in users.values() if n]
        hint = f" Available: {', '.join(available)}" if available else ""
        raise CodecksError(f"[ERROR] Owner '{name}' not found.{hint}")

    # -------------------------------------------------------------------
    # Read commands
    # -------------------------------------------------------------------

    def get_account(self) -> dict[str, Any]:
        """Return the account the session token belongs to."""
        result = cards.get_account(self.api)
        for account_id, account in entity_map(result, "account").items():
            if isinstance(account, dict):
                return {"id": account.get("id", account_id), "name": account.get("name")}
        raise CodecksError("[ERROR] Could not fetch account.")

    def list_cards(
        self,
        *,
        deck: str | None = None,
        status: str | None = None,
        project: str | None = None,
        search: str | None = None,
        milestone: str | None = None,
        tag: str | None = None,
        owner: str | None = None,
        priority: str | None = None,
        sort: str | None = None,
        card_type: str | None = None,
        hero: str | None = None,
        hand_only: bool = False,
        stale_days: int | None = None,
        updated_after: str | None = None,
        updated_before: str | None = None,
        archived: bool = False,
        include_stats: bool = False,
    ) -> dict[str, Any]:
        """List cards with server-side and client-side filters.

        Single-valued status, visibility and deck go into the query key;
        everything else is filtered here, preserving upstream order unless
        *sort* is given.

        Returns:
            dict with ``cards`` (flat rows), ``stats`` (status histogram or
            None) and ``count``.
        """
        server_filters: dict[str, Any] = {"visibility": "archived" if archived else "default"}

        status_values = None
        if status:
            status_values = _parse_multi_value(status, VALID_STATUSES, "status")
            if len(status_values) == 1:
                server_filters["status"] = status_values[0]
                status_values = None
        priority_values = (
            _parse_multi_value(priority, VALID_PRIORITIES, "priority") if priority else None
        )
        if sort is not None and sort not in VALID_SORT_FIELDS:
            raise ValidationError(
                f"[ERROR] Invalid sort field '{sort}'. "
                f"Valid: {', '.join(sorted(VALID_SORT_FIELDS))}"
            )
        if card_type is not None and card_type not in VALID_CARD_TYPES:
            raise ValidationError(
                f"[ERROR] Invalid card_type '{card_type}'. "
                f"Valid: {', '.join(sorted(VALID_CARD_TYPES))}"
            )
        if stale_days is not None and stale_days < 0:
            raise ValidationError("[ERROR] stale_days must be zero or positive.")
        after_dt = _parse_date(updated_after) if updated_after else None
        before_dt = _parse_date(updated_before) if updated_before else None

        if deck:
            server_filters["deckId"] = self._resolve_deck_id(deck)
        project_deck_ids = set(self._resolve_project_deck_ids(project)) if project else None
        milestone_id = self._resolve_milestone_id(milestone) if milestone else None
        hand_ids = set(self._hand_ids(cards.get_user_id(self.api))) if hand_only else None

        result = cards.fetch_cards(self.api, server_filters, with_content=bool(search))
        rows = cards.card_rows(result)

        if status_values:
            allowed = set(status_values)
            rows = [r for r in rows if r.get("status") in allowed]
        if priority_values:
            wanted = set(priority_values)
            match_unset = "null" in wanted
            rows = [
                r
                for r in rows
                if r.get("priority") in wanted or (match_unset and not r.get("priority"))
            ]
        if project_deck_ids is not None:
            rows = [r for r in rows if r.get("deck_id") in project_deck_ids]
        if search:
            term = search.lower()
            rows = [
                r
                for r in rows
                if term in (r.get("title") or "").lower()
                or term in (r.get("content") or "").lower()
            ]
        if milestone_id:
            rows = [r for r in rows if r.get("milestone_id") == milestone_id]
        if tag:
            wanted_tag = tag.strip().lstrip("#").lower()
            rows = [
                r for r in rows if any(t.lstrip("#").lower() == wanted_tag for t in r["tags"])
            ]
        if owner:
            if owner.strip().lower() == "none":
                rows = [r for r in rows if not r.get("owner_id")]
            else:
                wanted_owner = owner.strip().lower()
                rows = [r for r in rows if (r.get("owner_name") or "").lower() == wanted_owner]
        if card_type == "hero":
            rows = [r for r in rows if r.get("sub_card_count")]
        elif card_type == "doc":
            rows = [r for r in rows if r.get("is_doc")]
        if hero:
            rows = [r for r in rows if r.get("parent_card_id") == hero]
        if hand_ids is not None:
            rows = [r for r in rows if r["id"] in hand_ids]

        # Cards with no timestamp never match a date filter.
        if stale_days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=stale_days)
            rows = [r for r in rows if _updated_at(r) is not None and _updated_at(r) < cutoff]
        if after_dt is not None:
            rows = [r for r in rows if _updated_at(r) is not None and _updated_at(r) >= after_dt]
        if before_dt is not None:
            rows = [r for r in rows if _updated_at(r) is not None and _updated_at(r) < before_dt]

        if sort:
            rows = _sort_rows(rows, sort)
        if not search:
            for row in rows:
                row.pop("content", None)

        return {
            "cards": rows,
            "stats": cards.compute_status_stats(rows) if include_stats else None,
            "count": len(rows),
        }

    def get_card(
        self,
        card_id: str,
        *,
        include_content: bool = True,
        include_conversations: bool = True,
        archived: bool = False,
    ) -> dict[str, Any]:
        """Get full details for a single card.

        The response also carries the card's children in the same entity
        map; only an exact id match counts as found.
        """
        if not card_id:
            raise ValidationError("[ERROR] card_id cannot be empty.")
        result = cards.fetch_card(
            self.api, card_id, include_conversations=include_conversations, archived=archived
        )
        card_map = entity_map(result, "card")
        card = card_map.get(card_id)
        if not isinstance(card, dict):
            raise CodecksError(f"[ERROR] Card '{card_id}' not found.")
        card = dict(card, id=card_id)

        detail = cards.card_row(result, card)
        sub_cards = []
        for child_id in card.get("childCards") or []:
            child = card_map.get(child_id) or {}
            sub_cards.append(
                {
                    "id": child_id,
                    "title": child.get("title") or "",
                    "status": child.get("status") or "unknown",
                }
            )
        detail["sub_cards"] = sub_cards
        if include_conversations:
            detail["conversations"] = cards.conversations(result, card)
        if include_content:
            detail["content"] = card.get("content") or ""
        else:
            detail.pop("content", None)
        return detail

    def list_decks(self, *, include_card_counts: bool = True) -> list[dict[str, Any]]:
        """List decks, optionally with the number of visible cards in each."""
        decks = cards.list_decks(self.api)
        counts: dict[str, int] = {}
        if include_card_counts:
            rows = cards.card_rows(cards.fetch_cards(self.api, {"visibility": "default"}))
            for row in rows:
                counts[row["deck_id"]] = counts.get(row["deck_id"], 0) + 1
        out = []
        for deck in decks:
            item = {
                "id": deck["id"],
                "title": deck.get("title", ""),
                "project_id": deck.get("projectId"),
            }
            if include_card_counts:
                item["card_count"] = counts.get(deck["id"], 0)
            out.append(item)
        return out

    def list_projects(self) -> list[dict[str, Any]]:
        """List projects with the decks they own."""
        return [
            {**p, "deck_count": len(p["decks"])} for p in cards.list_projects(self.api)
        ]

    def list_milestones(self) -> list[dict[str, Any]]:
        milestones = cards.list_milestones(self.api)
        return [{"id": m["id"], "title": m.get("title", "")} for m in milestones]

    def list_tags(self) -> list[dict[str, Any]]:
        return [
            {
                "id": t["id"],
                "title": t.get("title", ""),
                "color": t.get("color"),
                "emoji": t.get("emoji"),
            }
            for t in cards.list_tags(self.api)
        ]

    def list_activity(self, *, limit: int = 20) -> dict[str, Any]:
        """Recent account activity, newest as returned by the server."""
        if limit < 1:
            raise ValidationError("[ERROR] limit must be a positive integer.")
        rows = cards.list_activity(self.api)[:limit]
        return {"activity": rows, "count": len(rows)}

    # -------------------------------------------------------------------
    # Dashboards
    # -------------------------------------------------------------------

    def pm_focus(
        self,
        *,
        project: str | None = None,
        owner: str | None = None,
        limit: int = 5,
        stale_days: int = 14,
    ) -> dict[str, Any]:
        """PM focus dashboard over active cards.

        Each list is capped at *limit*; ``counts`` report the full size of
        each bucket before that cap.
        """
        if limit < 1:
            raise ValidationError("[ERROR] limit must be a positive integer.")
        if stale_days < 0:
            raise ValidationError("[ERROR] stale_days must be zero or positive.")
        rows = self.list_cards(status=",".join(ACTIVE_STATUSES), project=project, owner=owner)[
            "cards"
        ]
        cutoff = datetime.now(timezone.utc) - timedelta(days=stale_days)

        started = [r for r in rows if r.get("status") in ("started", "in_progress")]
        blocked = [r for r in rows if r.get("status") == "blocked"]
        in_review = [r for r in rows if r.get("status") == "in_review"]
        # Blocked cards are reported once, under blocked.
        stale = [
            r
            for r in rows
            if r.get("status") != "blocked"
            and _updated_at(r) is not None
            and _updated_at(r) < cutoff
        ]
        candidates = [r for r in rows if r.get("status") == "not_started"]
        candidates.sort(
            key=lambda r: (
                _PRIORITY_RANK.get(r.get("priority"), 3),
                0 if r.get("effort") is not None else 1,
                -(r.get("effort") or 0),
                (r.get("title") or "").lower(),
            )
        )

        return {
            "counts": {
                "total": len(rows),
                "started": len(started),
                "blocked": len(blocked),
                "in_review": len(in_review),
                "stale": len(stale),
                "suggested": len(candidates),
            },
            "blocked": blocked[:limit],
            "in_review": in_review[:limit],
            "stale": stale[:limit],
            "suggested": candidates[:limit],
            "filters": {
                "project": project,
                "owner": owner,
                "limit": limit,
                "stale_days": stale_days,
            },
        }

    def standup(
        self, *, days: int = 2, project: str | None = None, owner: str | None = None
    ) -> dict[str, Any]:
        """Daily standup summary from one card fetch."""
        if days < 0:
            raise ValidationError("[ERROR] days must be zero or positive.")
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        rows = self.list_cards(project=project, owner=owner)["cards"]

        recently_done = [
            r
            for r in rows
            if r.get("status") == "done" and _updated_at(r) is not None and _updated_at(r) >= cutoff
        ]
        in_progress = [r for r in rows if r.get("status") in ("started", "in_progress")]
        blocked = [r for r in rows if r.get("status") == "blocked"]

        return {
            "recently_done": recently_done[:STANDUP_LIST_LIMIT],
            "in_progress": in_progress[:STANDUP_LIST_LIMIT],
            "blocked": blocked[:STANDUP_LIST_LIMIT],
            "filters": {"project": project, "owner": owner, "days": days},
        }

    # -------------------------------------------------------------------
    # Hand commands
    # -------------------------------------------------------------------

    def _hand_ids(self, user_id=None):
        return cards.hand_card_ids(cards.fetch_hand(self.api), user_id)

    def list_hand(self) -> list[dict[str, Any]]:
        """Cards in the user's hand, in hand order."""
        ordered = self._hand_ids(cards.get_user_id(self.api))
        if not ordered:
            return []
        rows = cards.card_rows(cards.fetch_cards(self.api, {"visibility": "default"}))
        by_id = {r["id"]: r for r in rows}
        return [by_id[cid] for cid in ordered if cid in by_id]

    def add_to_hand(self, card_ids: list[str]) -> dict[str, Any]:
        """Append cards to the hand.

        The dispatch carries the full replacement order: current hand minus
        the added cards, then the added cards. A card never appears twice.
        """
        added = list(dict.fromkeys(_require_ids(card_ids)))
        user_id = cards.get_user_id(self.api)
        current = self._hand_ids(user_id)
        added_set = set(added)
        order = [cid for cid in current if cid not in added_set] + added
        cards.set_hand_order(self.api, user_id, order, added)
        return {"ok": True, "added": len(added), "hand_size": len(order), "card_ids": order}

    def remove_from_hand(self, card_ids: list[str]) -> dict[str, Any]:
        removed = list(dict.fromkeys(_require_ids(card_ids)))
        cards.remove_from_hand(self.api, removed)
        return {"ok": True, "removed": len(removed), "card_ids": removed}

    # -------------------------------------------------------------------
    # Mutation commands
    # -------------------------------------------------------------------

    def _duplicate_warnings(self, title, allow_duplicate=False, context="card"):
        """Fail on an exact title duplicate, warn on near matches."""
        if allow_duplicate:
            return []
        target = _normalize_title(title)
        if not target:
            return []
        exact, similar = [], []
        for row in self.list_cards(search=title)["cards"]:
            existing = _normalize_title(row.get("title"))
            if not existing:
                continue
            if existing == target:
                exact.append(row)
                continue
            score = SequenceMatcher(None, target, existing).ratio()
            if target in existing or existing in target or score >= 0.88:
                similar.append((score, row))
        if exact:
            preview = ", ".join(f"{r['id']} ('{r['title']}', status={r['status']})" for r in exact)
            raise CodecksError(
                f"[ERROR] Duplicate {context} title detected: '{title}'. Existing: {preview}. "
                "Pass allow_duplicate=True to bypass this check."
            )
        if not similar:
            return []
        similar.sort(key=lambda pair: pair[0], reverse=True)
        preview = ", ".join(f"{r['id']} ('{r['title']}')" for _, r in similar[:5])
        return [f"Similar {context} titles found for '{title}': {preview}"]

    def create_card(
        self,
        title: str,
        *,
        content: str | None = None,
        deck: str | None = None,
        project: str | None = None,
        severity: str | None = None,
        doc: bool = False,
        parent: str | None = None,
        allow_duplicate: bool = False,
    ) -> dict[str, Any]:
        """Create a card and place it.

        Placement (deck, project's first deck, doc flag, parent card) is a
        follow-up update after the report endpoint returns the new id.
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("[ERROR] Card title cannot be empty.")
        if severity is not None and severity not in VALID_SEVERITIES:
            raise ValidationError(
                f"[ERROR] Invalid severity '{severity}'. "
                f"Valid: {', '.join(sorted(VALID_SEVERITIES))}"
            )
        if deck and project:
            raise ValidationError("[ERROR] Use either deck or project, not both.")

        post_update: dict[str, Any] = {}
        placed_in = None
        if deck:
            post_update["deckId"] = self._resolve_deck_id(deck)
            placed_in = deck
        elif project:
            deck_ids = self._resolve_project_deck_ids(project)
            if not deck_ids:
                raise CodecksError(f"[ERROR] Project '{project}' has no decks.")
            post_update["deckId"] = deck_ids[0]
            placed_in = project
        if doc:
            post_update["isDoc"] = True
        if parent:
            post_update["parentCardId"] = parent

        warnings = self._duplicate_warnings(title, allow_duplicate)
        card_id = cards.create_card(
            self.api, title, content, None if severity == "null" else severity
        )
        if post_update:
            cards.update_card(self.api, card_id, **post_update)

        out: dict[str, Any] = {
            "ok": True,
            "card_id": card_id,
            "title": title,
            "deck": placed_in,
            "doc": doc,
            "parent": parent,
        }
        if warnings:
            out["warnings"] = warnings
        return out

    def update_cards(
        self,
        card_ids: list[str],
        *,
        status: str | None = None,
        priority: str | None = None,
        effort: str | int | None = None,
        deck: str | None = None,
        title: str | None = None,
        content: str | None = None,
        milestone: str | None = None,
        hero: str | None = None,
        owner: str | None = None,
        tags: str | None = None,
        doc: str | bool | None = None,
        continue_on_error: bool = False,
    ) -> dict[str, Any]:
        """Update one or more cards.

        ``None`` means "leave unchanged"; the string ``"null"`` (or
        ``"none"``) clears the field. Cards are updated one at a time; unless
        *continue_on_error* is set, the first failure stops the batch.

        Returns:
            dict with ``ok`` (at least one update succeeded), ``updated``,
            ``failed``, ``fields`` and per-card ``results``.
        """
        card_ids = _require_ids(card_ids)
        fields: dict[str, Any] = {}

        if status is not None:
            if status not in VALID_STATUSES:
                raise ValidationError(
                    f"[ERROR] Invalid status '{status}'. "
                    f"Valid: {', '.join(sorted(VALID_STATUSES))}"
                )
            fields["status"] = status
        if priority is not None:
            if priority not in VALID_PRIORITIES and not _is_clear_sentinel(priority):
                raise ValidationError(
                    f"[ERROR] Invalid priority '{priority}'. "
                    f"Valid: {', '.join(sorted(VALID_PRIORITIES))}"
                )
            fields["priority"] = None if _is_clear_sentinel(priority) else priority
        if effort is not None:
            if _is_clear_sentinel(effort):
                fields["effort"] = None
            else:
                try:
                    fields["effort"] = int(effort)
                except (TypeError, ValueError) as e:
                    raise ValidationError(
                        f"[ERROR] Invalid effort value '{effort}': must be a number or 'null'"
                    ) from e
        if (title is not None or content is not None) and len(card_ids) > 1:
            raise ValidationError("[ERROR] title and content can only be set on a single card.")
        if title is not None and not title.strip():
            raise ValidationError("[ERROR] Card title cannot be empty.")
        if content is not None:
            fields["content"] = "" if _is_clear_sentinel(content) else content
        if tags is not None:
            if _is_clear_sentinel(tags):
                fields["masterTags"] = []
            else:
                fields["masterTags"] = [t.strip() for t in tags.split(",") if t.strip()]
        if doc is not None:
            fields["isDoc"] = doc if isinstance(doc, bool) else _parse_bool_flag(doc, "doc")
        if hero is not None:
            fields["parentCardId"] = None if _is_clear_sentinel(hero) else hero

        # Name lookups read from the server; still no mutation yet.
        if deck is not None:
            fields["deckId"] = self._resolve_deck_id(deck)
        if milestone is not None:
            fields["milestoneId"] = (
                None if _is_clear_sentinel(milestone) else self._resolve_milestone_id(milestone)
            )
        if owner is not None:
            fields["assigneeId"] = (
                None if _is_clear_sentinel(owner) else self._resolve_owner_id(owner)
            )
        if title is not None:
            # The first content line is the card title.
            current = self.get_card(card_ids[0], include_conversations=False)
            body = fields.get("content", current.get("content") or "")
            rest = body.split("\n", 1)[1] if "\n" in body else ""
            fields["content"] = title.strip() + ("\n" + rest if rest else "")

        if not fields:
            raise ValidationError(
                "[ERROR] No update fields provided. Use status, priority, effort, deck, "
                "title, content, milestone, hero, owner, tags or doc."
            )

        results: list[dict[str, Any]] = []
        updated = 0
        failed = 0
        for cid in card_ids:
            try:
                cards.update_card(self.api, cid, **fields)
            except CodecksError as e:
                failed += 1
                results.append({"card_id": cid, "ok": False, "error": str(e)})
                if not continue_on_error:
                    break
            else:
                updated += 1
                results.append({"card_id": cid, "ok": True})

        out: dict[str, Any] = {
            "ok": updated > 0,
            "updated": updated,
            "failed": failed,
            "fields": fields,
            "results": results,
        }
        if not updated:
            out["type"] = "error"
            out["error"] = next(r["error"] for r in results if not r["ok"])
        return out

    def _bulk_status(self, card_ids, status):
        card_ids = _require_ids(card_ids)
        cards.bulk_update(self.api, card_ids, status=status)
        return {"ok": True, "status": status, "count": len(card_ids), "card_ids": card_ids}

    def mark_done(self, card_ids: list[str]) -> dict[str, Any]:
        return self._bulk_status(card_ids, "done")

    def mark_started(self, card_ids: list[str]) -> dict[str, Any]:
        return self._bulk_status(card_ids, "started")

    def archive_card(self, card_id: str) -> dict[str, Any]:
        """Archive a card (reversible)."""
        _require_ids([card_id], "card_id")
        cards.archive_card(self.api, card_id)
        return {"ok": True, "card_id": card_id, "visibility": "archived"}

    def unarchive_card(self, card_id: str) -> dict[str, Any]:
        _require_ids([card_id], "card_id")
        cards.unarchive_card(self.api, card_id)
        return {"ok": True, "card_id": card_id, "visibility": "default"}

    def delete_card(self, card_id: str) -> dict[str, Any]:
        """Delete a card: archive, then permanently remove.

        There is no atomic hard delete upstream. If the remove step fails the
        card stays archived and the raised error says so.
        """
        _require_ids([card_id], "card_id")
        cards.archive_card(self.api, card_id)
        try:
            cards.purge_card(self.api, card_id)
        except CodecksError as e:
            print(
                f"Warning: Card {card_id} was archived but delete failed. "
                "Use unarchive_card to recover.",
                file=sys.stderr,
            )
            raise type(e)(
                f"[ERROR] Card {card_id} was archived but NOT deleted: {e}"
            ) from e
        return {"ok": True, "card_id": card_id, "deleted": True}

    # -------------------------------------------------------------------
    # Scaffolding
    # -------------------------------------------------------------------

    def _create_lane_cards(
        self, parent_id, feature_title, lane_deck_ids, checklists, common, created
    ):
        """Create one sub-card per lane under *parent_id*.

        Each created card is appended to *created* as soon as it exists, so
        callers can report partial progress.
        """
        for lane_name, deck_id in lane_deck_ids.items():
            lane = get_lane(lane_name)
            sub_title = f"[{lane.display_name}] {feature_title}"
            body = (
                f"Scope:\n- {lane.display_name} lane work for this feature\n\n"
                f"Checklist:\n{render_checklist(checklists[lane_name])}\n\n"
                "Tags: " + " ".join(f"#{t}" for t in lane.tags)
            )
            sub_id = cards.create_card(self.api, sub_title, body)
            created.append(FeatureSubcard(lane=lane_name, id=sub_id, title=sub_title))
            cards.update_card(
                self.api,
                sub_id,
                parentCardId=parent_id,
                deckId=deck_id,
                masterTags=list(lane.tags),
                **common,
            )

    def _lane_deck_ids(self, lane_decks, decks):
        return {
            name: self._resolve_deck_id(deck_name, decks)
            for name, deck_name in lane_decks.items()
            if deck_name
        }

    def scaffold_feature(
        self,
        title: str,
        *,
        hero_deck: str,
        code_deck: str,
        design_deck: str,
        art_deck: str | None = None,
        skip_art: bool = False,
        audio_deck: str | None = None,
        skip_audio: bool = False,
        description: str | None = None,
        owner: str | None = None,
        priority: str | None = None,
        effort: int | None = None,
        allow_duplicate: bool = False,
    ) -> dict[str, Any]:
        """Create a hero card plus one sub-card per active lane.

        Every card is its own round trip. A failure part-way leaves the
        cards created so far in place; the raised error lists them.
        """
        spec = FeatureSpec.from_kwargs(
            title,
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

        decks = cards.list_decks(self.api)
        hero_deck_id = self._resolve_deck_id(spec.hero_deck, decks)
        lane_deck_ids = self._lane_deck_ids(spec.lane_decks, decks)
        common: dict[str, Any] = {}
        if spec.owner:
            common["assigneeId"] = self._resolve_owner_id(spec.owner)
        if spec.priority is not None:
            common["priority"] = None if spec.priority == "null" else spec.priority
        if spec.effort is not None:
            common["effort"] = spec.effort
        warnings = self._duplicate_warnings(spec.title, spec.allow_duplicate, context="feature")

        lane_list = "/".join(lane.display_name for lane in spec.active_lanes)
        hero_body = (
            (spec.description.strip() + "\n\n" if spec.description else "")
            + "Success criteria:\n"
            + f"- [] Lane coverage agreed ({lane_list})\n"
            + "- [] Acceptance criteria validated\n"
            + "- [] Integration verified\n\n"
            + "Tags: #hero #feature"
        )
        checklists = {
            name: list(get_lane(name).default_checklist) for name in lane_deck_ids
        }

        created_ids: list[str] = []
        subcards: list[FeatureSubcard] = []
        try:
            hero_id = cards.create_card(self.api, spec.title, hero_body)
            created_ids.append(hero_id)
            cards.update_card(
                self.api, hero_id, deckId=hero_deck_id, masterTags=["hero", "feature"], **common
            )
            self._create_lane_cards(
                hero_id, spec.title, lane_deck_ids, checklists, common, subcards
            )
        except CodecksError as e:
            created_ids.extend(s.id for s in subcards)
            kept = ", ".join(created_ids) if created_ids else "none"
            raise type(e)(
                f"[ERROR] Feature scaffold failed: {e}\n"
                f"[ERROR] Cards created before the failure were kept: {kept}"
            ) from e

        notes = [
            f"{get_lane(name).display_name} lane skipped."
            for name, deck_name in spec.lane_decks.items()
            if not deck_name
        ]
        notes.extend(warnings)
        return FeatureScaffoldReport(
            hero_id=hero_id,
            hero_title=spec.title,
            hero_deck=spec.hero_deck,
            subcards=subcards,
            lane_decks=dict(spec.lane_decks),
            notes=notes or None,
        ).to_dict()

    def split_features(
        self,
        *,
        deck: str,
        code_deck: str,
        design_deck: str,
        art_deck: str | None = None,
        skip_art: bool = False,
        audio_deck: str | None = None,
        skip_audio: bool = False,
        priority: str | None = None,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        """Split every un-split feature card in *deck* into lane sub-cards.

        A feature is any card in the deck with no children. Its checklist
        lines are routed to lanes by keyword. Failures are collected per
        feature; the batch keeps going. ``dry_run`` only reads.
        """
        spec = SplitFeaturesSpec.from_kwargs(
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

        decks = cards.list_decks(self.api)
        source_deck_id = self._resolve_deck_id(spec.deck, decks)
        lane_deck_ids = self._lane_deck_ids(spec.lane_decks, decks)
        lanes = tuple(lane_deck_ids)
        common: dict[str, Any] = {}
        if spec.priority is not None:
            common["priority"] = None if spec.priority == "null" else spec.priority

        result = cards.fetch_cards(
            self.api, {"visibility": "default", "deckId": source_deck_id}, with_content=True
        )
        features = [r for r in cards.card_rows(result) if not r.get("sub_card_count")]

        details: list[SplitFeatureDetail] = []
        for feature in features:
            checklists = route_checklist(feature.get("content"), lanes)
            if spec.dry_run:
                details.append(
                    SplitFeatureDetail(
                        feature_id=feature["id"],
                        feature_title=feature["title"],
                        planned=checklists,
                    )
                )
                continue
            created: list[FeatureSubcard] = []
            try:
                self._create_lane_cards(
                    feature["id"], feature["title"], lane_deck_ids, checklists, common, created
                )
            except CodecksError as e:
                details.append(
                    SplitFeatureDetail(
                        feature_id=feature["id"],
                        feature_title=feature["title"],
                        subcards=created,
                        error=str(e),
                    )
                )
            else:
                details.append(
                    SplitFeatureDetail(
                        feature_id=feature["id"],
                        feature_title=feature["title"],
                        subcards=created,
                    )
                )

        notes = [
            f"{get_lane(name).display_name} lane skipped."
            for name, deck_name in spec.lane_decks.items()
            if not deck_name
        ]
        return SplitFeaturesReport(
            features_found=len(features),
            details=details,
            dry_run=spec.dry_run,
            notes=notes or None,
        ).to_dict()

    # -------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------

    def create_comment(self, card_id: str, message: str) -> dict[str, Any]:
        """Start a new comment thread on a card."""
        _require_ids([card_id], "card_id")
        if not (message or "").strip():
            raise ValidationError("[ERROR] Comment message cannot be empty.")
        cards.create_comment(self.api, cards.get_user_id(self.api), card_id, message)
        return {"ok": True, "card_id": card_id}

    def reply_comment(self, thread_id: str, message: str) -> dict[str, Any]:
        _require_ids([thread_id], "thread_id")
        if not (message or "").strip():
            raise ValidationError("[ERROR] Comment message cannot be empty.")
        cards.reply_comment(self.api, cards.get_user_id(self.api), thread_id, message)
        return {"ok": True, "thread_id": thread_id}

    def close_comment(self, thread_id: str, card_id: str) -> dict[str, Any]:
        _require_ids([thread_id], "thread_id")
        _require_ids([card_id], "card_id")
        cards.close_comment(self.api, cards.get_user_id(self.api), thread_id, card_id)
        return {"ok": True, "thread_id": thread_id, "status": "closed"}

    def reopen_comment(self, thread_id: str, card_id: str) -> dict[str, Any]:
        _require_ids([thread_id], "thread_id")
        _require_ids([card_id], "card_id")
        cards.reopen_comment(self.api, thread_id, card_id)
        return {"ok": True, "thread_id": thread_id, "status": "open"}

    def list_conversations(self, card_id: str) -> dict[str, Any]:
        """All comment threads on a card, with author names resolved."""
        _require_ids([card_id], "card_id")
        result = cards.fetch_conversations(self.api, card_id)
        card = entity_map(result, "card").get(card_id)
        if not isinstance(card, dict):
            raise CodecksError(f"[ERROR] Card '{card_id}' not found.")
        threads = cards.conversations(result, card)
        return {"card_id": card_id, "conversations": threads, "count": len(threads)}
