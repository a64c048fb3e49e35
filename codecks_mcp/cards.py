"""
Card, deck, hand and comment calls against the Codecks API, plus the
row-flattening helpers that turn entity maps into snake_case records.

Every function takes the ``CodecksApi`` instance as its first argument.
"""

import json
import uuid

from codecks_mcp._utils import _get_field
from codecks_mcp.exceptions import CodecksError, ProtocolError
from codecks_mcp.query import (
    account_query,
    cards_selection,
    entity_map,
    extract_entities,
    extract_list,
    ref_id,
    resolve_ref,
)

CARD_LIST_FIELDS = (
    "title",
    "status",
    "priority",
    "deckId",
    "effort",
    "severity",
    "createdAt",
    "milestoneId",
    "masterTags",
    "lastUpdatedAt",
    "isDoc",
    "parentCardId",
    "childCardInfo",
    {"assignee": ["name", "id"]},
    {"deck": ["title"]},
    {"milestone": ["title"]},
)

_RESOLVABLE_FIELDS = {
    "resolvables": [
        "context",
        "isClosed",
        "createdAt",
        {"creator": ["name"]},
        {"entries": ["content", "createdAt", {"author": ["name"]}]},
    ]
}

# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_account(api):
    return api.query(account_query("name", "id"))


def fetch_cards(api, filters, *, with_content=False):
    """Query cards matching server-side *filters*. Returns the raw response."""
    fields = list(CARD_LIST_FIELDS)
    if with_content:
        fields.append("content")
    return api.query(account_query(cards_selection(filters, fields)))


def fetch_card(api, card_id, *, include_conversations=True, archived=False):
    """Query one card with its children and, optionally, its threads."""
    fields = list(CARD_LIST_FIELDS) + ["content", {"childCards": ["title", "status"]}]
    if include_conversations:
        fields.append(_RESOLVABLE_FIELDS)
    filters = {"cardId": card_id, "visibility": "archived" if archived else "default"}
    return api.query(account_query(cards_selection(filters, fields)))


def fetch_conversations(api, card_id):
    filters = {"cardId": card_id, "visibility": "default"}
    return api.query(account_query(cards_selection(filters, ["title", _RESOLVABLE_FIELDS])))


def list_decks(api):
    result = api.query(account_query({"decks": ["title", "id", "projectId"]}))
    return extract_list(result, "decks")


def list_projects(api):
    """Projects with their decks resolved to ``[{id, title}]``."""
    result = api.query(account_query({"projects": ["id", "title", {"decks": ["id", "title"]}]}))
    projects = []
    for project in extract_list(result, "projects"):
        decks = []
        for ref in project.get("decks") or []:
            deck_id = ref_id(ref)
            decks.append({"id": deck_id, "title": resolve_ref(result, "deck", ref, "title")})
        projects.append({"id": project["id"], "title": project.get("title", ""), "decks": decks})
    return projects


def list_milestones(api):
    result = api.query(account_query({"milestones": ["id", "title"]}))
    return extract_list(result, "milestones")


def list_tags(api):
    result = api.query(account_query({"masterTags": ["title", "id", "color", "emoji"]}))
    return extract_list(result, "masterTags")


def list_activity(api):
    """Activity rows with card/changer/deck references resolved to names."""
    result = api.query(
        account_query(
            {
                "activities": [
                    "type",
                    "createdAt",
                    "data",
                    {"card": ["title"]},
                    {"changer": ["name"]},
                    {"deck": ["title"]},
                ]
            }
        )
    )
    rows = []
    for entry in extract_list(result, "activities"):
        rows.append(
            {
                "id": entry["id"],
                "type": entry.get("type"),
                "created_at": _get_field(entry, "created_at", "createdAt"),
                "card_id": ref_id(entry.get("card")),
                "card_title": resolve_ref(result, "card", entry.get("card"), "title"),
                "changer_name": resolve_ref(result, "user", entry.get("changer"), "name"),
                "deck_title": resolve_ref(result, "deck", entry.get("deck"), "title"),
                "data": entry.get("data"),
            }
        )
    return rows


def load_users(api):
    """Return ``{user_id: name}`` from account roles."""
    result = api.query(account_query({"roles": ["userId", "role", {"user": ["id", "name"]}]}))
    return {uid: (user.get("name") or "") for uid, user in entity_map(result, "user").items()}


def get_user_id(api):
    """Current user id: settings first, then the account's owner role."""
    if api.settings.user_id:
        return api.settings.user_id
    result = api.query(account_query({"roles": ["userId", "role"]}))
    roles = list(entity_map(result, "accountRole").values())
    for role in roles:
        if isinstance(role, dict) and role.get("role") == "owner":
            return _get_field(role, "user_id", "userId")
    for role in roles:
        if isinstance(role, dict) and _get_field(role, "user_id", "userId"):
            return _get_field(role, "user_id", "userId")
    raise CodecksError("[ERROR] Could not determine your user ID. Set CODECKS_USER_ID.")


def fetch_hand(api):
    return api.query(account_query({"queueEntries": ["card", "sortIndex", "user"]}))


def hand_card_ids(hand_result, user_id=None):
    """Card ids in the hand, ordered by sort position.

    With *user_id*, entries queued for other users are ignored.
    """
    entries = [
        e
        for e in extract_list(hand_result, "queueEntries")
        if ref_id(e.get("card")) and (user_id is None or ref_id(e.get("user")) in (None, user_id))
    ]
    entries.sort(key=lambda e: _get_field(e, "sort_index", "sortIndex") or 0)
    ordered = []
    for entry in entries:
        cid = ref_id(entry["card"])
        if cid not in ordered:
            ordered.append(cid)
    return ordered


# ---------------------------------------------------------------------------
# Row flattening
# ---------------------------------------------------------------------------


def _child_count(card):
    info = _get_field(card, "child_card_info", "childCardInfo")
    if isinstance(info, str):
        try:
            info = json.loads(info)
        except json.JSONDecodeError:
            info = None
    if isinstance(info, dict):
        return info.get("count") or 0
    return len(card.get("childCards") or [])


def card_row(result, card):
    """Flatten one card entity into a snake_case row with resolved names."""
    deck_ref = card.get("deck") or card.get("deckId")
    milestone_ref = card.get("milestone") or card.get("milestoneId")
    owner_ref = card.get("assignee")
    row = {
        "id": card["id"],
        "title": card.get("title") or "",
        "status": card.get("status"),
        "priority": card.get("priority"),
        "effort": card.get("effort"),
        "severity": card.get("severity"),
        "deck_id": ref_id(deck_ref),
        "deck_name": resolve_ref(result, "deck", deck_ref, "title"),
        "owner_id": ref_id(owner_ref),
        "owner_name": resolve_ref(result, "user", owner_ref, "name"),
        "milestone_id": ref_id(milestone_ref),
        "milestone_name": resolve_ref(result, "milestone", milestone_ref, "title"),
        "tags": list(card.get("masterTags") or card.get("tags") or []),
        "is_doc": bool(_get_field(card, "is_doc", "isDoc")),
        "parent_card_id": ref_id(_get_field(card, "parent_card_id", "parentCardId")),
        "sub_card_count": _child_count(card),
        "created_at": _get_field(card, "created_at", "createdAt"),
        "last_updated_at": _get_field(card, "last_updated_at", "lastUpdatedAt"),
    }
    if "content" in card:
        row["content"] = card.get("content")
    return row


def card_rows(result):
    """Flatten every card in a query response, preserving map order."""
    return [card_row(result, card) for card in extract_entities(result, "card")]


def conversations(result, card):
    """Resolve a card's thread ids into ``[{id, status, creator, messages}]``."""
    threads = entity_map(result, "resolvable")
    entries = entity_map(result, "resolvableEntry")
    out = []
    for rid in card.get("resolvables") or []:
        rid = ref_id(rid)
        thread = threads.get(rid)
        if not isinstance(thread, dict):
            continue
        messages = []
        for eid in thread.get("entries") or []:
            entry = entries.get(ref_id(eid))
            if not isinstance(entry, dict):
                continue
            messages.append(
                {
                    "author": resolve_ref(result, "user", entry.get("author"), "name") or "?",
                    "content": entry.get("content") or "",
                    "created_at": _get_field(entry, "created_at", "createdAt") or "",
                }
            )
        out.append(
            {
                "id": rid,
                "context": thread.get("context"),
                "status": "closed" if _get_field(thread, "is_closed", "isClosed") else "open",
                "creator": resolve_ref(result, "user", thread.get("creator"), "name") or "?",
                "created_at": _get_field(thread, "created_at", "createdAt") or "",
                "messages": messages,
            }
        )
    return out


def compute_status_stats(rows):
    """Status -> count histogram."""
    stats = {}
    for row in rows:
        status = row.get("status") or "unknown"
        stats[status] = stats.get(status, 0) + 1
    return stats


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def create_card(api, title, content=None, severity=None):
    """Create a card through the report endpoint and return its id.

    The first line of the report content becomes the card title.
    """
    body = title if not content else f"{title}\n\n{content}"
    result = api.report_request(body, severity=severity)
    card_id = result.get("cardId") or result.get("id")
    if not card_id:
        raise ProtocolError("[ERROR] Card creation response did not include a card id.")
    return card_id


def update_card(api, card_id, **fields):
    """Dispatch ``cards/update``. ``None`` values clear the field."""
    payload = {"id": card_id}
    payload.update(fields)
    return api.dispatch("cards/update", payload)


def bulk_update(api, card_ids, **fields):
    payload = {"ids": list(card_ids)}
    payload.update(fields)
    return api.dispatch("cards/bulkUpdate", payload)


def archive_card(api, card_id):
    return update_card(api, card_id, visibility="archived")


def unarchive_card(api, card_id):
    return update_card(api, card_id, visibility="default")


def purge_card(api, card_id):
    """Permanently remove an already-archived card."""
    return bulk_update(api, [card_id], visibility="deleted", deleteFiles=False)


def set_hand_order(api, user_id, card_ids, dragged_ids):
    """Replace the user's whole hand with *card_ids* in order."""
    return api.dispatch(
        "handQueue/setCardOrders",
        {
            "sessionId": str(uuid.uuid4()),
            "userId": user_id,
            "cardIds": list(card_ids),
            "draggedCardIds": list(dragged_ids),
        },
    )


def remove_from_hand(api, card_ids):
    return api.dispatch(
        "handQueue/removeCards",
        {"sessionId": str(uuid.uuid4()), "cardIds": list(card_ids)},
    )


def create_comment(api, user_id, card_id, content):
    return api.dispatch(
        "resolvables/create",
        {"cardId": card_id, "userId": user_id, "content": content, "context": "comment"},
    )


def reply_comment(api, user_id, thread_id, content):
    return api.dispatch(
        "resolvables/comment",
        {"resolvableId": thread_id, "content": content, "authorId": user_id},
    )


def close_comment(api, user_id, thread_id, card_id):
    return api.dispatch(
        "resolvables/close",
        {"id": thread_id, "isClosed": True, "cardId": card_id, "closedBy": user_id},
    )


def reopen_comment(api, thread_id, card_id):
    return api.dispatch(
        "resolvables/reopen",
        {"id": thread_id, "isClosed": False, "cardId": card_id},
    )
