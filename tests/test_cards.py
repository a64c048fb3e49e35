"""Tests for cards.py: query shapes, row flattening and dispatch payloads.
Mocks the CodecksApi instance; asserts on queries and dispatches sent.
"""

from unittest.mock import MagicMock

import pytest

from codecks_mcp import cards
from codecks_mcp.config import Settings
from codecks_mcp.exceptions import CodecksError, ProtocolError


def _api(user_id="fake-user-id"):
    api = MagicMock()
    api.settings = Settings(session_token="t", account="a", report_token="r", user_id=user_id)
    return api


def _result():
    return {
        "card": {
            "c1": {
                "title": "Save system",
                "status": "started",
                "priority": "a",
                "effort": 3,
                "deck": "d1",
                "assignee": "u1",
                "milestone": "m1",
                "masterTags": ["code"],
                "isDoc": False,
                "childCardInfo": {"count": 2},
                "createdAt": "2026-01-01T00:00:00Z",
                "lastUpdatedAt": "2026-01-02T00:00:00Z",
                "resolvables": ["r1"],
            },
            "c2": {"title": "Notes", "status": "done", "isDoc": True, "parentCardId": "c1"},
        },
        "deck": {"d1": {"title": "Code"}},
        "user": {"u1": {"name": "Alice"}},
        "milestone": {"m1": {"title": "Alpha"}},
        "resolvable": {
            "r1": {"context": "comment", "isClosed": True, "creator": "u1", "entries": ["e1"]}
        },
        "resolvableEntry": {
            "e1": {"content": "Looks good", "author": "u1", "createdAt": "2026-01-03T00:00:00Z"}
        },
    }


class TestQueries:
    def test_fetch_cards_embeds_filters(self):
        api = _api()
        cards.fetch_cards(api, {"status": "done", "visibility": "default"})
        q = api.query.call_args.args[0]
        selection = q["_root"][0]["account"][0]
        assert list(selection) == ['cards({"status":"done","visibility":"default"})']
        assert "content" not in selection['cards({"status":"done","visibility":"default"})']

    def test_fetch_cards_with_content(self):
        api = _api()
        cards.fetch_cards(api, {}, with_content=True)
        fields = api.query.call_args.args[0]["_root"][0]["account"][0]["cards"]
        assert "content" in fields

    def test_fetch_card_archived(self):
        api = _api()
        cards.fetch_card(api, "c1", archived=True)
        key = next(iter(api.query.call_args.args[0]["_root"][0]["account"][0]))
        assert '"visibility":"archived"' in key
        assert '"cardId":"c1"' in key

    def test_list_projects_resolves_deck_titles(self):
        api = _api()
        api.query.return_value = {
            "project": {"p1": {"title": "Game", "decks": ["d1", "d2"]}},
            "deck": {"d1": {"title": "Code"}},
        }
        assert cards.list_projects(api) == [
            {
                "id": "p1",
                "title": "Game",
                "decks": [{"id": "d1", "title": "Code"}, {"id": "d2", "title": None}],
            }
        ]

    def test_list_activity_rows(self):
        api = _api()
        api.query.return_value = {
            "activity": {"a1": {"type": "cardUpdate", "card": "c1", "changer": "u1"}},
            "card": {"c1": {"title": "Save"}},
            "user": {"u1": {"name": "Alice"}},
        }
        rows = cards.list_activity(api)
        assert rows[0]["card_id"] == "c1"
        assert rows[0]["card_title"] == "Save"
        assert rows[0]["changer_name"] == "Alice"


class TestUserId:
    def test_from_settings(self):
        api = _api()
        assert cards.get_user_id(api) == "fake-user-id"
        api.query.assert_not_called()

    def test_owner_role_preferred(self):
        api = _api(user_id="")
        api.query.return_value = {
            "accountRole": {
                "r1": {"userId": "u-member", "role": "member"},
                "r2": {"userId": "u-owner", "role": "owner"},
            }
        }
        assert cards.get_user_id(api) == "u-owner"

    def test_no_roles(self):
        api = _api(user_id="")
        api.query.return_value = {}
        with pytest.raises(CodecksError, match="CODECKS_USER_ID"):
            cards.get_user_id(api)


class TestHandCardIds:
    def test_ordered_deduplicated_and_filtered(self):
        hand = {
            "queueEntry": {
                "q1": {"card": "c2", "sortIndex": 20, "user": "me"},
                "q2": {"card": "c1", "sortIndex": 10, "user": "me"},
                "q3": {"card": "c9", "sortIndex": 5, "user": "other"},
                "q4": {"card": "c1", "sortIndex": 30, "user": "me"},
            }
        }
        assert cards.hand_card_ids(hand, "me") == ["c1", "c2"]
        assert cards.hand_card_ids(hand) == ["c9", "c1", "c2"]


class TestCardRow:
    def test_resolves_relations(self):
        result = _result()
        row = cards.card_row(result, dict(result["card"]["c1"], id="c1"))
        assert row["deck_id"] == "d1"
        assert row["deck_name"] == "Code"
        assert row["owner_name"] == "Alice"
        assert row["milestone_name"] == "Alpha"
        assert row["sub_card_count"] == 2
        assert row["tags"] == ["code"]
        assert "content" not in row

    def test_card_rows_in_map_order(self):
        rows = cards.card_rows(_result())
        assert [r["id"] for r in rows] == ["c1", "c2"]
        assert rows[1]["is_doc"] is True
        assert rows[1]["parent_card_id"] == "c1"
        assert rows[1]["owner_name"] is None

    def test_child_count_from_json_string(self):
        assert cards._child_count({"childCardInfo": '{"count": 4}'}) == 4
        assert cards._child_count({"childCards": ["a", "b"]}) == 2

    def test_conversations(self):
        result = _result()
        threads = cards.conversations(result, result["card"]["c1"])
        assert threads == [
            {
                "id": "r1",
                "context": "comment",
                "status": "closed",
                "creator": "Alice",
                "created_at": "",
                "messages": [
                    {
                        "author": "Alice",
                        "content": "Looks good",
                        "created_at": "2026-01-03T00:00:00Z",
                    }
                ],
            }
        ]

    def test_status_stats(self):
        rows = [{"status": "done"}, {"status": "done"}, {"status": None}]
        assert cards.compute_status_stats(rows) == {"done": 2, "unknown": 1}


class TestMutations:
    def test_create_card_body(self):
        api = _api()
        api.report_request.return_value = {"cardId": "new-1"}
        assert cards.create_card(api, "Title", "Body", "high") == "new-1"
        api.report_request.assert_called_once_with("Title\n\nBody", severity="high")

    def test_create_card_without_id(self):
        api = _api()
        api.report_request.return_value = {"ok": True}
        with pytest.raises(ProtocolError):
            cards.create_card(api, "Title")

    def test_update_card(self):
        api = _api()
        cards.update_card(api, "c1", status="done", priority=None)
        api.dispatch.assert_called_once_with(
            "cards/update", {"id": "c1", "status": "done", "priority": None}
        )

    def test_purge_card(self):
        api = _api()
        cards.purge_card(api, "c1")
        api.dispatch.assert_called_once_with(
            "cards/bulkUpdate", {"ids": ["c1"], "visibility": "deleted", "deleteFiles": False}
        )

    def test_set_hand_order(self):
        api = _api()
        cards.set_hand_order(api, "u1", ["c1", "c2"], ["c2"])
        path, payload = api.dispatch.call_args.args
        assert path == "handQueue/setCardOrders"
        assert payload["userId"] == "u1"
        assert payload["cardIds"] == ["c1", "c2"]
        assert payload["draggedCardIds"] == ["c2"]
        assert payload["sessionId"]

    def test_close_comment(self):
        api = _api()
        cards.close_comment(api, "u1", "t1", "c1")
        api.dispatch.assert_called_once_with(
            "resolvables/close", {"id": "t1", "isClosed": True, "cardId": "c1", "closedBy": "u1"}
        )
