"""
Trust boundary for text crossing between Codecks and the agent.

Outbound (Codecks -> agent): user-authored fields are scanned for prompt
injection phrasing and wrapped in ``[USER_DATA]`` markers. Findings are
advisory; content is never dropped.

Inbound (agent -> Codecks): text is stripped of control characters and
length-checked per field, identifiers are shape-checked.
"""

from __future__ import annotations

import re

from codecks_mcp.exceptions import ValidationError

USER_DATA_OPEN = "[USER_DATA]"
USER_DATA_CLOSE = "[/USER_DATA]"

_MIN_SCAN_LENGTH = 10

# Ordered, independent classes; every match is reported.
_INJECTION_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("role label", re.compile(r"^\s*(?:system|assistant|user)\s*:", re.I | re.M)),
    (
        "XML-like directive tag",
        re.compile(r"<\s*/?\s*(?:system|instruction|admin|prompt|tool_call|function_call)", re.I),
    ),
    (
        "override directive",
        re.compile(
            r"\bignore\s+(?:all\s+)?(?:previous|prior|above)\s+(?:instructions|prompts|rules)",
            re.I,
        ),
    ),
    (
        "forget directive",
        re.compile(
            r"\bforget\s+(?:your|all|the)\s+(?:rules|instructions|training|guidelines)",
            re.I,
        ),
    ),
    (
        "mode switching",
        re.compile(
            r"\byou\s+are\s+now\s+(?:in\s+)?(?:admin|root|debug|developer|unrestricted|jailbreak)",
            re.I,
        ),
    ),
    (
        "tool invocation directive",
        re.compile(r"\b(?:execute|call|invoke|run)\s+the\s+(?:tool|function|command)", re.I),
    ),
)


def detect_injection(text: str | None) -> list[str]:
    """Return the labels of every injection class found in *text*."""
    if not isinstance(text, str) or len(text) < _MIN_SCAN_LENGTH:
        return []
    return [label for label, rule in _INJECTION_RULES if rule.search(text)]


def _has_marker(text: str) -> bool:
    return USER_DATA_OPEN in text or USER_DATA_CLOSE in text


def is_tagged(text: str) -> bool:
    """True for one marker pair around text that holds no other marker."""
    if len(text) < len(USER_DATA_OPEN) + len(USER_DATA_CLOSE):
        return False
    if not (text.startswith(USER_DATA_OPEN) and text.endswith(USER_DATA_CLOSE)):
        return False
    return not _has_marker(text[len(USER_DATA_OPEN) : -len(USER_DATA_CLOSE)])


def tag_user_text(text: str | None) -> str | None:
    """Wrap *text* in boundary markers exactly once. ``None`` stays ``None``.

    Marker strings embedded in the text are removed first so user content
    cannot close the boundary early.
    """
    if text is None:
        return None
    if is_tagged(text):
        return text
    inner = text.replace(USER_DATA_OPEN, "").replace(USER_DATA_CLOSE, "")
    return f"{USER_DATA_OPEN}{inner}{USER_DATA_CLOSE}"


def _untagged(text: str) -> str:
    if is_tagged(text):
        return text[len(USER_DATA_OPEN) : -len(USER_DATA_CLOSE)]
    return text


def _guard_field(record: dict, field: str, label: str, warnings: list[str]) -> None:
    """Scan and tag ``record[field]`` in place when it holds a string."""
    value = record.get(field)
    if not isinstance(value, str):
        return
    warnings.extend(f"{label}: {finding}" for finding in detect_injection(_untagged(value)))
    record[field] = tag_user_text(value)


# ---------------------------------------------------------------------------
# Outbound sanitizers
# ---------------------------------------------------------------------------

CARD_TEXT_FIELDS = ("title", "content", "deck_name", "owner_name", "milestone_name")


def sanitize_card(card: dict) -> dict:
    """Return a copy of *card* with user text tagged.

    Covers the card's own text fields, nested ``sub_cards[].title`` and
    ``conversations[].messages[].content``. Findings are listed under
    ``_safety_warnings`` only when there are any.
    """
    out = dict(card)
    warnings: list[str] = []
    for field in CARD_TEXT_FIELDS:
        _guard_field(out, field, field, warnings)

    if isinstance(out.get("sub_cards"), list):
        subs = []
        for sub in out["sub_cards"]:
            if isinstance(sub, dict):
                sub = dict(sub)
                _guard_field(sub, "title", "sub_card.title", warnings)
            subs.append(sub)
        out["sub_cards"] = subs

    if isinstance(out.get("conversations"), list):
        convos = []
        for conv in out["conversations"]:
            if isinstance(conv, dict) and isinstance(conv.get("messages"), list):
                conv = dict(conv)
                messages = []
                for msg in conv["messages"]:
                    if isinstance(msg, dict):
                        msg = dict(msg)
                        _guard_field(msg, "content", "conversation.message", warnings)
                    messages.append(msg)
                conv["messages"] = messages
            convos.append(conv)
        out["conversations"] = convos

    if warnings:
        out["_safety_warnings"] = warnings
    return out


def sanitize_activity(entries: list) -> list:
    """Tag referenced card titles in activity rows."""
    tagged = []
    for entry in entries:
        if isinstance(entry, dict):
            entry = dict(entry)
            warnings: list[str] = []
            _guard_field(entry, "card_title", "card_title", warnings)
            if warnings:
                entry["_safety_warnings"] = warnings
        tagged.append(entry)
    return tagged


def sanitize_split_report(report: dict) -> dict:
    """Tag feature titles, sub-card titles and planned checklist lines."""
    out = dict(report)
    warnings: list[str] = []
    details = []
    for detail in out.get("details") or []:
        if isinstance(detail, dict):
            detail = dict(detail)
            _guard_field(detail, "feature_title", "feature_title", warnings)
            subs = []
            for sub in detail.get("subcards") or []:
                if isinstance(sub, dict):
                    sub = dict(sub)
                    _guard_field(sub, "title", "sub_card.title", warnings)
                subs.append(sub)
            detail["subcards"] = subs
            if isinstance(detail.get("planned"), dict):
                planned = {}
                for lane, items in detail["planned"].items():
                    planned[lane] = [_guarded(item, "planned_item", warnings) for item in items]
                detail["planned"] = planned
        details.append(detail)
    if "details" in out:
        out["details"] = details
    if warnings:
        out["_safety_warnings"] = warnings
    return out


def _guarded(value, label: str, warnings: list[str]):
    holder = {"value": value}
    _guard_field(holder, "value", label, warnings)
    return holder["value"]


# ---------------------------------------------------------------------------
# Inbound validation
# ---------------------------------------------------------------------------

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

INPUT_LIMITS = {
    "title": 500,
    "content": 50_000,
    "message": 10_000,
    "description": 50_000,
}
DEFAULT_INPUT_LIMIT = 50_000


def validate_text(text: str, field: str) -> str:
    """Strip control characters, then enforce the per-field length limit."""
    if not isinstance(text, str):
        raise ValidationError(f"[ERROR] {field} must be a string")
    cleaned = _CONTROL_CHARS.sub("", text)
    limit = INPUT_LIMITS.get(field, DEFAULT_INPUT_LIMIT)
    if len(cleaned) > limit:
        raise ValidationError(f"[ERROR] {field} exceeds maximum length of {limit} characters")
    return cleaned


def validate_uuid(value: str, field: str = "card_id") -> str:
    """Require 36 characters containing exactly 4 hyphens."""
    if not isinstance(value, str) or len(value) != 36 or value.count("-") != 4:
        raise ValidationError(f"[ERROR] {field} must be a full 36-char UUID, got: {value!r}")
    return value


def validate_uuid_list(values: list[str], field: str = "card_ids") -> list[str]:
    """Validate ids in order; the first bad entry is reported by position."""
    if not isinstance(values, list):
        raise ValidationError(f"[ERROR] {field} must be a list of UUIDs")
    for index, value in enumerate(values):
        validate_uuid(value, f"{field}[{index}]")
    return list(values)
