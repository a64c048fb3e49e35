"""Lane registry for feature scaffolding, plus checklist routing.

A hero card is decomposed into one sub-card per lane. Required lanes are
always created; optional lanes are created only when a deck is given and
the lane is not skipped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class LaneDefinition:
    """One discipline lane (code, design, art, audio)."""

    name: str
    display_name: str
    required: bool
    keywords: tuple[str, ...]
    default_checklist: tuple[str, ...]
    tags: tuple[str, ...]


LANES: tuple[LaneDefinition, ...] = (
    LaneDefinition(
        name="code",
        display_name="Code",
        required=True,
        keywords=(
            "implement",
            "build",
            "function",
            "logic",
            "system",
            "component",
            "manager",
            "handle",
            "wire",
            "refactor",
            "fix",
            "debug",
            "integrate",
            "script",
            "class",
            "api",
            "save",
            "test:",
        ),
        default_checklist=(
            "Implement core logic",
            "Handle edge cases",
            "Add tests/verification",
        ),
        tags=("code", "feature"),
    ),
    LaneDefinition(
        name="design",
        display_name="Design",
        required=True,
        keywords=(
            "balance",
            "tune",
            "playtest",
            "define",
            "pacing",
            "feel",
            "progression",
            "economy",
            "curve",
            "difficulty",
            "reward",
            "threshold",
            "rules",
        ),
        default_checklist=(
            "Define target player feel",
            "Tune balance parameters",
            "Run playtest and iterate",
        ),
        tags=("design", "feature"),
    ),
    LaneDefinition(
        name="art",
        display_name="Art",
        required=False,
        keywords=(
            "sprite",
            "animation",
            "visual",
            "portrait",
            "icon",
            "asset",
            "texture",
            "particle",
            "vfx",
            "model",
            "ui layout",
        ),
        default_checklist=(
            "Create required assets",
            "Integrate assets in game",
            "Visual quality pass",
        ),
        tags=("art", "feature"),
    ),
    LaneDefinition(
        name="audio",
        display_name="Audio",
        required=False,
        keywords=(
            "sfx",
            "sound",
            "music",
            "audio",
            "voice",
            "ambient",
            "foley",
            "mix",
            "bgm",
            "jingle",
        ),
        default_checklist=(
            "Create required audio assets",
            "Integrate audio in game",
            "Audio mix pass",
        ),
        tags=("audio", "feature"),
    ),
)


def get_lane(name: str) -> LaneDefinition:
    """Return a lane by name. Raises KeyError if not found."""
    for lane in LANES:
        if lane.name == name:
            return lane
    raise KeyError(f"Unknown lane: {name!r}")


def required_lanes() -> tuple[LaneDefinition, ...]:
    return tuple(lane for lane in LANES if lane.required)


def optional_lanes() -> tuple[LaneDefinition, ...]:
    return tuple(lane for lane in LANES if not lane.required)


# ---------------------------------------------------------------------------
# Checklist routing
# ---------------------------------------------------------------------------

# "- [] item" (Codecks) and "- [ ] item" / "- [x] item" (markdown)
_CHECKLIST_LINE = re.compile(r"^-\s*\[[\sxX]?\]\s*(.+)$")


def checklist_items(content: str | None) -> list[str]:
    """Return the checklist entries found in card content, in order."""
    items = []
    for line in (content or "").splitlines():
        match = _CHECKLIST_LINE.match(line.strip())
        if match:
            items.append(match.group(1).strip())
    return items


def classify_item(text: str, lanes: tuple[str, ...] | None = None) -> str | None:
    """Return the lane whose keywords score highest for *text*.

    Ties go to the lane registered first. ``None`` when nothing matches.
    """
    lower = text.lower()
    best, best_score = None, 0
    for lane in LANES:
        if lanes is not None and lane.name not in lanes:
            continue
        score = sum(1 for kw in lane.keywords if kw in lower)
        if score > best_score:
            best, best_score = lane.name, score
    return best


def route_checklist(content: str | None, lanes: tuple[str, ...]) -> dict[str, list[str]]:
    """Distribute a feature's checklist over *lanes*.

    Unmatched items go to the lane currently holding the fewest items.
    Lanes left empty get their default checklist.
    """
    routed: dict[str, list[str]] = {name: [] for name in lanes}
    leftovers = []
    for item in checklist_items(content):
        lane = classify_item(item, lanes)
        if lane is None:
            leftovers.append(item)
        else:
            routed[lane].append(item)
    for item in leftovers:
        smallest = min(routed, key=lambda name: len(routed[name]))
        routed[smallest].append(item)
    for name, items in routed.items():
        if not items:
            items.extend(get_lane(name).default_checklist)
    return routed


def render_checklist(items: list[str]) -> str:
    """Render items as Codecks interactive checkboxes."""
    return "\n".join(f"- [] {item}" for item in items)
