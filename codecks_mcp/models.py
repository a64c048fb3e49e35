"""
Typed input contracts and reports for feature scaffolding.
"""

from dataclasses import dataclass, field

from codecks_mcp.config import VALID_PRIORITIES
from codecks_mcp.exceptions import ValidationError
from codecks_mcp.lanes import LANES, optional_lanes, required_lanes


def _resolve_lane_decks(deck_args, skip_args):
    """Decide which lanes are active and where their cards go.

    Required lanes need a deck. Optional lanes are skipped when asked to or
    when no deck is given; asking for both a skip and a deck is an error.
    """
    lane_decks = {}
    for lane in required_lanes():
        deck = deck_args.get(lane.name)
        if not deck:
            raise ValidationError(f"[ERROR] {lane.name}_deck is required.")
        lane_decks[lane.name] = deck
    for lane in optional_lanes():
        deck = deck_args.get(lane.name)
        skip = bool(skip_args.get(lane.name))
        if skip and deck:
            raise ValidationError(
                f"[ERROR] Use either skip_{lane.name} or {lane.name}_deck, not both."
            )
        lane_decks[lane.name] = None if skip else (deck or None)
    return lane_decks


def _check_priority(priority):
    if priority is not None and priority not in VALID_PRIORITIES:
        raise ValidationError(
            f"[ERROR] Invalid priority '{priority}'. Valid: {', '.join(sorted(VALID_PRIORITIES))}"
        )


@dataclass(frozen=True)
class FeatureSpec:
    """Validated input for scaffolding one hero card and its lane cards."""

    title: str
    hero_deck: str
    lane_decks: dict
    description: str | None = None
    owner: str | None = None
    priority: str | None = None
    effort: int | None = None
    allow_duplicate: bool = False

    @property
    def active_lanes(self):
        """Lanes that will get a sub-card, in registry order."""
        return tuple(lane for lane in LANES if self.lane_decks.get(lane.name))

    @classmethod
    def from_kwargs(
        cls,
        title,
        *,
        hero_deck,
        code_deck,
        design_deck,
        art_deck=None,
        skip_art=False,
        audio_deck=None,
        skip_audio=False,
        description=None,
        owner=None,
        priority=None,
        effort=None,
        allow_duplicate=False,
    ):
        title = (title or "").strip()
        if not title:
            raise ValidationError("[ERROR] Feature title cannot be empty.")
        if not hero_deck:
            raise ValidationError("[ERROR] hero_deck is required.")
        _check_priority(priority)
        if effort is not None and (not isinstance(effort, int) or effort < 0):
            raise ValidationError("[ERROR] effort must be a non-negative integer.")
        lane_decks = _resolve_lane_decks(
            {"code": code_deck, "design": design_deck, "art": art_deck, "audio": audio_deck},
            {"art": skip_art, "audio": skip_audio},
        )
        return cls(
            title=title,
            hero_deck=hero_deck,
            lane_decks=lane_decks,
            description=description,
            owner=owner,
            priority=priority,
            effort=effort,
            allow_duplicate=bool(allow_duplicate),
        )


@dataclass(frozen=True)
class SplitFeaturesSpec:
    """Validated input for splitting every un-split card in a deck."""

    deck: str
    lane_decks: dict
    priority: str | None = None
    dry_run: bool = False

    @property
    def active_lanes(self):
        return tuple(lane for lane in LANES if self.lane_decks.get(lane.name))

    @classmethod
    def from_kwargs(
        cls,
        *,
        deck,
        code_deck,
        design_deck,
        art_deck=None,
        skip_art=False,
        audio_deck=None,
        skip_audio=False,
        priority=None,
        dry_run=False,
    ):
        if not deck:
            raise ValidationError("[ERROR] deck is required.")
        _check_priority(priority)
        lane_decks = _resolve_lane_decks(
            {"code": code_deck, "design": design_deck, "art": art_deck, "audio": audio_deck},
            {"art": skip_art, "audio": skip_audio},
        )
        return cls(deck=deck, lane_decks=lane_decks, priority=priority, dry_run=bool(dry_run))


@dataclass(frozen=True)
class FeatureSubcard:
    lane: str
    id: str
    title: str | None = None

    def to_dict(self):
        out = {"lane": self.lane, "id": self.id}
        if self.title is not None:
            out["title"] = self.title
        return out


@dataclass(frozen=True)
class FeatureScaffoldReport:
    hero_id: str
    hero_title: str
    hero_deck: str
    subcards: list
    lane_decks: dict = field(default_factory=dict)
    notes: list | None = None

    def to_dict(self):
        decks = {"hero": self.hero_deck}
        decks.update(self.lane_decks)
        out = {
            "ok": True,
            "hero": {"id": self.hero_id, "title": self.hero_title},
            "subcards": [s.to_dict() for s in self.subcards],
            "decks": decks,
        }
        if self.notes:
            out["notes"] = self.notes
        return out


@dataclass(frozen=True)
class SplitFeatureDetail:
    """Outcome for one feature in a split batch."""

    feature_id: str
    feature_title: str
    subcards: list = field(default_factory=list)
    planned: dict | None = None
    error: str | None = None

    @property
    def ok(self):
        return self.error is None

    def to_dict(self):
        out = {
            "ok": self.ok,
            "feature_id": self.feature_id,
            "feature_title": self.feature_title,
            "subcards": [s.to_dict() for s in self.subcards],
        }
        if self.planned is not None:
            out["planned"] = self.planned
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class SplitFeaturesReport:
    features_found: int
    details: list
    dry_run: bool = False
    notes: list | None = None

    @property
    def features_processed(self):
        if self.dry_run:
            return 0
        return sum(1 for d in self.details if d.ok)

    @property
    def features_failed(self):
        return sum(1 for d in self.details if not d.ok)

    def to_dict(self):
        out = {
            "ok": True,
            "dry_run": self.dry_run,
            "features_found": self.features_found,
            "features_processed": self.features_processed,
            "features_failed": self.features_failed,
            "subcards_created": sum(len(d.subcards) for d in self.details),
            "details": [d.to_dict() for d in self.details],
        }
        if self.notes:
            out["notes"] = self.notes
        return out
