"""
Query builders and entity-map extraction for the Codecks query dialect.

Codecks reads are one nested selection tree posted as ``{"query": ...}``.
Filters are embedded in the key text itself, e.g.::

    {"_root": [{"account": [{'cards({"status":"started"})': ["title"]}]}]}

Responses come back as entity maps (``{"card": {"<uuid>": {...}}}``) rather
than arrays. Everything here is pure: no network, and inputs are never
mutated.
"""

import json

from codecks_mcp.exceptions import ProtocolError

# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def filter_key(entity, filters):
    """Return the filter-embedded key ``entity({...})``.

    Serialization is canonical (sorted keys, no whitespace) so identical
    filters always produce identical key text.
    """
    if not filters:
        return entity
    return f"{entity}({json.dumps(filters, sort_keys=True, separators=(',', ':'))})"


def account_query(*selections):
    """Wrap selections in the ``_root -> account`` envelope."""
    return {"_root": [{"account": list(selections)}]}


def cards_selection(filters, fields):
    """Selection mapping a filtered ``cards`` key to its field list."""
    return {filter_key("cards", filters): list(fields)}


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _singular(key):
    """``decks`` -> ``deck``, ``activities`` -> ``activity``."""
    if key.endswith("ies"):
        return key[:-3] + "y"
    if key.endswith("s"):
        return key[:-1]
    return key


def entity_map(response, key):
    """Return the raw ``{id: entity}`` mapping under *key*, or ``{}``.

    A container that is present but not a mapping is a protocol error.
    """
    if not isinstance(response, dict):
        raise ProtocolError(
            f"[ERROR] Unexpected query response: expected JSON object, "
            f"got {type(response).__name__}."
        )
    container = response.get(key)
    if container is None:
        return {}
    if not isinstance(container, dict):
        raise ProtocolError(
            f"[ERROR] Unexpected '{key}' container: expected entity map, "
            f"got {type(container).__name__}."
        )
    return container


def extract_entities(response, key):
    """Flatten ``response[key]`` into a list of records in map order.

    Non-object values are discarded. Each record is a shallow copy with its
    map key injected as ``id`` when the record does not carry one.
    """
    rows = []
    for entity_id, value in entity_map(response, key).items():
        if not isinstance(value, dict):
            continue
        row = dict(value)
        row.setdefault("id", entity_id)
        rows.append(row)
    return rows


def extract_list(response, plural_key):
    """Extract a top-level collection requested under *plural_key*.

    The service names the response container inconsistently, so the
    singular key is tried first, then the plural.
    """
    singular = _singular(plural_key)
    if singular != plural_key and entity_map(response, singular):
        return extract_entities(response, singular)
    return extract_entities(response, plural_key)


def resolve_ref(response, key, ref, field="name"):
    """Resolve a relation reference through a sibling entity map.

    *ref* may be an id string (the usual shape) or an already-embedded dict.
    Returns the referenced entity's *field*, or ``None``.
    """
    if not ref:
        return None
    if isinstance(ref, dict):
        if field in ref:
            return ref.get(field)
        ref = ref.get("id")
        if not ref:
            return None
    target = entity_map(response, key).get(ref)
    if isinstance(target, dict):
        return target.get(field)
    return None


def ref_id(ref):
    """Id of a relation reference given as a string or an embedded dict."""
    if isinstance(ref, dict):
        return ref.get("id")
    return ref or None
