"""
Shared pure-utility functions for codecks-mcp.

These helpers have no business logic and no side effects.
"""

from datetime import datetime, timezone

from codecks_mcp.exceptions import ValidationError


def _get_field(d, snake, camel):
    """Get a value from a dict trying snake_case then camelCase key."""
    if snake in d:
        return d.get(snake)
    return d.get(camel)


def _parse_multi_value(raw, valid_set, field_name):
    """Parse a comma-separated filter string and validate each value.
    Returns a list of validated values."""
    values = [v.strip() for v in raw.split(",") if v.strip()]
    for v in values:
        if v not in valid_set:
            raise ValidationError(
                f"[ERROR] Invalid {field_name} '{v}'. Valid: {', '.join(sorted(valid_set))}"
            )
    return values


def _parse_date(date_str):
    """Parse a YYYY-MM-DD date string into a datetime."""
    try:
        return datetime.strptime(date_str, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise ValidationError(f"[ERROR] Invalid date '{date_str}'. Use YYYY-MM-DD format.") from e


def _parse_iso_timestamp(ts):
    """Parse an ISO timestamp from the API into a datetime."""
    if not ts or not isinstance(ts, str):
        return None
    try:
        # Handle both "2026-01-15T10:30:00Z" and "2026-01-15T10:30:00.000Z"
        parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_clear_sentinel(value):
    """True for the explicit 'clear this field' sentinels ('null' / 'none')."""
    return isinstance(value, str) and value.strip().lower() in {"null", "none"}
