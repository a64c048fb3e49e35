"""
Response contract shared by every tool result.

Failures always look like::

    {"ok": False, "schema_version": "1.0", "type": ..., "error": ...,
     "error_detail": {"type": ..., "message": ...}}

``type`` and ``error`` are kept at the top level for older agents.
"""

from __future__ import annotations

from typing import Any

from codecks_mcp.config import CONTRACT_SCHEMA_VERSION


def contract_error(message: str, error_type: str = "error") -> dict[str, Any]:
    """Build a failure envelope."""
    return {
        "ok": False,
        "schema_version": CONTRACT_SCHEMA_VERSION,
        "type": error_type,
        "error": message,
        "error_detail": {"type": error_type, "message": message},
    }


def ensure_contract_dict(payload: dict) -> dict:
    """Backfill ``ok``/``schema_version`` (and ``error_detail`` on failures).

    Idempotent: existing keys are never overwritten.
    """
    out = dict(payload)
    out.setdefault("schema_version", CONTRACT_SCHEMA_VERSION)
    if out.get("ok") is not False:
        out.setdefault("ok", True)
        return out
    message = out.get("error", "Unknown error")
    if not isinstance(message, str):
        message = str(message)
        out["error"] = message
    out.setdefault("error_detail", {"type": str(out.get("type", "error")), "message": message})
    return out


def finalize_tool_result(result: Any, mode: str = "legacy") -> Any:
    """Present *result* in the configured response mode.

    ``legacy`` returns normalized dicts and leaves other payloads untouched.
    ``envelope`` wraps successes as ``{"ok", "schema_version", "data"}``.
    Failures are returned as-is in both modes.
    """
    if isinstance(result, dict):
        result = ensure_contract_dict(result)
        if result["ok"] is False or mode != "envelope":
            return result
        data = {k: v for k, v in result.items() if k not in ("ok", "schema_version")}
        return {"ok": True, "schema_version": CONTRACT_SCHEMA_VERSION, "data": data}
    if mode == "envelope":
        return {"ok": True, "schema_version": CONTRACT_SCHEMA_VERSION, "data": result}
    return result
