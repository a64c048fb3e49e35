"""Tests for contract.py: error envelopes and response-mode finalizing."""

from codecks_mcp.config import CONTRACT_SCHEMA_VERSION
from codecks_mcp.contract import contract_error, ensure_contract_dict, finalize_tool_result


class TestContractError:
    def test_shape(self):
        err = contract_error("[ERROR] nope", "validation")
        assert err == {
            "ok": False,
            "schema_version": CONTRACT_SCHEMA_VERSION,
            "type": "validation",
            "error": "[ERROR] nope",
            "error_detail": {"type": "validation", "message": "[ERROR] nope"},
        }

    def test_default_type(self):
        assert contract_error("x")["type"] == "error"


class TestEnsureContractDict:
    def test_success_backfilled(self):
        out = ensure_contract_dict({"cards": []})
        assert out["ok"] is True
        assert out["schema_version"] == CONTRACT_SCHEMA_VERSION
        assert out["cards"] == []

    def test_failure_gets_error_detail(self):
        out = ensure_contract_dict({"ok": False, "type": "setup", "error": "expired"})
        assert out["error_detail"] == {"type": "setup", "message": "expired"}

    def test_existing_keys_kept(self):
        out = ensure_contract_dict({"ok": False, "schema_version": "0.9", "error": "x"})
        assert out["schema_version"] == "0.9"

    def test_idempotent(self):
        once = ensure_contract_dict({"ok": False, "error": "boom"})
        assert ensure_contract_dict(once) == once

    def test_input_not_mutated(self):
        payload = {"cards": []}
        ensure_contract_dict(payload)
        assert payload == {"cards": []}


class TestFinalizeToolResult:
    def test_legacy_keeps_payload_flat(self):
        out = finalize_tool_result({"cards": [], "count": 0})
        assert out == {"cards": [], "count": 0, "ok": True, "schema_version": "1.0"}

    def test_envelope_wraps_success(self):
        out = finalize_tool_result({"cards": [], "count": 0}, "envelope")
        assert out == {
            "ok": True,
            "schema_version": CONTRACT_SCHEMA_VERSION,
            "data": {"cards": [], "count": 0},
        }

    def test_envelope_leaves_failures_unwrapped(self):
        err = contract_error("bad", "validation")
        assert finalize_tool_result(err, "envelope") == err

    def test_non_dict_results(self):
        assert finalize_tool_result([1, 2]) == [1, 2]
        assert finalize_tool_result([1, 2], "envelope")["data"] == [1, 2]
