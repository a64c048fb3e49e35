"""
Shared test fixtures for codecks-mcp tests.
Keeps the real .env and process environment out of every test.
"""

import pytest

from codecks_mcp.config import Settings


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Clear CODECKS_* variables and run from an empty directory."""
    import os

    for key in list(os.environ):
        if key.startswith("CODECKS_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def settings():
    return Settings(
        session_token="fake-token",
        account="fake-account",
        report_token="fake-report",
        user_id="fake-user-id",
        http_max_retries=2,
        http_retry_base_seconds=0.0,
    )
