"""
codecks-mcp settings, constants, and .env loading.
Standalone module: no imports from other project files.

Settings are read once at startup into an immutable ``Settings`` value and
handed to the API layer, the client, and the MCP server by parameter.
"""

import os
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VERSION = "0.5.0"
CONTRACT_SCHEMA_VERSION = "1.0"

DEFAULT_BASE_URL = "https://api.codecks.io"

VALID_STATUSES = {"not_started", "started", "done", "blocked", "in_review", "in_progress"}
ACTIVE_STATUSES = ("not_started", "started", "blocked", "in_review", "in_progress")
VALID_PRIORITIES = {"a", "b", "c", "null"}
VALID_SEVERITIES = {"critical", "high", "low", "null"}
VALID_SORT_FIELDS = {"status", "priority", "effort", "deck", "title", "owner", "updated", "created"}
VALID_CARD_TYPES = {"hero", "doc"}
RESPONSE_MODES = {"legacy", "envelope"}

# ---------------------------------------------------------------------------
# .env helpers
# ---------------------------------------------------------------------------

ENV_FILENAME = ".env"


def load_env(path=None):
    """Parse KEY=VALUE lines from a .env file. Missing file yields {}."""
    path = path or os.path.join(os.getcwd(), ENV_FILENAME)
    env = {}
    if os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, val = line.split("=", 1)
                    env[key.strip()] = val.strip()
    return env


def _env_str(env, key, default=""):
    value = env.get(key)
    if value is None or value == "":
        return default
    return value


def _env_bool(env, key, default=False):
    """Parse common boolean env formats."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(env, key, default):
    """Parse integer env values with fallback."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(env, key, default):
    """Parse float env values with fallback."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read-only after startup."""

    session_token: str = ""
    account: str = ""
    report_token: str = ""
    user_id: str = ""
    base_url: str = DEFAULT_BASE_URL
    http_timeout_seconds: int = 30
    http_max_retries: int = 2
    http_retry_base_seconds: float = 1.0
    http_max_response_bytes: int = 5_000_000
    http_log_enabled: bool = False
    http_log_sample_rate: float = 1.0
    response_mode: str = "legacy"

    def __post_init__(self):
        # Frozen: normalize through object.__setattr__.
        object.__setattr__(self, "http_timeout_seconds", max(1, int(self.http_timeout_seconds)))
        object.__setattr__(self, "http_max_retries", max(0, int(self.http_max_retries)))
        object.__setattr__(
            self, "http_log_sample_rate", min(1.0, max(0.0, float(self.http_log_sample_rate)))
        )
        mode = (self.response_mode or "legacy").strip().lower()
        object.__setattr__(self, "response_mode", mode if mode in RESPONSE_MODES else "legacy")
        object.__setattr__(self, "base_url", (self.base_url or DEFAULT_BASE_URL).rstrip("/"))

    @property
    def has_credentials(self):
        return bool(self.session_token and self.account)

    @classmethod
    def from_env(cls, env):
        """Build settings from a mapping of CODECKS_* keys."""
        return cls(
            session_token=_env_str(env, "CODECKS_TOKEN"),
            account=_env_str(env, "CODECKS_ACCOUNT"),
            report_token=_env_str(env, "CODECKS_REPORT_TOKEN"),
            user_id=_env_str(env, "CODECKS_USER_ID"),
            base_url=_env_str(env, "CODECKS_BASE_URL", DEFAULT_BASE_URL),
            http_timeout_seconds=_env_int(env, "CODECKS_HTTP_TIMEOUT_SECONDS", 30),
            http_max_retries=_env_int(env, "CODECKS_HTTP_MAX_RETRIES", 2),
            http_retry_base_seconds=_env_float(env, "CODECKS_HTTP_RETRY_BASE_SECONDS", 1.0),
            http_max_response_bytes=_env_int(env, "CODECKS_HTTP_MAX_RESPONSE_BYTES", 5_000_000),
            http_log_enabled=_env_bool(env, "CODECKS_HTTP_LOG", False),
            http_log_sample_rate=_env_float(env, "CODECKS_HTTP_LOG_SAMPLE_RATE", 1.0),
            response_mode=_env_str(env, "CODECKS_MCP_RESPONSE_MODE", "legacy"),
        )


def load_settings(env_path=None):
    """Read .env (first) and the process environment (fallback) once."""
    merged = {k: v for k, v in os.environ.items() if k.startswith("CODECKS_")}
    merged.update(load_env(env_path))
    return Settings.from_env(merged)
