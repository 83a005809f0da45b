"""Runtime settings, read from the environment."""

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """
    Tunables for the bridge and the orchestration engine.

    Every field maps to an environment variable so the server can be
    configured from an MCP client's ``env`` block:

    - USER_EMAIL_PREFERENCES: free text appended to every tool description
    - MAIL_SCRIPT_TIMEOUT: seconds before an osascript call is killed
    - MAIL_SCRIPT_RETRIES: attempts for a timed-out script
    - MAIL_SCRIPT_BACKOFF: initial backoff in seconds, doubled per retry
    - MAIL_BRIDGE_CONCURRENCY: maximum concurrent osascript processes
    - MAIL_FETCH_CAP: newest messages fetched per mailbox when listing
    - MAIL_SEARCH_THRESHOLD: fuzzy match score (0-100) a result must reach
    - MAIL_DEFAULT_LIMIT: messages returned by listEmails when no limit given
    - MAIL_INIT_TIMEOUT: seconds to wait for Mail at startup
    - MAIL_LOG_LEVEL: logging level name
    """

    user_preferences: str = ""
    script_timeout: float = 120.0
    script_retries: int = 3
    script_backoff: float = 2.0
    bridge_concurrency: int = 4
    fetch_cap: int = 200
    search_threshold: float = 80.0
    default_limit: int = 25
    init_timeout: float = 5.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            user_preferences=os.environ.get("USER_EMAIL_PREFERENCES", ""),
            script_timeout=_env_float("MAIL_SCRIPT_TIMEOUT", cls.script_timeout),
            script_retries=max(1, _env_int("MAIL_SCRIPT_RETRIES", cls.script_retries)),
            script_backoff=_env_float("MAIL_SCRIPT_BACKOFF", cls.script_backoff),
            bridge_concurrency=max(1, _env_int("MAIL_BRIDGE_CONCURRENCY", cls.bridge_concurrency)),
            fetch_cap=max(1, _env_int("MAIL_FETCH_CAP", cls.fetch_cap)),
            search_threshold=_env_float("MAIL_SEARCH_THRESHOLD", cls.search_threshold),
            default_limit=max(0, _env_int("MAIL_DEFAULT_LIMIT", cls.default_limit)),
            init_timeout=_env_float("MAIL_INIT_TIMEOUT", cls.init_timeout),
            log_level=os.environ.get("MAIL_LOG_LEVEL", cls.log_level).upper(),
        )
