from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_QUEUE_STALE_THRESHOLD_MS = 25_000
DEFAULT_WARNING_LIMIT = 2
DEFAULT_EVENT_LOG_SIZE = 50
DEFAULT_REDIS_URL = "redis://localhost:6379/0"

_TRUTHY = frozenset({"1", "true", "yes"})


@dataclass(frozen=True, slots=True)
class Settings:
    safe_fallback: bool = False
    queue_stale_threshold_ms: int = DEFAULT_QUEUE_STALE_THRESHOLD_MS
    warning_limit: int = DEFAULT_WARNING_LIMIT
    event_log_size: int = DEFAULT_EVENT_LOG_SIZE
    redis_url: str = DEFAULT_REDIS_URL


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def settings_from_env() -> Settings:
    """Read settings from the environment.

    Callers read this once and pass the values down; the matching and session code
    never looks at the environment itself.
    """

    return Settings(
        safe_fallback=os.environ.get("RANK_MATCH_SAFE_FALLBACK", "").strip().lower() in _TRUTHY,
        queue_stale_threshold_ms=_int_from_env(
            "RANKCORE_QUEUE_STALE_THRESHOLD_MS", DEFAULT_QUEUE_STALE_THRESHOLD_MS
        ),
        warning_limit=_int_from_env("RANKCORE_WARNING_LIMIT", DEFAULT_WARNING_LIMIT),
        event_log_size=_int_from_env("RANKCORE_EVENT_LOG_SIZE", DEFAULT_EVENT_LOG_SIZE),
        redis_url=os.environ.get("RANKCORE_REDIS_URL", DEFAULT_REDIS_URL),
    )
