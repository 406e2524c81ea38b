from __future__ import annotations

from collections.abc import Generator

import fakeredis
import pytest

from rankcore.config import Settings

# 2024-01-01T00:00:00Z; fixed so heartbeat and join-order tests never depend on the wall clock.
NOW_MS = 1_704_067_200_000


@pytest.fixture()
def now_ms() -> int:
    return NOW_MS


@pytest.fixture()
def settings() -> Settings:
    return Settings()


@pytest.fixture()
def fake_redis() -> Generator[fakeredis.FakeRedis, None, None]:
    """Shared fakeredis client for the boundary adapter tests."""

    r = fakeredis.FakeRedis(decode_responses=True)
    yield r
    r.flushall()


@pytest.fixture(autouse=True)
def _clean_rankcore_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer shell settings from leaking into config-sensitive tests."""

    for name in (
        "RANK_MATCH_SAFE_FALLBACK",
        "RANKCORE_QUEUE_STALE_THRESHOLD_MS",
        "RANKCORE_WARNING_LIMIT",
        "RANKCORE_EVENT_LOG_SIZE",
        "RANKCORE_REDIS_URL",
    ):
        monkeypatch.delenv(name, raising=False)
