from __future__ import annotations

import fakeredis
import pytest

from rankcore.errors import SessionBusyError
from rankcore.infra.lock import lock_key, session_lock
from rankcore.infra.redis_client import get_redis_url
from rankcore.infra.timeline_store import TimelineEventStore, timeline_key
from rankcore.session import RealtimeSessionManager
from rankcore.timeline import canonical_fields


def test_session_lock_rejects_second_holder(fake_redis: fakeredis.FakeRedis) -> None:
    with session_lock(r=fake_redis, session_id="s1"):
        with pytest.raises(SessionBusyError, match="Session is busy: s1"):
            with session_lock(r=fake_redis, session_id="s1"):
                pass

        # Other sessions are independent.
        with session_lock(r=fake_redis, session_id="s2"):
            pass

    assert fake_redis.get(lock_key("s1")) is None


def test_session_lock_leaves_a_retaken_lock_alone(fake_redis: fakeredis.FakeRedis) -> None:
    with session_lock(r=fake_redis, session_id="s1"):
        fake_redis.set(lock_key("s1"), "someone-else")

    assert fake_redis.get(lock_key("s1")) == "someone-else"


def test_session_busy_error_is_a_value_error() -> None:
    assert issubclass(SessionBusyError, ValueError)


def test_redis_url_comes_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    assert get_redis_url() == "redis://localhost:6379/0"

    monkeypatch.setenv("RANKCORE_REDIS_URL", "redis://cache:6379/3")

    assert get_redis_url() == "redis://cache:6379/3"


def test_timeline_store_round_trips_session_events(fake_redis: fakeredis.FakeRedis) -> None:
    manager = RealtimeSessionManager(warning_limit=1)
    for turn in (1, 2):
        manager.begin_turn(turn_number=turn, eligible_owner_ids=["a"])
        manager.complete_turn(turn_number=turn, eligible_owner_ids=["a"])
    events = manager.get_snapshot().events

    store = TimelineEventStore(fake_redis)
    ids = store.append("s1", events, game_id="g1")

    assert len(ids) == 2
    assert fake_redis.xlen(timeline_key("s1")) == 2

    loaded = store.load("s1")

    assert [canonical_fields(e) for e in loaded] == [canonical_fields(e) for e in events]
    assert {e.session_id for e in loaded} == {"s1"}
    assert {e.game_id for e in loaded} == {"g1"}


def test_timeline_store_dedupes_replayed_appends(fake_redis: fakeredis.FakeRedis, now_ms: int) -> None:
    store = TimelineEventStore(fake_redis)
    event = {
        "type": "drop_in_joined",
        "owner_id": "o1",
        "turn": 2,
        "timestamp": now_ms,
        "context": {"substitution": {"cause": "role_defeated"}},
    }

    store.append("s1", [event, "garbage"])
    store.append("s1", [event])

    [loaded] = store.load("s1", order="desc")
    assert loaded.context == {"substitution": {"cause": "role_defeated"}}
    assert loaded.metadata is None
    assert fake_redis.xlen(timeline_key("s1")) == 2

    store.clear("s1")
    assert store.load("s1") == []
