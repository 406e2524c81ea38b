from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import redis

from rankcore.errors import SessionBusyError

DEFAULT_LOCK_TTL_MS = 5_000


def lock_key(session_id: str) -> str:
    return f"lock:session:{session_id}"


@contextmanager
def session_lock(*, r: redis.Redis, session_id: str, ttl_ms: int = DEFAULT_LOCK_TTL_MS) -> Iterator[str]:
    """Per-session mutex for callers driving a session manager from several processes.

    Yields the lock token. The key expires after `ttl_ms` if the holder dies. Release
    only deletes the key while it still carries our token, so an expired-and-retaken
    lock is left alone (the check and delete are not atomic).
    """

    key = lock_key(session_id)
    token = uuid.uuid4().hex
    if not r.set(key, token, nx=True, px=ttl_ms):
        raise SessionBusyError(session_id)
    try:
        yield token
    finally:
        if r.get(key) == token:
            r.delete(key)
