from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from rankcore.config import DEFAULT_QUEUE_STALE_THRESHOLD_MS
from rankcore.models import QueueEntry
from rankcore.timeutil import now_ms as _now_ms
from rankcore.timeutil import ms_to_iso, parse_timestamp_ms

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class HeartbeatPartition:
    fresh_entries: list[Any]
    stale_entries: list[Any]


@dataclass(frozen=True, slots=True)
class QueueWaitInfo:
    wait_seconds: float | None
    oldest_joined_at: str | None


def _field(entry: Any, *keys: str) -> Any:
    if isinstance(entry, QueueEntry):
        return getattr(entry, keys[0], None)
    if isinstance(entry, Mapping):
        for key in keys:
            value = entry.get(key)
            if value is not None:
                return value
    return None


def heartbeat_reference_ms(entry: Any) -> int | None:
    """Last sign of life for a queue entry: `updated_at`, else `joined_at`."""

    for keys in (("updated_at", "updatedAt"), ("joined_at", "joinedAt")):
        parsed = parse_timestamp_ms(_field(entry, *keys))
        if parsed is not None:
            return parsed
    return None


def _threshold_enabled(stale_threshold_ms: Any) -> bool:
    if stale_threshold_ms is None or isinstance(stale_threshold_ms, bool):
        return False
    if not isinstance(stale_threshold_ms, (int, float)):
        return False
    return math.isfinite(stale_threshold_ms) and stale_threshold_ms > 0


def partition_queue_by_heartbeat(
    entries: Iterable[T] | None,
    *,
    now_ms: int | float,
    stale_threshold_ms: int | float | None,
) -> HeartbeatPartition:
    """Split queue entries into fresh and stale, keeping input order in both.

    An entry with no parseable timestamp is never stale, and a missing or non-positive
    threshold disables staleness altogether.
    """

    fresh: list[T] = []
    stale: list[T] = []
    enabled = _threshold_enabled(stale_threshold_ms)

    for entry in entries or []:
        reference = heartbeat_reference_ms(entry) if enabled else None
        if reference is not None and now_ms - reference > stale_threshold_ms:  # type: ignore[operator]
            stale.append(entry)
        else:
            fresh.append(entry)

    return HeartbeatPartition(fresh_entries=fresh, stale_entries=stale)


def filter_stale_queue_entries(
    entries: Iterable[T] | None,
    *,
    now_ms: int | float | None = None,
    stale_threshold_ms: int | float | None = None,
) -> HeartbeatPartition:
    """`partition_queue_by_heartbeat` against the wall clock and the default 25 s threshold."""

    return partition_queue_by_heartbeat(
        entries,
        now_ms=_now_ms() if now_ms is None else now_ms,
        stale_threshold_ms=DEFAULT_QUEUE_STALE_THRESHOLD_MS if stale_threshold_ms is None else stale_threshold_ms,
    )


def compute_queue_wait_info(entries: Iterable[Any] | None, *, now_ms: int | float | None = None) -> QueueWaitInfo:
    """How long the oldest queued entry has been waiting."""

    oldest: int | None = None
    for entry in entries or []:
        joined = parse_timestamp_ms(_field(entry, "joined_at", "joinedAt"))
        if joined is not None and (oldest is None or joined < oldest):
            oldest = joined

    if oldest is None:
        return QueueWaitInfo(wait_seconds=None, oldest_joined_at=None)

    now = _now_ms() if now_ms is None else now_ms
    return QueueWaitInfo(
        wait_seconds=max(0, now - oldest) / 1000,
        oldest_joined_at=ms_to_iso(oldest),
    )
