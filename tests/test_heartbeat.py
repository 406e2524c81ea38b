from __future__ import annotations

from datetime import UTC, datetime

from rankcore.heartbeat import (
    compute_queue_wait_info,
    filter_stale_queue_entries,
    heartbeat_reference_ms,
    partition_queue_by_heartbeat,
)
from rankcore.models import QueueEntry


def test_entry_without_recent_heartbeat_is_stale_at_25s_threshold(now_ms: int) -> None:
    entries = [
        {"id": "a", "updated_at": now_ms - 30_000},
        {"id": "b", "updated_at": now_ms - 5_000},
    ]

    partition = partition_queue_by_heartbeat(entries, now_ms=now_ms, stale_threshold_ms=25_000)

    assert [e["id"] for e in partition.fresh_entries] == ["b"]
    assert [e["id"] for e in partition.stale_entries] == ["a"]


def test_partition_is_total_and_keeps_input_order(now_ms: int) -> None:
    entries = [
        {"id": "1", "joined_at": now_ms - 1_000},
        {"id": "2", "joined_at": now_ms - 90_000},
        {"id": "3"},
        {"id": "4", "updatedAt": now_ms - 60_000},
        {"id": "5", "joined_at": now_ms - 10},
    ]

    partition = partition_queue_by_heartbeat(entries, now_ms=now_ms, stale_threshold_ms=25_000)

    assert [e["id"] for e in partition.fresh_entries] == ["1", "3", "5"]
    assert [e["id"] for e in partition.stale_entries] == ["2", "4"]
    assert len(partition.fresh_entries) + len(partition.stale_entries) == len(entries)


def test_entries_without_parseable_timestamp_are_never_stale(now_ms: int) -> None:
    entries = [{"id": "x", "updated_at": "not a date"}, {"id": "y", "joined_at": None}, {"id": "z"}]

    partition = partition_queue_by_heartbeat(entries, now_ms=now_ms, stale_threshold_ms=1)

    assert partition.stale_entries == []
    assert len(partition.fresh_entries) == 3


def test_threshold_boundary_is_strict(now_ms: int) -> None:
    entries = [{"id": "edge", "updated_at": now_ms - 25_000}]

    partition = partition_queue_by_heartbeat(entries, now_ms=now_ms, stale_threshold_ms=25_000)

    assert partition.stale_entries == []


def test_non_positive_or_missing_threshold_disables_staleness(now_ms: int) -> None:
    entries = [{"id": "old", "updated_at": now_ms - 10_000_000}]

    for threshold in (None, 0, -5, float("nan"), float("inf")):
        partition = partition_queue_by_heartbeat(entries, now_ms=now_ms, stale_threshold_ms=threshold)
        assert partition.stale_entries == [], threshold


def test_updated_at_takes_precedence_over_joined_at(now_ms: int) -> None:
    entry = {"joined_at": now_ms - 100_000, "updated_at": now_ms - 1_000}

    assert heartbeat_reference_ms(entry) == now_ms - 1_000


def test_heartbeat_accepts_queue_entry_models_and_iso_strings(now_ms: int) -> None:
    iso = datetime.fromtimestamp((now_ms - 60_000) / 1000, tz=UTC).isoformat().replace("+00:00", "Z")
    entry = QueueEntry.model_validate({"id": "q1", "role": "tank", "updated_at": iso})

    partition = filter_stale_queue_entries([entry], now_ms=now_ms)

    assert partition.stale_entries == [entry]


def test_unknown_entry_shapes_stay_fresh(now_ms: int) -> None:
    partition = partition_queue_by_heartbeat(["raw-string", 42], now_ms=now_ms, stale_threshold_ms=25_000)

    assert partition.fresh_entries == ["raw-string", 42]


def test_queue_wait_info_reports_oldest_join(now_ms: int) -> None:
    entries = [{"joined_at": now_ms - 4_000}, {"joined_at": now_ms - 12_500}, {"joined_at": "garbage"}]

    info = compute_queue_wait_info(entries, now_ms=now_ms)

    assert info.wait_seconds == 12.5
    assert info.oldest_joined_at == "2023-12-31T23:59:47.500Z"


def test_queue_wait_info_without_timestamps() -> None:
    info = compute_queue_wait_info([{"id": "a"}])

    assert info.wait_seconds is None
    assert info.oldest_joined_at is None


def test_queue_wait_info_ignores_unrenderable_join_times(now_ms: int) -> None:
    info = compute_queue_wait_info([{"joined_at": 1e16}, {"joined_at": now_ms - 2_000}], now_ms=2e16)

    assert info.oldest_joined_at == "2023-12-31T23:59:58.000Z"

    assert compute_queue_wait_info([{"joined_at": 1e16}], now_ms=2e16).wait_seconds is None
