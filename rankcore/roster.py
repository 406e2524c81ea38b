"""Queue rows in, seated roster out: heartbeat filter, matcher, then global sanitize."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from rankcore.config import Settings
from rankcore.heartbeat import partition_queue_by_heartbeat
from rankcore.matching import MatchingStrategy, run_matching
from rankcore.models import Assignment, MatchError, Member
from rankcore.sanitizer import sanitize_assignment_set
from rankcore.timeutil import now_ms as _now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RosterResult:
    ready: bool
    assignments: list[Assignment] = field(default_factory=list)
    total_slots: int = 0
    error: MatchError | None = None
    fresh_entries: list[Any] = field(default_factory=list)
    stale_entries: list[Any] = field(default_factory=list)
    members: list[Member] = field(default_factory=list)
    used_fallback: bool = False
    strategy: str | None = None


def build_roster(
    *,
    mode: str | None,
    roles: Iterable[Any],
    queue: Iterable[Any],
    now_ms: int | None = None,
    stale_threshold_ms: int | float | None = None,
    safe_fallback: bool | None = None,
    strategies: Mapping[str, MatchingStrategy] | None = None,
    settings: Settings | None = None,
) -> RosterResult:
    settings = settings or Settings()
    threshold = settings.queue_stale_threshold_ms if stale_threshold_ms is None else stale_threshold_ms
    fallback = settings.safe_fallback if safe_fallback is None else safe_fallback

    partition = partition_queue_by_heartbeat(
        queue,
        now_ms=_now_ms() if now_ms is None else now_ms,
        stale_threshold_ms=threshold,
    )
    if partition.stale_entries:
        logger.debug("Dropped %d stale queue entries before matching", len(partition.stale_entries))

    result = run_matching(
        mode=mode,
        roles=roles,
        queue=partition.fresh_entries,
        strategies=strategies,
        safe_fallback=fallback,
    )

    # A matcher may seat the same owner under two roles; the set-wide pass keeps the first.
    assignments = [
        assignment.model_copy(update={"ready": len(assignment.members) >= assignment.slot_count})
        for assignment in sanitize_assignment_set(result.assignments)
    ]

    return RosterResult(
        ready=result.ready and all(a.ready for a in assignments),
        assignments=assignments,
        total_slots=result.total_slots,
        error=result.error,
        fresh_entries=partition.fresh_entries,
        stale_entries=partition.stale_entries,
        members=[member for assignment in assignments for member in assignment.members],
        used_fallback=result.used_fallback,
        strategy=result.strategy,
    )
