from __future__ import annotations

from typing import Any

from rankcore.config import Settings
from rankcore.models import Assignment, MatchResult, Member, SlotResult
from rankcore.roster import build_roster

ROLES = [{"name": "tank", "slot_count": 1}, {"name": "dps", "slot_count": 2}]


def _row(entry_id: str, owner: str, hero: str, role: str, updated_at: int) -> dict[str, Any]:
    return {
        "id": entry_id,
        "owner_id": owner,
        "hero_id": hero,
        "role": role,
        "joined_at": updated_at,
        "updated_at": updated_at,
    }


def test_stale_entries_are_dropped_before_matching(now_ms: int) -> None:
    queue = [
        _row("q1", "o1", "h1", "dps", now_ms - 40_000),
        _row("q2", "o2", "h2", "dps", now_ms - 1_000),
        _row("q3", "o3", "h3", "tank", now_ms - 2_000),
        _row("q4", "o4", "h4", "dps", now_ms - 500),
    ]

    roster = build_roster(mode="casual", roles=ROLES, queue=queue, now_ms=now_ms)

    assert roster.ready is True
    assert [e["id"] for e in roster.stale_entries] == ["q1"]
    assert len(roster.fresh_entries) == 3
    assert sorted(m.owner_id for m in roster.members) == ["o2", "o3", "o4"]
    assert roster.strategy == "casual"


def test_settings_supply_threshold_and_fallback(now_ms: int) -> None:
    queue = [
        _row("q1", "o1", "h1", "dps", now_ms - 40_000),
        _row("q2", "o2", "h2", "dps", now_ms - 1_000),
        _row("q3", "o3", "h3", "tank", now_ms - 2_000),
    ]
    settings = Settings(queue_stale_threshold_ms=60_000, safe_fallback=True)

    def _never_ready(**_: Any) -> MatchResult:
        return MatchResult(ready=False)

    roster = build_roster(
        mode="rank",
        roles=ROLES,
        queue=queue,
        now_ms=now_ms,
        strategies={"rank": _never_ready},
        settings=settings,
    )

    assert roster.stale_entries == []
    assert roster.used_fallback is True
    assert roster.ready is True


def test_roster_ready_is_recomputed_after_global_sanitize(now_ms: int) -> None:
    def _double_seat(**_: Any) -> MatchResult:
        seat = Member(owner_id="o1", hero_id="h1")
        return MatchResult(
            ready=True,
            total_slots=2,
            assignments=[
                Assignment(role="tank", slot_count=1, role_slots=[SlotResult(slot_index=0, members=[seat])], ready=True),
                Assignment(role="dps", slot_count=1, role_slots=[SlotResult(slot_index=0, members=[seat])], ready=True),
            ],
        )

    roster = build_roster(mode="rank", roles=ROLES, queue=[], now_ms=now_ms, strategies={"rank": _double_seat})

    assert roster.ready is False
    tank, dps = roster.assignments
    assert tank.ready is True
    assert dps.ready is False
    assert [r.reason for r in dps.removed_members] == ["duplicate_owner"]
    assert [m.owner_id for m in roster.members] == ["o1"]
