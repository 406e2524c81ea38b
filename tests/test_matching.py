from __future__ import annotations

from functools import partial
from typing import Any

from rankcore.matching import (
    build_exact_fit_assignments,
    casual_strategy,
    extract_viewer_assignment,
    matcher_key,
    normalize_roles,
    run_matching,
)
from rankcore.models import MatchError, MatchErrorType, MatchResult

ROLES = [{"name": "tank", "slot_count": 1}, {"name": "dps", "slot_count": 2}]


def _row(entry_id: str, owner: str, hero: str, role: str, joined_at: int) -> dict[str, Any]:
    return {"id": entry_id, "owner_id": owner, "hero_id": hero, "role": role, "joined_at": joined_at}


def _queue(now_ms: int, *, shared_hero: bool = False) -> list[dict[str, Any]]:
    return [
        _row("q1", "o1", "h1", "dps", now_ms),
        _row("q2", "o2", "h1" if shared_hero else "h2", "dps", now_ms + 1),
        _row("q3", "o3", "h3", "tank", now_ms + 2),
    ]


def _owners(result: MatchResult, role: str) -> list[str | None]:
    assignment = next(a for a in result.assignments if a.role == role)
    return [m.owner_id for m in assignment.members]


def test_exact_fit_fills_every_role_in_join_order(now_ms: int) -> None:
    result = build_exact_fit_assignments(ROLES, _queue(now_ms), now_ms=now_ms)

    assert result.ready is True
    assert result.total_slots == 3
    assert result.strategy == "exact_fit"
    assert _owners(result, "tank") == ["o3"]
    assert _owners(result, "dps") == ["o1", "o2"]
    assert all(a.ready for a in result.assignments)


def test_exact_fit_skips_entry_reusing_a_hero(now_ms: int) -> None:
    result = build_exact_fit_assignments(ROLES, _queue(now_ms, shared_hero=True), now_ms=now_ms)

    dps = next(a for a in result.assignments if a.role == "dps")
    assert [m.owner_id for m in dps.members] == ["o1"]
    assert dps.ready is False
    assert result.ready is False


def test_exact_fit_slots_are_indexed_and_members_keep_row_fields(now_ms: int) -> None:
    result = build_exact_fit_assignments(ROLES, _queue(now_ms), now_ms=now_ms)

    dps = next(a for a in result.assignments if a.role == "dps")
    assert dps.slot_indices == [0, 1]
    assert [slot.role for slot in dps.role_slots] == ["dps", "dps"]
    assert dps.members[0].model_extra["id"] == "q1"
    assert dps.joined_at_ms == now_ms


def test_exact_fit_falls_back_to_first_listed_hero(now_ms: int) -> None:
    queue = [{"id": "q1", "owner_id": "o1", "hero_ids": ["h9", "h8"], "role": "tank", "joined_at": now_ms}]

    result = build_exact_fit_assignments([{"name": "tank", "slot_count": 1}], queue, now_ms=now_ms)

    assert result.assignments[0].members[0].hero_id == "h9"


def test_exact_fit_is_deterministic_including_ties(now_ms: int) -> None:
    queue = [_row(f"q{i}", f"o{i}", f"h{i}", "dps", now_ms) for i in range(5)]
    roles = [{"name": "dps", "slot_count": 3}]

    first = build_exact_fit_assignments(roles, queue, now_ms=now_ms)
    second = build_exact_fit_assignments(roles, queue, now_ms=now_ms)

    assert first == second
    assert _owners(first, "dps") == ["o0", "o1", "o2"]


def test_exact_fit_ignores_rows_without_id_or_role(now_ms: int) -> None:
    queue = [
        {"owner_id": "o1", "hero_id": "h1", "role": "dps", "joined_at": now_ms},
        {"id": "q2", "owner_id": "o2", "hero_id": "h2", "joined_at": now_ms},
        "not-a-row",
        _row("q3", "o3", "h3", "dps", now_ms),
    ]

    result = build_exact_fit_assignments([{"name": "dps", "slot_count": 1}], queue, now_ms=now_ms)

    assert _owners(result, "dps") == ["o3"]


def test_no_active_slots_when_no_role_has_capacity() -> None:
    result = build_exact_fit_assignments([{"name": "tank", "slot_count": 0}, "dps"], [])

    assert result.ready is False
    assert result.error == MatchError(type=MatchErrorType.no_active_slots)
    assert result.total_slots == 0


def test_normalize_roles_truncates_counts_and_drops_invalid() -> None:
    roles = normalize_roles(
        [
            {"name": "tank", "slot_count": 1.9},
            {"name": "healer", "slotCount": "2"},
            {"role": "dps", "slots": 3},
            {"name": "tiny", "slot_count": 0.5},
            {"name": "  ", "slot_count": 2},
            {"name": "nan", "slot_count": float("nan")},
            "support",
        ]
    )

    assert [(r.name, r.slot_count) for r in roles] == [("tank", 1), ("healer", 2), ("dps", 3)]


def test_run_matching_unknown_mode_is_unsupported(now_ms: int) -> None:
    result = run_matching(mode="battle_royale", roles=ROLES, queue=_queue(now_ms))

    assert result.ready is False
    assert result.error is not None
    assert result.error.type == MatchErrorType.unsupported_mode


def test_run_matching_resolves_mode_aliases(now_ms: int) -> None:
    assert matcher_key(" Casual_Private ") == "casual"
    assert matcher_key("solo") == "rank_solo"

    result = run_matching(mode="casual_match", roles=ROLES, queue=_queue(now_ms))

    assert result.ready is True
    assert result.strategy == "casual"


def _never_ready(**_: Any) -> MatchResult:
    return MatchResult(ready=False, error=MatchError(type=MatchErrorType.insufficient_candidates, role="tank"))


def test_safe_fallback_replaces_unready_primary_with_ready_exact_fit(now_ms: int) -> None:
    strategies = {"rank": _never_ready}

    without = run_matching(mode="ranked", roles=ROLES, queue=_queue(now_ms), strategies=strategies)
    with_fallback = run_matching(
        mode="ranked", roles=ROLES, queue=_queue(now_ms), strategies=strategies, safe_fallback=True
    )

    assert without.ready is False
    assert without.strategy == "rank"
    assert without.used_fallback is False

    assert with_fallback.ready is True
    assert with_fallback.used_fallback is True
    assert with_fallback.strategy == "exact_fit"
    assert _owners(with_fallback, "dps") == ["o1", "o2"]


def test_safe_fallback_keeps_primary_when_fallback_is_not_ready_either(now_ms: int) -> None:
    result = run_matching(
        mode="rank",
        roles=ROLES,
        queue=_queue(now_ms, shared_hero=True),
        strategies={"rank": _never_ready},
        safe_fallback=True,
    )

    assert result.used_fallback is False
    assert result.error is not None
    assert result.error.type == MatchErrorType.insufficient_candidates


def test_casual_reports_role_without_candidates(now_ms: int) -> None:
    roles = [{"name": "tank", "slot_count": 1}, {"name": "healer", "slot_count": 1}]

    result = casual_strategy(roles=roles, queue=_queue(now_ms))

    assert result.ready is False
    assert result.error == MatchError(type=MatchErrorType.no_candidates, role="healer", missing=1)
    assert [a.role for a in result.assignments] == ["tank"]


def test_casual_reports_partial_role_fill(now_ms: int) -> None:
    result = casual_strategy(roles=[{"name": "tank", "slot_count": 2}], queue=_queue(now_ms))

    assert result.error == MatchError(type=MatchErrorType.insufficient_candidates, role="tank", missing=1)
    assert len(result.assignments) == 1
    assert result.assignments[0].ready is False


def test_casual_seats_each_queue_entry_once(now_ms: int) -> None:
    queue = [
        {"id": "t1", "owner_id": "o1", "role": "tank", "joined_at": now_ms},
        {"id": "t1", "owner_id": "o1", "role": "dps", "joined_at": now_ms},
    ]

    result = casual_strategy(roles=[{"name": "tank", "slot_count": 1}, {"name": "dps", "slot_count": 1}], queue=queue)

    assert result.error is not None
    assert result.error.type == MatchErrorType.no_candidates
    assert result.error.role == "dps"


def test_casual_orders_undated_rows_last(now_ms: int) -> None:
    queue = [
        {"id": "late", "owner_id": "o1", "role": "dps"},
        {"id": "early", "owner_id": "o2", "role": "dps", "queued_at": now_ms},
    ]

    result = casual_strategy(roles=[{"name": "dps", "slot_count": 1}], queue=queue)

    assert result.ready is True
    assert _owners(result, "dps") == ["o2"]


def test_extract_viewer_assignment_by_owner_or_hero(now_ms: int) -> None:
    result = build_exact_fit_assignments(ROLES, _queue(now_ms), now_ms=now_ms)

    by_owner = extract_viewer_assignment(result.assignments, viewer_id="o3")
    by_hero = extract_viewer_assignment(result.assignments, hero_id="h2")

    assert by_owner is not None and by_owner.role == "tank"
    assert by_hero is not None and by_hero.role == "dps"
    assert extract_viewer_assignment(result.assignments, viewer_id="nobody") is None
    assert extract_viewer_assignment(result.assignments) is None


def _party_queue(now_ms: int) -> list[dict[str, Any]]:
    return [
        {"id": "a", "owner_id": "oa", "role": "dps", "party_id": "p1", "joined_at": now_ms},
        {"id": "b", "owner_id": "ob", "role": "dps", "partyKey": "p1", "joined_at": now_ms + 1},
        {"id": "c", "owner_id": "oc", "role": "dps", "party_key": "p2", "joined_at": now_ms + 2},
        {"id": "d", "owner_id": "od", "role": "dps", "joined_at": now_ms + 3},
        {"id": "e", "owner_id": "oe", "role": "dps", "duo_party_id": 3, "joined_at": now_ms + 4},
        {"id": "f", "owner_id": "of", "role": "dps", "duo_party_id": 3, "joined_at": now_ms + 5},
    ]


def test_casual_party_mode_seats_whole_parties(now_ms: int) -> None:
    result = casual_strategy(roles=[{"name": "dps", "slot_count": 4}], queue=_party_queue(now_ms), party_size=2)

    assert result.ready is True
    assert _owners(result, "dps") == ["oa", "ob", "oe", "of"]
    [assignment] = result.assignments
    assert [(g.slot_indices, g.size) for g in assignment.groups] == [([0, 1], 2), ([2, 3], 2)]


def test_casual_party_mode_skips_parties_that_no_longer_fit(now_ms: int) -> None:
    result = casual_strategy(roles=[{"name": "dps", "slot_count": 3}], queue=_party_queue(now_ms), party_size=2)

    assert result.error == MatchError(type=MatchErrorType.insufficient_candidates, role="dps", missing=1)
    assert _owners(result, "dps") == ["oa", "ob"]


def test_duo_mode_uses_caller_registered_party_fill(now_ms: int) -> None:
    strategies = {"rank_duo": partial(casual_strategy, party_size=2)}

    result = run_matching(
        mode="duo",
        roles=[{"name": "dps", "slot_count": 2}],
        queue=_party_queue(now_ms),
        strategies=strategies,
    )

    assert result.ready is True
    assert result.strategy == "casual"
    assert _owners(result, "dps") == ["oa", "ob"]
    assert run_matching(mode="duo", roles=ROLES, queue=_party_queue(now_ms)).error == MatchError(
        type=MatchErrorType.unsupported_mode
    )
