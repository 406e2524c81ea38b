from __future__ import annotations

import logging
import math
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from rankcore.models import (
    Assignment,
    MatchError,
    MatchErrorType,
    MatchResult,
    Group,
    Member,
    QueueEntry,
    RoleSlotSpec,
    SlotResult,
)
from rankcore.timeutil import now_ms as _now_ms
from rankcore.timeutil import parse_timestamp_ms

logger = logging.getLogger(__name__)


class MatchingStrategy(Protocol):
    """Assigns queue entries to role slots for one mode."""

    def __call__(self, *, roles: Iterable[Any], queue: Iterable[Any]) -> MatchResult: ...


@dataclass(frozen=True, slots=True)
class Candidate:
    id: str
    role: str
    owner_id: str | None
    hero_id: str | None
    joined_at: int
    group_key: str
    member: Member
    party_key: str | None = None


@dataclass(frozen=True, slots=True)
class Party:
    """Candidates that must be seated together; a solo queue entry is a party of one."""

    group_key: str
    joined_at: int
    members: list[Candidate]


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _slot_count(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric) or numeric <= 0:
        return None
    count = math.trunc(numeric)
    return count if count > 0 else None


def normalize_roles(raw_roles: Iterable[Any] | None) -> list[RoleSlotSpec]:
    """Keep roles with a non-empty name and a positive slot count; drop the rest."""

    out: list[RoleSlotSpec] = []
    for raw in raw_roles or []:
        if isinstance(raw, RoleSlotSpec):
            out.append(raw)
            continue
        if not isinstance(raw, Mapping):
            continue
        name = raw.get("name") or raw.get("role")
        count = _slot_count(raw.get("slot_count", raw.get("slotCount", raw.get("slots"))))
        if name is None or count is None:
            continue
        text = str(name).strip()
        if text:
            out.append(RoleSlotSpec(name=text, slot_count=count))
    return out


def _row_payload(row: Any) -> dict[str, Any] | None:
    if isinstance(row, BaseModel):
        return row.model_dump()
    if isinstance(row, Mapping):
        return dict(row)
    return None


def _as_queue_entry(row: Any) -> QueueEntry | None:
    if isinstance(row, QueueEntry):
        return row
    payload = _row_payload(row)
    if payload is None:
        return None
    try:
        return QueueEntry.model_validate(payload)
    except ValidationError:
        logger.debug("Skipping malformed queue row: %r", payload)
        return None


def _member_for(entry: QueueEntry, payload: dict[str, Any], hero_id: str | None) -> Member:
    member = Member.model_validate(payload)
    updates: dict[str, Any] = {}
    if member.owner_id is None and entry.owner_id is not None:
        updates["owner_id"] = entry.owner_id
    if member.hero_id is None and hero_id is not None:
        updates["hero_id"] = hero_id
    return member.model_copy(update=updates) if updates else member


def _exact_fit_candidates(queue: Iterable[Any] | None, *, now_ms: int) -> list[Candidate]:
    candidates: list[Candidate] = []
    for row in queue or []:
        entry = _as_queue_entry(row)
        if entry is None or not entry.id or not entry.role:
            continue
        hero_id = entry.hero_id or (entry.hero_ids[0] if entry.hero_ids else None)
        joined_at = parse_timestamp_ms(entry.joined_at)
        payload = _row_payload(row) or {}
        candidates.append(
            Candidate(
                id=entry.id,
                role=entry.role,
                owner_id=entry.owner_id,
                hero_id=hero_id,
                joined_at=now_ms if joined_at is None else joined_at,
                group_key=f"id:{entry.id}",
                member=_member_for(entry, payload, hero_id),
            )
        )
    # sorted() is stable: equal join times keep their input order.
    return sorted(candidates, key=lambda c: c.joined_at)


def _group_by_role(candidates: Iterable[Candidate]) -> dict[str, list[Candidate]]:
    by_role: dict[str, list[Candidate]] = {}
    for candidate in candidates:
        by_role.setdefault(candidate.role, []).append(candidate)
    return by_role


def _build_assignment(
    role: RoleSlotSpec,
    picked: list[Candidate],
    groups: list[Group] | None = None,
) -> Assignment:
    return Assignment(
        role=role.name,
        slot_count=role.slot_count,
        role_slots=[
            SlotResult(slot_index=index, role=role.name, members=[candidate.member])
            for index, candidate in enumerate(picked)
        ],
        members=[candidate.member for candidate in picked],
        groups=groups or [],
        ready=len(picked) >= role.slot_count,
        joined_at_ms=picked[0].joined_at if picked else None,
    )


# ---------------------------------------------------------------------------
# Exact-fit fallback
# ---------------------------------------------------------------------------


def build_exact_fit_assignments(
    roles: Iterable[Any] | None,
    queue: Iterable[Any] | None,
    *,
    now_ms: int | None = None,
) -> MatchResult:
    """Score-agnostic fill: earliest joiners first, each hero used at most once overall.

    Deterministic for a given input, including the order of equal join times.
    """

    normalized_roles = normalize_roles(roles)
    total_slots = sum(role.slot_count for role in normalized_roles)
    if total_slots == 0:
        return MatchResult(
            ready=False,
            total_slots=0,
            error=MatchError(type=MatchErrorType.no_active_slots),
            strategy="exact_fit",
        )

    by_role = _group_by_role(_exact_fit_candidates(queue, now_ms=_now_ms() if now_ms is None else now_ms))
    used_hero_ids: set[str] = set()
    assignments: list[Assignment] = []

    for role in normalized_roles:
        picked: list[Candidate] = []
        for candidate in by_role.get(role.name, []):
            if len(picked) >= role.slot_count:
                break
            if candidate.hero_id and candidate.hero_id in used_hero_ids:
                continue
            picked.append(candidate)
            if candidate.hero_id:
                used_hero_ids.add(candidate.hero_id)
        assignments.append(_build_assignment(role, picked))

    return MatchResult(
        ready=all(a.ready for a in assignments),
        assignments=assignments,
        total_slots=total_slots,
        strategy="exact_fit",
    )


def exact_fit_strategy(*, roles: Iterable[Any], queue: Iterable[Any]) -> MatchResult:
    return build_exact_fit_assignments(roles, queue)


# ---------------------------------------------------------------------------
# Casual (first come, first seated)
# ---------------------------------------------------------------------------

_CASUAL_TIMESTAMP_KEYS = ("queue_joined_at", "joined_at", "queued_at", "created_at", "updated_at")
_PARTY_KEYS = ("party_id", "partyId", "party_key", "partyKey", "duo_party_id")


def _party_key(payload: Mapping[str, Any]) -> str | None:
    for key in _PARTY_KEYS:
        value = payload.get(key)
        if value is not None:
            return str(value)
    return None


def _casual_candidates(queue: Iterable[Any] | None) -> list[Candidate]:
    candidates: list[Candidate] = []
    for position, row in enumerate(queue or []):
        payload = _row_payload(row)
        if payload is None:
            continue
        entry = _as_queue_entry(row)
        if entry is None or not entry.role:
            continue

        joined_at = sys.maxsize
        for key in _CASUAL_TIMESTAMP_KEYS:
            parsed = parse_timestamp_ms(payload.get(key))
            if parsed is not None:
                joined_at = parsed
                break

        if entry.id:
            group_key = f"id:{entry.id}"
        elif entry.owner_id:
            group_key = f"owner:{entry.owner_id}"
        else:
            group_key = f"row:{position}"

        candidates.append(
            Candidate(
                id=entry.id or group_key,
                role=entry.role,
                owner_id=entry.owner_id,
                hero_id=entry.hero_id,
                joined_at=joined_at,
                group_key=group_key,
                member=_member_for(entry, payload, entry.hero_id),
                party_key=_party_key(payload),
            )
        )
    return sorted(candidates, key=lambda c: c.joined_at)


def _casual_parties(candidates: list[Candidate], party_size: int) -> dict[str, list[Party]]:
    """Bucket candidates per role. With `party_size > 1` only full parties sharing a party key count."""

    by_role: dict[str, list[Party]] = {}
    if party_size <= 1:
        for candidate in candidates:
            by_role.setdefault(candidate.role, []).append(
                Party(group_key=candidate.group_key, joined_at=candidate.joined_at, members=[candidate])
            )
        return by_role

    by_party: dict[tuple[str, str], list[Candidate]] = {}
    for candidate in candidates:
        if candidate.party_key:
            by_party.setdefault((candidate.role, candidate.party_key), []).append(candidate)

    for (role, party_key), members in by_party.items():
        # Leftover members that do not complete a party stay queued.
        for start in range(0, len(members) - party_size + 1, party_size):
            chunk = members[start : start + party_size]
            by_role.setdefault(role, []).append(
                Party(group_key=f"{party_key}#{start}", joined_at=chunk[0].joined_at, members=chunk)
            )

    for parties in by_role.values():
        parties.sort(key=lambda p: p.joined_at)
    return by_role


def _party_groups(picks: list[Party]) -> list[Group]:
    groups: list[Group] = []
    cursor = 0
    for party in picks:
        size = len(party.members)
        groups.append(Group(slot_indices=list(range(cursor, cursor + size)), size=size))
        cursor += size
    return groups


def casual_strategy(*, roles: Iterable[Any], queue: Iterable[Any], party_size: int = 1) -> MatchResult:
    """Seat the earliest joiners per role, whole parties at a time.

    A party that no longer fits the remaining slots of a role is skipped, not split.
    """

    party_size = max(1, int(party_size))
    normalized_roles = normalize_roles(roles)
    total_slots = sum(role.slot_count for role in normalized_roles)
    if total_slots == 0:
        return MatchResult(
            ready=False,
            total_slots=0,
            error=MatchError(type=MatchErrorType.no_active_slots),
            strategy="casual",
        )

    by_role = _casual_parties(_casual_candidates(queue), party_size)
    used_group_keys: set[str] = set()
    assignments: list[Assignment] = []

    for role in normalized_roles:
        available = [p for p in by_role.get(role.name, []) if p.group_key not in used_group_keys]
        if not available:
            return MatchResult(
                ready=False,
                assignments=assignments,
                total_slots=total_slots,
                error=MatchError(type=MatchErrorType.no_candidates, role=role.name, missing=role.slot_count),
                strategy="casual",
            )

        picks: list[Party] = []
        remaining = role.slot_count
        for party in available:
            if len(party.members) > remaining:
                continue
            picks.append(party)
            remaining -= len(party.members)
            if remaining == 0:
                break

        picked = [candidate for party in picks for candidate in party.members]
        assignment = _build_assignment(role, picked, _party_groups(picks) if party_size > 1 else None)
        if remaining:
            return MatchResult(
                ready=False,
                assignments=[*assignments, assignment],
                total_slots=total_slots,
                error=MatchError(
                    type=MatchErrorType.insufficient_candidates,
                    role=role.name,
                    missing=remaining,
                ),
                strategy="casual",
            )

        assignments.append(assignment)
        used_group_keys.update(p.group_key for p in picks)

    assigned = sum(len(a.members) for a in assignments)
    return MatchResult(
        ready=assigned >= total_slots,
        assignments=assignments,
        total_slots=total_slots,
        strategy="casual",
    )
