"""Repair duplicated or malformed assignment data.

Every function here is a pure reducer: it never mutates its input, never raises on
bad entries (they are skipped), and running it twice gives the same result as
running it once. Whatever gets dropped is recorded in `removed_members`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from rankcore.models import Assignment, Group, Member, RemovalReason, RemovedMember, Room, SlotResult
from rankcore.status import normalize_owner_id

logger = logging.getLogger(__name__)


def _coerce(item: Any, model: type[BaseModel]) -> Any:
    if isinstance(item, model):
        return item
    if not isinstance(item, Mapping):
        return None
    try:
        return model.model_validate(dict(item))
    except ValidationError:
        logger.debug("Skipping malformed %s: %r", model.__name__, item)
        return None


def _slot_key(slot: SlotResult, ordinal: int) -> str:
    if slot.slot_id:
        return f"id:{slot.slot_id}"
    if slot.slot_index is not None:
        return f"slot:{slot.slot_index}"
    return f"index:{ordinal}"


def _removed(member: Member, slot: SlotResult, reason: RemovalReason, slot_key: str) -> RemovedMember:
    return RemovedMember(
        owner_id=member.owner_id,
        hero_id=member.hero_id,
        role=normalize_owner_id(slot.role),
        slot_index=slot.slot_index,
        reason=reason.value,
        slot_key=slot_key,
    )


def _dedupe_groups(groups: Iterable[Group]) -> list[Group]:
    out: list[Group] = []
    seen: set[frozenset[int]] = set()
    for group in groups:
        indices = list(dict.fromkeys(group.slot_indices))
        key = frozenset(indices)
        if key in seen:
            continue
        seen.add(key)
        out.append(group.model_copy(update={"slot_indices": indices, "size": len(indices) or group.size or 0}))
    return out


def _sanitize_one(assignment: Assignment, *, owner_seen: set[str], hero_seen: set[str]) -> Assignment:
    """Reduce one assignment. `owner_seen`/`hero_seen` are shared when deduping a whole set."""

    slot_seen: set[str] = set()
    slots: list[SlotResult] = []
    removed: list[RemovedMember] = []

    for ordinal, slot in enumerate(assignment.role_slots):
        slot_key = _slot_key(slot, ordinal)
        if slot_key in slot_seen:
            removed.extend(_removed(m, slot, RemovalReason.duplicate_slot, slot_key) for m in slot.members)
            continue
        slot_seen.add(slot_key)

        candidates = list(slot.members)
        if slot.member is not None and slot.member not in candidates:
            candidates.insert(0, slot.member)

        seen_in_slot: set[str] = set()
        kept: list[Member] = []
        for member in candidates:
            member_key = member.owner_id or member.hero_id or f"{slot_key}:member:{len(seen_in_slot)}"
            if member_key in seen_in_slot:
                removed.append(_removed(member, slot, RemovalReason.duplicate_slot_member, slot_key))
                continue
            seen_in_slot.add(member_key)

            if member.owner_id and member.owner_id in owner_seen:
                removed.append(_removed(member, slot, RemovalReason.duplicate_owner, slot_key))
                continue
            if member.hero_id and member.hero_id in hero_seen:
                removed.append(_removed(member, slot, RemovalReason.duplicate_hero, slot_key))
                continue

            if member.owner_id:
                owner_seen.add(member.owner_id)
            if member.hero_id:
                hero_seen.add(member.hero_id)
            kept.append(member.model_copy())

        slots.append(slot.model_copy(update={"members": kept, "member": kept[0] if kept else None}))

    members = [member for slot in slots for member in slot.members]
    filled = sum(1 for slot in slots if slot.occupied)

    if removed:
        logger.debug(
            "Sanitized assignment role=%r: removed %s",
            assignment.role,
            [(r.owner_id, r.hero_id, r.reason) for r in removed],
        )

    return assignment.model_copy(
        update={
            "role_slots": slots,
            "members": members,
            "filled_slots": filled,
            "missing_slots": len(slots) - filled,
            "groups": _dedupe_groups(assignment.groups),
            "removed_members": [*assignment.removed_members, *removed],
        }
    )


def _assignments(items: Iterable[Any] | None) -> list[Assignment]:
    out: list[Assignment] = []
    for item in items or []:
        coerced = _coerce(item, Assignment)
        if coerced is not None:
            out.append(coerced)
    return out


def sanitize_assignments(assignments: Iterable[Any] | None) -> list[Assignment]:
    """Per-assignment dedupe of slots, slot members, owners and heroes.

    First occurrence in slot-then-member order wins.
    """

    return [
        _sanitize_one(assignment, owner_seen=set(), hero_seen=set())
        for assignment in _assignments(assignments)
    ]


def sanitize_assignment_set(assignments: Iterable[Any] | None) -> list[Assignment]:
    """Like `sanitize_assignments`, but owners and heroes must be unique across the whole set.

    Earlier assignments win; losers record `duplicate_owner` / `duplicate_hero`.
    """

    owner_seen: set[str] = set()
    hero_seen: set[str] = set()
    return [
        _sanitize_one(assignment, owner_seen=owner_seen, hero_seen=hero_seen)
        for assignment in _assignments(assignments)
    ]


def flatten_assignment_members(assignments: Iterable[Any] | None) -> list[Member]:
    """Every seated member across the set, each owner and hero at most once."""

    return [member for assignment in sanitize_assignment_set(assignments) for member in assignment.members]


def _merge_removed(*lists: Iterable[RemovedMember]) -> list[RemovedMember]:
    merged: list[RemovedMember] = []
    seen: set[tuple[Any, ...]] = set()
    for entries in lists:
        for entry in entries:
            key = (entry.owner_id, entry.hero_id, entry.role, entry.slot_index, entry.reason)
            if key in seen:
                continue
            seen.add(key)
            merged.append(entry)
    return merged


def sanitize_rooms(rooms: Iterable[Any] | None) -> list[Room]:
    """Apply the assignment reducer to lobby rooms (flat slot lists)."""

    out: list[Room] = []
    for index, item in enumerate(rooms or []):
        room = _coerce(item, Room)
        if room is None:
            continue

        synthetic = Assignment(
            role=room.label or room.role or f"room-{index + 1}",
            role_slots=room.slots,
            members=room.members,
            groups=room.groups,
            removed_members=room.removed_members,
        )
        sanitized = _sanitize_one(synthetic, owner_seen=set(), hero_seen=set())

        out.append(
            room.model_copy(
                update={
                    "slots": sanitized.role_slots,
                    "members": sanitized.members,
                    "filled_slots": sanitized.filled_slots,
                    "missing_slots": sanitized.missing_slots,
                    "groups": sanitized.groups,
                    "removed_members": _merge_removed(room.removed_members, sanitized.removed_members),
                }
            )
        )
    return out
