from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from rankcore.status import normalize_owner_id

logger = logging.getLogger(__name__)


def _objects_only(value: Any) -> list[Any]:
    """Keep only object-like items; anything else is dropped without complaint."""

    if not isinstance(value, (list, tuple)):
        return []
    out: list[Any] = []
    for item in value:
        if isinstance(item, BaseModel):
            out.append(item)
        elif isinstance(item, Mapping):
            out.append(dict(item))
    return out


def _finite_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


def _ids(*names: str) -> AliasChoices:
    return AliasChoices(*names)


# ---------------------------------------------------------------------------
# Queue side
# ---------------------------------------------------------------------------


class QueueEntry(BaseModel):
    """A queue row as read from the store. Unknown columns are kept as extras."""

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    id: str | None = Field(default=None, validation_alias=_ids("id", "queue_id", "queueId", "ticket_id"))
    game_id: str | None = Field(default=None, validation_alias=_ids("game_id", "gameId"))
    mode: str = Field(default="", validation_alias=_ids("mode", "queue_mode"))
    owner_id: str | None = Field(default=None, validation_alias=_ids("owner_id", "ownerId", "ownerID"))
    hero_id: str | None = Field(default=None, validation_alias=_ids("hero_id", "heroId", "heroID"))
    hero_ids: list[str] = Field(default_factory=list, validation_alias=_ids("hero_ids", "heroIds"))
    role: str = Field(default="", validation_alias=_ids("role", "role_name", "roleName"))
    score: float | None = Field(default=None, validation_alias=_ids("score", "rating", "mmr"))

    # Raw values (ISO string, epoch ms or datetime); see `rankcore.timeutil.parse_timestamp_ms`.
    joined_at: Any = Field(default=None, validation_alias=_ids("joined_at", "joinedAt", "created_at", "createdAt"))
    updated_at: Any = Field(default=None, validation_alias=_ids("updated_at", "updatedAt"))

    status: str = Field(default="waiting", validation_alias=_ids("status", "queue_status"))

    @field_validator("id", "game_id", "owner_id", "hero_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str | None:
        return normalize_owner_id(value)

    @field_validator("hero_ids", mode="before")
    @classmethod
    def _normalize_hero_ids(cls, value: Any) -> list[str]:
        if not isinstance(value, (list, tuple)):
            return []
        return [hid for hid in (normalize_owner_id(v) for v in value) if hid]

    @field_validator("mode", "role", mode="before")
    @classmethod
    def _trim(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("status", mode="before")
    @classmethod
    def _status_or_waiting(cls, value: Any) -> str:
        text = "" if value is None else str(value).strip()
        return text or "waiting"

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, value: Any) -> float | None:
        return _finite_or_none(value)


class RoleSlotSpec(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(validation_alias=_ids("name", "role"))
    slot_count: int = Field(validation_alias=_ids("slot_count", "slotCount", "slots"), gt=0)


# ---------------------------------------------------------------------------
# Assignment side
# ---------------------------------------------------------------------------


class RemovalReason(StrEnum):
    duplicate_slot = "duplicate_slot"
    duplicate_slot_member = "duplicate_slot_member"
    duplicate_owner = "duplicate_owner"
    duplicate_hero = "duplicate_hero"


class Member(BaseModel):
    """A seated player. Every other column of the source row rides along as an extra."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    owner_id: str | None = Field(default=None, validation_alias=_ids("owner_id", "ownerId", "ownerID"))
    hero_id: str | None = Field(default=None, validation_alias=_ids("hero_id", "heroId", "heroID"))

    @field_validator("owner_id", "hero_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str | None:
        return normalize_owner_id(value)


class SlotResult(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    slot_index: int | None = Field(default=None, validation_alias=_ids("slot_index", "slotIndex"))
    slot_id: str | None = Field(default=None, validation_alias=_ids("slot_id", "slotId"))
    role: str | None = None
    members: list[Member] = Field(default_factory=list)

    # Single-occupant shape used by room slots; merged in front of `members` when sanitized.
    member: Member | None = None

    @field_validator("slot_index", mode="before")
    @classmethod
    def _slot_index(cls, value: Any) -> int | None:
        numeric = _finite_or_none(value)
        return int(numeric) if numeric is not None else None

    @field_validator("slot_id", mode="before")
    @classmethod
    def _slot_id(cls, value: Any) -> str | None:
        return normalize_owner_id(value)

    @field_validator("members", mode="before")
    @classmethod
    def _members(cls, value: Any) -> list[Any]:
        return _objects_only(value)

    @field_validator("member", mode="before")
    @classmethod
    def _member(cls, value: Any) -> Any:
        if isinstance(value, BaseModel):
            return value
        return dict(value) if isinstance(value, Mapping) else None

    @property
    def occupied(self) -> bool:
        return bool(self.members)


class Group(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    slot_indices: list[int] = Field(default_factory=list, validation_alias=_ids("slot_indices", "slotIndices"))
    size: int = 0

    @field_validator("slot_indices", mode="before")
    @classmethod
    def _indices(cls, value: Any) -> list[int]:
        if not isinstance(value, (list, tuple)):
            return []
        return [int(v) for v in (_finite_or_none(x) for x in value) if v is not None]


class RemovedMember(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    owner_id: str | None = Field(default=None, validation_alias=_ids("owner_id", "ownerId"))
    hero_id: str | None = Field(default=None, validation_alias=_ids("hero_id", "heroId"))
    role: str | None = None
    slot_index: int | None = Field(default=None, validation_alias=_ids("slot_index", "slotIndex"))
    reason: str = "duplicate"
    slot_key: str | None = Field(default=None, validation_alias=_ids("slot_key", "slotKey"))

    @field_validator("owner_id", "hero_id", "role", "slot_key", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str | None:
        return normalize_owner_id(value)

    @field_validator("slot_index", mode="before")
    @classmethod
    def _slot_index(cls, value: Any) -> int | None:
        numeric = _finite_or_none(value)
        return int(numeric) if numeric is not None else None

    @field_validator("reason", mode="before")
    @classmethod
    def _reason(cls, value: Any) -> str:
        return normalize_owner_id(value) or "duplicate"


def _removed_entries(value: Any) -> list[Any]:
    """Validate removal records one by one so a bad record never sinks its neighbours."""

    out: list[Any] = []
    for item in _objects_only(value):
        try:
            out.append(RemovedMember.model_validate(item))
        except ValidationError:
            logger.debug("Skipping malformed removed member: %r", item)
    return out


class Assignment(BaseModel):
    """Resolved members for one role.

    `members` is always the flattened union of `role_slots[*].members`.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    role: str = ""
    slot_count: int = Field(default=0, validation_alias=_ids("slot_count", "slotCount", "slots"))
    role_slots: list[SlotResult] = Field(default_factory=list, validation_alias=_ids("role_slots", "roleSlots"))
    members: list[Member] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)
    ready: bool = False
    removed_members: list[RemovedMember] = Field(
        default_factory=list, validation_alias=_ids("removed_members", "removedMembers")
    )
    filled_slots: int | None = Field(default=None, validation_alias=_ids("filled_slots", "filledSlots"))
    missing_slots: int | None = Field(default=None, validation_alias=_ids("missing_slots", "missingSlots"))
    joined_at_ms: int | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("slot_count", mode="before")
    @classmethod
    def _slot_count(cls, value: Any) -> int:
        if isinstance(value, (list, tuple)):
            return len(value)
        numeric = _finite_or_none(value)
        return max(0, int(numeric)) if numeric is not None else 0

    @field_validator("role_slots", "members", "groups", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[Any]:
        return _objects_only(value)

    @field_validator("removed_members", mode="before")
    @classmethod
    def _removed(cls, value: Any) -> list[Any]:
        return _removed_entries(value)

    @property
    def slot_indices(self) -> list[int]:
        return [slot.slot_index for slot in self.role_slots if slot.slot_index is not None]


class Room(BaseModel):
    """Lobby room as staged for a match: a flat slot list rather than per-role assignments."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    label: str | None = None
    role: str | None = None
    slots: list[SlotResult] = Field(default_factory=list)
    members: list[Member] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)
    removed_members: list[RemovedMember] = Field(
        default_factory=list, validation_alias=_ids("removed_members", "removedMembers")
    )
    filled_slots: int | None = Field(default=None, validation_alias=_ids("filled_slots", "filledSlots"))
    missing_slots: int | None = Field(default=None, validation_alias=_ids("missing_slots", "missingSlots"))

    @field_validator("slots", "members", "groups", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[Any]:
        return _objects_only(value)

    @field_validator("removed_members", mode="before")
    @classmethod
    def _removed(cls, value: Any) -> list[Any]:
        return _removed_entries(value)


class MatchErrorType(StrEnum):
    unsupported_mode = "unsupported_mode"
    no_active_slots = "no_active_slots"
    no_candidates = "no_candidates"
    insufficient_candidates = "insufficient_candidates"


class MatchError(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: MatchErrorType
    role: str | None = None
    missing: int | None = None


class MatchResult(BaseModel):
    ready: bool = False
    assignments: list[Assignment] = Field(default_factory=list)
    total_slots: int = 0
    error: MatchError | None = None
    strategy: str | None = None
    used_fallback: bool = False


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------


class TimelineEvent(BaseModel):
    """Canonical audit record. Build these through `rankcore.timeline.normalize_timeline_event`."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    type: str
    owner_id: str | None = None
    strike: int | float | None = None
    remaining: int | float | None = None
    limit: int | float | None = None
    reason: str | None = None
    turn: int | float | None = None
    timestamp: int
    status: str | None = None
    context: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None

    # Only set on events read back from persisted rows.
    session_id: str | None = None
    game_id: str | None = None


class TimelineEventRow(BaseModel):
    session_id: str | None = None
    game_id: str | None = None
    event_id: str | None = None
    event_type: str
    owner_id: str | None = None
    reason: str | None = None
    strike: int | float | None = None
    remaining: int | float | None = None
    limit: int | float | None = None
    status: str | None = None
    turn: int | float | None = None
    event_timestamp: str
    context: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Turn tracking
# ---------------------------------------------------------------------------


class OwnerTurnSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner_id: str
    status: str
    inactivity_strikes: int = 0
    last_participation_turn: int | float = 0
    last_participation_type: str | None = None
    last_warning_turn: int | float = 0
    last_warning_reason: str | None = None
    proxied_at_turn: int | float | None = None
    managed: bool = False


class TurnWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner_id: str
    strike: int
    remaining: int
    limit: int
    reason: str | None = None


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    turn: int | float = 0
    pending_owners: list[str] = Field(default_factory=list)
    entries: list[OwnerTurnSnapshot] = Field(default_factory=list)
    warning_limit: int
    events: list[TimelineEvent] = Field(default_factory=list)


class CompleteTurnResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    snapshot: SessionSnapshot
    warnings: list[TurnWarning] = Field(default_factory=list)
    escalated: list[str] = Field(default_factory=list)
    events: list[TimelineEvent] = Field(default_factory=list)
