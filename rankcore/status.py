from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Any


class ParticipantStatus(StrEnum):
    active = "active"
    proxy = "proxy"
    defeated = "defeated"
    spectating = "spectating"
    pending = "pending"
    unknown = "unknown"


# Free-form status strings seen from clients and the participant table, including
# the localized labels the Korean UI writes.
_STATUS_VOCABULARY: dict[ParticipantStatus, frozenset[str]] = {
    ParticipantStatus.defeated: frozenset({"defeated", "lost", "dead", "eliminated", "retired", "패배", "탈락"}),
    ParticipantStatus.spectating: frozenset({"spectator", "spectating", "observer", "관전"}),
    ParticipantStatus.proxy: frozenset({"proxy", "stand-in", "ai", "bot", "대역"}),
    ParticipantStatus.active: frozenset({"active", "playing", "alive", "참여", "in_battle"}),
    ParticipantStatus.pending: frozenset({"pending", "waiting", "대기"}),
}


def normalize_owner_id(value: Any) -> str | None:
    """Trimmed string id, or None when empty. Also used for hero and slot ids."""

    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_timeline_status(value: Any) -> str | None:
    """Map a free-form status onto the shared vocabulary.

    Unrecognized labels pass through lowercased; empty input gives None.
    """

    if not value:
        return None
    text = str(value).strip().lower()
    if not text:
        return None
    for status, labels in _STATUS_VOCABULARY.items():
        if text in labels:
            return status.value
    return text


def normalize_status(value: Any) -> str:
    """Like `normalize_timeline_status`, but empty input is `unknown`."""

    return normalize_timeline_status(value) or ParticipantStatus.unknown.value


def owner_id_of(participant: Any) -> str | None:
    """Resolve the owner id of a participant-like mapping or object."""

    if participant is None:
        return None
    if isinstance(participant, Mapping):
        owner = participant.get("owner")
        candidates = (
            participant.get("owner_id"),
            participant.get("ownerId"),
            participant.get("ownerID"),
            owner.get("id") if isinstance(owner, Mapping) else None,
        )
    else:
        candidates = (getattr(participant, "owner_id", None),)
    for candidate in candidates:
        if candidate is not None:
            return normalize_owner_id(candidate)
    return None
