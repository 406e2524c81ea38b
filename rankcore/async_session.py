"""Drop-in tracking for asynchronous (and realtime) sessions.

`DropInQueue` watches successive participant lists and works out who took over which
role seat. `AsyncSessionManager` turns those arrivals into `drop_in_joined` timeline
events with a reason explaining why the seat changed hands.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from rankcore.config import DEFAULT_EVENT_LOG_SIZE
from rankcore.models import TimelineEvent
from rankcore.status import ParticipantStatus, normalize_owner_id, normalize_timeline_status, owner_id_of
from rankcore.timeline import normalize_timeline_event
from rankcore.timeutil import coerce_number, now_ms

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "unassigned"
REALTIME = "realtime"
ASYNC = "async"

_DEPARTURE_CAUSES = {
    ParticipantStatus.defeated.value: "role_defeated",
    ParticipantStatus.spectating.value: "role_spectating",
    ParticipantStatus.proxy.value: "async_proxy_rotation",
    ParticipantStatus.pending.value: "async_pending",
}


def _get(participant: Any, *keys: str) -> Any:
    for key in keys:
        if isinstance(participant, Mapping):
            value = participant.get(key)
        else:
            value = getattr(participant, key, None)
        if value is not None:
            return value
    return None


def _normalize_role(role: Any) -> str:
    if not isinstance(role, str):
        return DEFAULT_ROLE
    return role.strip() or DEFAULT_ROLE


def _hero_name(participant: Any) -> str:
    hero = _get(participant, "hero")
    name = _get(hero, "name") if hero is not None else None
    if name is None:
        name = _get(participant, "hero_name", "heroName", "display_name", "name")
    return "" if name is None else str(name)


def departure_cause(status: Any) -> str:
    return _DEPARTURE_CAUSES.get(normalize_timeline_status(status) or "", "async_rotation")


@dataclass(frozen=True, slots=True)
class ParticipantInfo:
    key: str
    owner_id: str | None
    role: str
    hero_name: str
    status: str
    participant_id: Any
    slot_index: int

    @classmethod
    def from_participant(cls, participant: Any, index: int, *, mode: str = ASYNC) -> ParticipantInfo:
        role = _normalize_role(_get(participant, "role"))
        key_source = _get(participant, "id", "hero_id", "heroId", "uuid")
        status = normalize_timeline_status(_get(participant, "status"))
        return cls(
            key=str(key_source) if key_source is not None else f"{role}:{index}",
            owner_id=owner_id_of(participant),
            role=role,
            hero_name=_hero_name(participant),
            status=status or (ParticipantStatus.active.value if mode == REALTIME else ParticipantStatus.proxy.value),
            participant_id=_get(participant, "id", "hero_id"),
            slot_index=index,
        )


@dataclass(frozen=True, slots=True)
class ArrivalStats:
    arrival_order: int
    replacements: int
    queue_depth: int
    last_departure_cause: str | None


@dataclass(frozen=True, slots=True)
class DropInArrival:
    info: ParticipantInfo
    turn: int | float
    timestamp: int
    replaced: ParticipantInfo | None
    stats: ArrivalStats


@dataclass(frozen=True, slots=True)
class DropInDeparture:
    info: ParticipantInfo
    turn: int | float
    timestamp: int
    cause: str


@dataclass(slots=True)
class RoleSeatStats:
    role: str
    total_arrivals: int = 0
    replacements: int = 0
    active_key: str | None = None
    active_info: ParticipantInfo | None = None
    last_arrival_turn: int | float | None = None
    last_departure_turn: int | float | None = None
    last_departure_cause: str | None = None


@dataclass(frozen=True, slots=True)
class RoleSnapshot:
    role: str
    active_owner_id: str | None
    active_hero_name: str | None
    active_participant_id: Any
    active_slot_index: int | None
    replacements: int
    total_arrivals: int
    last_arrival_turn: int | float | None
    last_departure_turn: int | float | None
    last_departure_cause: str | None


@dataclass(frozen=True, slots=True)
class DropInSnapshot:
    turn: int | float | None
    roles: list[RoleSnapshot] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class QueueResult:
    arrivals: list[DropInArrival] = field(default_factory=list)
    departures: list[DropInDeparture] = field(default_factory=list)
    snapshot: DropInSnapshot | None = None
    # Matching metadata to attach to the generated events, when the caller has it.
    matching: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class AsyncProcessResult:
    events: list[TimelineEvent]
    snapshot: DropInSnapshot | None


class QueueService(Protocol):
    def sync_participants(
        self, participants: Iterable[Any] | None, *, turn_number: Any = None, mode: str = ASYNC
    ) -> QueueResult: ...

    def reset(self) -> DropInSnapshot: ...


class DropInQueue:
    """Per-role seat occupancy across successive participant lists.

    The first sync only records who is seated; it reports no arrivals or departures.
    """

    def __init__(self) -> None:
        self._initialized = False
        self._participants: dict[str, ParticipantInfo] = {}
        self._role_stats: dict[str, RoleSeatStats] = {}

    def _stats_for(self, role: str) -> RoleSeatStats:
        key = _normalize_role(role)
        stats = self._role_stats.get(key)
        if stats is None:
            stats = self._role_stats[key] = RoleSeatStats(role=key)
        return stats

    def get_snapshot(self, *, turn: Any = None) -> DropInSnapshot:
        roles = [
            RoleSnapshot(
                role=stats.role,
                active_owner_id=stats.active_info.owner_id if stats.active_info else None,
                active_hero_name=(stats.active_info.hero_name or None) if stats.active_info else None,
                active_participant_id=stats.active_info.participant_id if stats.active_info else None,
                active_slot_index=stats.active_info.slot_index if stats.active_info else None,
                replacements=stats.replacements,
                total_arrivals=stats.total_arrivals,
                last_arrival_turn=stats.last_arrival_turn,
                last_departure_turn=stats.last_departure_turn,
                last_departure_cause=stats.last_departure_cause,
            )
            for stats in sorted(self._role_stats.values(), key=lambda s: s.role)
        ]
        return DropInSnapshot(turn=coerce_number(turn), roles=roles)

    def sync_participants(
        self,
        participants: Iterable[Any] | None,
        *,
        turn_number: Any = None,
        mode: str = ASYNC,
    ) -> QueueResult:
        turn = coerce_number(turn_number)
        if turn is None:
            turn = 0
        timestamp = now_ms()

        current: dict[str, ParticipantInfo] = {}
        arrivals: list[DropInArrival] = []
        departures: list[DropInDeparture] = []
        handled: set[str] = set()

        for index, participant in enumerate(participants or []):
            info = ParticipantInfo.from_participant(participant, index, mode=mode)
            current[info.key] = info
            stats = self._stats_for(info.role)

            if info.key in self._participants:
                stats.active_key = info.key
                stats.active_info = info
                handled.add(info.key)
                continue

            replaced = stats.active_info if stats.active_key and stats.active_key != info.key else None
            if replaced is not None:
                handled.add(replaced.key)
                cause = departure_cause(replaced.status)
                departures.append(DropInDeparture(info=replaced, turn=turn, timestamp=timestamp, cause=cause))
                stats.replacements += 1
                stats.last_departure_turn = turn
                stats.last_departure_cause = cause

            stats.total_arrivals += 1
            stats.active_key = info.key
            stats.active_info = info
            stats.last_arrival_turn = turn

            arrivals.append(
                DropInArrival(
                    info=info,
                    turn=turn,
                    timestamp=timestamp,
                    replaced=replaced,
                    stats=ArrivalStats(
                        arrival_order=stats.total_arrivals,
                        replacements=stats.replacements,
                        queue_depth=stats.replacements,
                        last_departure_cause=stats.last_departure_cause,
                    ),
                )
            )

        for key, info in self._participants.items():
            if key in current or key in handled:
                continue
            stats = self._stats_for(info.role)
            if stats.active_key == key:
                stats.active_key = None
                stats.active_info = None
            cause = departure_cause(info.status)
            stats.last_departure_turn = turn
            stats.last_departure_cause = cause
            departures.append(DropInDeparture(info=info, turn=turn, timestamp=timestamp, cause=cause))

        self._participants = current
        snapshot = self.get_snapshot(turn=turn)

        if not self._initialized:
            self._initialized = True
            return QueueResult(snapshot=snapshot)
        return QueueResult(arrivals=arrivals, departures=departures, snapshot=snapshot)

    def reset(self) -> DropInSnapshot:
        self._participants = {}
        self._role_stats.clear()
        self._initialized = False
        return self.get_snapshot()


def infer_arrival_reason(arrival: DropInArrival, *, mode: str = ASYNC) -> str:
    """Why a seat changed hands, preferring the departure cause the queue already recorded."""

    if arrival.stats.last_departure_cause:
        return arrival.stats.last_departure_cause

    realtime = mode == REALTIME
    if arrival.replaced is None:
        return "realtime_joined" if realtime else "async_queue_entry"

    status = normalize_timeline_status(arrival.replaced.status)
    if status == ParticipantStatus.defeated:
        return "role_defeated"
    if status == ParticipantStatus.spectating:
        return "role_spectating"
    if status == ParticipantStatus.proxy:
        return "realtime_proxy" if realtime else "async_proxy_rotation"
    if status == ParticipantStatus.pending:
        return "async_pending"
    return "realtime_drop_in" if realtime else "async_substitution"


class AsyncSessionManager:
    def __init__(
        self,
        queue_service: QueueService | None = None,
        *,
        mode: str = ASYNC,
        event_log_size: int = DEFAULT_EVENT_LOG_SIZE,
    ):
        self.queue_service: QueueService = queue_service or DropInQueue()
        self.mode = mode
        self._events: deque[TimelineEvent] = deque(maxlen=max(1, int(event_log_size)))

    @property
    def events(self) -> list[TimelineEvent]:
        return list(self._events)

    def process_participants(
        self, participants: Iterable[Any] | None, *, turn_number: Any = None
    ) -> AsyncProcessResult:
        result = self.queue_service.sync_participants(participants, turn_number=turn_number, mode=self.mode)
        return self.process_queue_result(result)

    def _arrival_event(
        self, arrival: DropInArrival, *, mode: str, matching: dict[str, Any] | None
    ) -> TimelineEvent | None:
        cause = infer_arrival_reason(arrival, mode=mode)
        info = arrival.info
        replaced = arrival.replaced
        return normalize_timeline_event(
            {
                "type": "drop_in_joined",
                "owner_id": normalize_owner_id(info.owner_id),
                "status": normalize_timeline_status(info.status) or ParticipantStatus.active.value,
                "turn": arrival.turn,
                "timestamp": arrival.timestamp,
                "reason": cause,
                "context": {
                    "role": info.role or None,
                    "hero_name": info.hero_name or None,
                    "participant_id": info.participant_id,
                    "slot_index": info.slot_index,
                    "mode": mode,
                    "substitution": {
                        "cause": cause,
                        "replaced_owner_id": replaced.owner_id if replaced else None,
                        "replaced_hero_name": (replaced.hero_name or None) if replaced else None,
                        "replaced_participant_id": replaced.participant_id if replaced else None,
                        "queue_depth": arrival.stats.queue_depth,
                        "arrival_order": arrival.stats.arrival_order,
                        "total_replacements": arrival.stats.replacements,
                        "last_departure_cause": arrival.stats.last_departure_cause,
                    },
                },
                "metadata": {"matching": matching} if matching else None,
            },
            default_turn=arrival.turn,
        )

    def process_queue_result(self, result: QueueResult | None, *, mode: str | None = None) -> AsyncProcessResult:
        if result is None:
            return AsyncProcessResult(events=[], snapshot=None)

        resolved_mode = mode or self.mode
        events: list[TimelineEvent] = []
        for arrival in result.arrivals:
            event = self._arrival_event(arrival, mode=resolved_mode, matching=result.matching)
            if event is None:
                continue
            logger.debug(
                "Drop-in %s joined role %s (%s)",
                arrival.info.owner_id or arrival.info.key,
                arrival.info.role,
                event.reason,
            )
            self._events.append(event)
            events.append(event)

        return AsyncProcessResult(events=events, snapshot=result.snapshot)

    def reset(self) -> None:
        self._events.clear()
        self.queue_service.reset()
