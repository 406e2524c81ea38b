"""Per-session turn bookkeeping: who still owes an action, warning strikes, proxy escalation."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from rankcore.config import DEFAULT_EVENT_LOG_SIZE, DEFAULT_WARNING_LIMIT, Settings
from rankcore.errors import RankCoreError
from rankcore.fsm import ProxyEscalationFSM
from rankcore.models import CompleteTurnResult, OwnerTurnSnapshot, SessionSnapshot, TimelineEvent, TurnWarning
from rankcore.status import ParticipantStatus, normalize_owner_id, normalize_status, owner_id_of
from rankcore.timeline import normalize_timeline_event
from rankcore.timeutil import coerce_number

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OwnerTurnEntry:
    owner_id: str
    status: str = ParticipantStatus.active.value
    inactivity_strikes: int = 0
    last_participation_turn: int | float = 0
    last_participation_type: str | None = None
    last_warning_turn: int | float = 0
    last_warning_reason: str | None = None
    proxied_at_turn: int | float | None = None

    def snapshot(self, *, managed: bool) -> OwnerTurnSnapshot:
        return OwnerTurnSnapshot(
            owner_id=self.owner_id,
            status=self.status,
            inactivity_strikes=self.inactivity_strikes,
            last_participation_turn=self.last_participation_turn,
            last_participation_type=self.last_participation_type,
            last_warning_turn=self.last_warning_turn,
            last_warning_reason=self.last_warning_reason,
            proxied_at_turn=self.proxied_at_turn,
            managed=managed,
        )


def _positive_int(value: Any, default: int) -> int:
    numeric = coerce_number(value)
    if numeric is None or numeric < 1:
        return default
    return int(numeric)


def _participant_status(participant: Any) -> str:
    if isinstance(participant, Mapping):
        return normalize_status(participant.get("status"))
    return normalize_status(getattr(participant, "status", None))


def _owner_ids(values: Iterable[Any] | None) -> list[str]:
    return [owner_id for owner_id in (normalize_owner_id(v) for v in values or []) if owner_id is not None]


class RealtimeSessionManager:
    """Turn state of one realtime session.

    Not thread-safe: callers serialize access per session (see `rankcore.infra.lock.session_lock`).
    """

    def __init__(
        self,
        *,
        warning_limit: Any = DEFAULT_WARNING_LIMIT,
        event_log_size: int = DEFAULT_EVENT_LOG_SIZE,
    ):
        self.warning_limit = _positive_int(warning_limit, DEFAULT_WARNING_LIMIT)
        self.current_turn: int | float = 0
        self._pending: dict[str, None] = {}
        self._managed: set[str] = set()
        self._entries: dict[str, OwnerTurnEntry] = {}
        self._events: deque[TimelineEvent] = deque(maxlen=_positive_int(event_log_size, DEFAULT_EVENT_LOG_SIZE))

    @classmethod
    def from_settings(cls, settings: Settings) -> RealtimeSessionManager:
        return cls(warning_limit=settings.warning_limit, event_log_size=settings.event_log_size)

    # -- internals ---------------------------------------------------------

    def _ensure_entry(self, owner_id: Any) -> OwnerTurnEntry | None:
        normalized = normalize_owner_id(owner_id)
        if normalized is None:
            return None
        entry = self._entries.get(normalized)
        if entry is None:
            entry = self._entries[normalized] = OwnerTurnEntry(owner_id=normalized)
        return entry

    def _turn_or_current(self, turn_number: Any) -> int | float:
        numeric = coerce_number(turn_number)
        return self.current_turn if numeric is None else numeric

    def _push_events(self, raw_events: Iterable[Mapping[str, Any]]) -> list[TimelineEvent]:
        appended: list[TimelineEvent] = []
        for raw in raw_events:
            event = normalize_timeline_event(
                {"turn": self.current_turn or 0, **raw},
                default_turn=self.current_turn or 0,
            )
            if event is None:
                continue
            self._events.append(event)
            appended.append(event)
        return appended

    # -- public API --------------------------------------------------------

    def get_snapshot(self) -> SessionSnapshot:
        entries = [
            self._entries[owner_id].snapshot(managed=owner_id in self._managed)
            for owner_id in sorted(self._entries)
        ]
        return SessionSnapshot(
            turn=self.current_turn,
            pending_owners=list(self._pending),
            entries=entries,
            warning_limit=self.warning_limit,
            events=list(self._events),
        )

    def sync_participants(self, participants: Iterable[Any] | None) -> SessionSnapshot:
        """Mirror the participant table. Owners missing from it are forgotten entirely."""

        seen: set[str] = set()
        for participant in participants or []:
            entry = self._ensure_entry(owner_id_of(participant))
            if entry is None:
                continue
            seen.add(entry.owner_id)
            entry.status = _participant_status(participant)
            if entry.status == ParticipantStatus.proxy and entry.proxied_at_turn is None:
                entry.proxied_at_turn = self.current_turn or 0

        for owner_id in [o for o in self._entries if o not in seen]:
            del self._entries[owner_id]
            self._pending.pop(owner_id, None)
            self._managed.discard(owner_id)

        return self.get_snapshot()

    def set_managed_owners(self, owner_ids: Iterable[Any] | None) -> SessionSnapshot:
        """Restrict strikes to these owners. An empty set means every eligible owner counts."""

        self._managed.clear()
        for owner_id in _owner_ids(owner_ids):
            self._managed.add(owner_id)
            self._ensure_entry(owner_id)
        return self.get_snapshot()

    def begin_turn(
        self,
        *,
        turn_number: Any = None,
        eligible_owner_ids: Iterable[Any] | None = None,
    ) -> SessionSnapshot:
        self.current_turn = self._turn_or_current(turn_number)
        self._pending = dict.fromkeys(_owner_ids(eligible_owner_ids))
        return self.get_snapshot()

    def record_participation(
        self,
        owner_id: Any,
        turn_number: Any = None,
        *,
        type: str = "action",
    ) -> SessionSnapshot:
        entry = self._ensure_entry(owner_id)
        if entry is None:
            return self.get_snapshot()

        entry.last_participation_turn = self._turn_or_current(turn_number)
        entry.last_participation_type = type
        entry.last_warning_reason = None
        entry.last_warning_turn = 0
        entry.inactivity_strikes = 0
        self._pending.pop(entry.owner_id, None)

        # A proxied owner stays proxied; only the participant table can bring them back.
        ProxyEscalationFSM(entry).participate()
        return self.get_snapshot()

    def complete_turn(
        self,
        *,
        turn_number: Any = None,
        reason: str = "inactivity",
        eligible_owner_ids: Iterable[Any] | None = None,
    ) -> CompleteTurnResult:
        """Strike every eligible owner that is still pending.

        Strikes up to the limit produce warnings; the first strike beyond it hands the
        owner to a proxy exactly once.
        """

        turn = self._turn_or_current(turn_number)
        self.current_turn = turn

        warnings: list[TurnWarning] = []
        escalated: list[str] = []
        raw_events: list[dict[str, Any]] = []
        limit = self.warning_limit

        for owner_id in _owner_ids(eligible_owner_ids):
            if owner_id not in self._pending:
                continue
            del self._pending[owner_id]
            if self._managed and owner_id not in self._managed:
                continue

            entry = self._ensure_entry(owner_id)
            entry.inactivity_strikes += 1
            entry.last_warning_turn = turn
            entry.last_warning_reason = reason

            if entry.inactivity_strikes > limit:
                fsm = ProxyEscalationFSM(entry)
                if fsm.is_proxied:
                    continue
                fsm.escalate(turn=turn)
                escalated.append(owner_id)
                logger.info(
                    "Owner %s handed to proxy at turn %s after %d strikes (%s)",
                    owner_id,
                    turn,
                    entry.inactivity_strikes,
                    reason,
                )
                raw_events.append(
                    {
                        "type": "proxy_escalated",
                        "owner_id": owner_id,
                        "strike": entry.inactivity_strikes,
                        "remaining": 0,
                        "limit": limit,
                        "reason": reason,
                        "turn": turn,
                        "status": entry.status,
                    }
                )
                continue

            remaining = max(limit - entry.inactivity_strikes + 1, 0)
            warnings.append(
                TurnWarning(
                    owner_id=owner_id,
                    strike=entry.inactivity_strikes,
                    remaining=remaining,
                    limit=limit,
                    reason=reason,
                )
            )
            logger.debug("Owner %s warned at turn %s (strike %d/%d)", owner_id, turn, entry.inactivity_strikes, limit)
            raw_events.append(
                {
                    "type": "warning",
                    "owner_id": owner_id,
                    "strike": entry.inactivity_strikes,
                    "remaining": remaining,
                    "limit": limit,
                    "reason": reason,
                    "turn": turn,
                    "status": entry.status,
                }
            )

        events = self._push_events(raw_events)
        return CompleteTurnResult(snapshot=self.get_snapshot(), warnings=warnings, escalated=escalated, events=events)

    def reset(self) -> SessionSnapshot:
        self.current_turn = 0
        self._pending = {}
        self._entries.clear()
        self._managed.clear()
        self._events.clear()
        return self.get_snapshot()


class SessionRegistry:
    """Owns one `RealtimeSessionManager` per session id."""

    def __init__(
        self,
        factory: Callable[[], RealtimeSessionManager] | None = None,
        *,
        settings: Settings | None = None,
    ):
        resolved = settings or Settings()
        self._factory = factory or (lambda: RealtimeSessionManager.from_settings(resolved))
        self._sessions: dict[str, RealtimeSessionManager] = {}

    @staticmethod
    def _key(session_id: Any) -> str:
        key = normalize_owner_id(session_id)
        if key is None:
            raise RankCoreError("session_id is required")
        return key

    def get_or_create(self, session_id: Any) -> RealtimeSessionManager:
        key = self._key(session_id)
        manager = self._sessions.get(key)
        if manager is None:
            manager = self._sessions[key] = self._factory()
        return manager

    def get(self, session_id: Any) -> RealtimeSessionManager | None:
        key = normalize_owner_id(session_id)
        return None if key is None else self._sessions.get(key)

    def discard(self, session_id: Any) -> None:
        key = normalize_owner_id(session_id)
        if key is not None:
            self._sessions.pop(key, None)

    def __contains__(self, session_id: object) -> bool:
        key = normalize_owner_id(session_id)
        return key is not None and key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
