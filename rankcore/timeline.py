"""Canonical timeline events: normalization, dedupe/merge and row mapping.

Events reach us from the session managers, from persisted rows and from clients
that spell fields differently (`ownerId`, `owner_id`, `eventType`, ...). Everything
is funneled through `normalize_timeline_event` so the rest of the code only ever
sees `TimelineEvent`.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterable, Mapping
from typing import Any, Literal

from rankcore.models import TimelineEvent, TimelineEventRow
from rankcore.status import normalize_owner_id, normalize_timeline_status
from rankcore.timeutil import coerce_number, ms_to_iso, now_ms, parse_timestamp_ms

DEFAULT_EVENT_TYPE = "event"

# Fields that make up the canonical event (row metadata excluded).
CANONICAL_FIELDS: tuple[str, ...] = (
    "id",
    "type",
    "owner_id",
    "strike",
    "remaining",
    "limit",
    "reason",
    "turn",
    "timestamp",
    "status",
    "context",
    "metadata",
)

Order = Literal["asc", "desc"]


def _first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _json_object(value: Any) -> dict[str, Any] | None:
    """Deep, JSON-safe copy of a mapping; None for anything else or unserializable input."""

    if not isinstance(value, Mapping):
        return None
    try:
        return json.loads(json.dumps(dict(value)))
    except (TypeError, ValueError):
        return None


def _trimmed_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def format_event_id(*, event_type: str, owner_id: str | None, turn: Any, timestamp: Any) -> str:
    owner = owner_id or "unknown"
    turn_part = "na" if turn is None else turn
    return f"{event_type}:{owner}:{turn_part}:{timestamp}"


def normalize_timeline_event(
    event: Any,
    *,
    default_turn: int | float | None = None,
    default_type: str | None = DEFAULT_EVENT_TYPE,
) -> TimelineEvent | None:
    if isinstance(event, TimelineEvent):
        raw: Mapping[str, Any] = event.model_dump()
    elif isinstance(event, Mapping):
        raw = event
    else:
        return None

    type_ = (
        _trimmed_str(raw.get("type"))
        or _trimmed_str(raw.get("eventType"))
        or _trimmed_str(raw.get("event_type"))
        or _trimmed_str(raw.get("action"))
        or (default_type or "")
    )
    if not type_:
        return None

    owner_raw = _first_present(raw, "owner_id", "ownerId", "ownerID")
    if owner_raw is None and isinstance(raw.get("owner"), str):
        owner_raw = raw.get("owner")
    owner_id = normalize_owner_id(owner_raw)

    turn = coerce_number(raw.get("turn"))
    if turn is None:
        turn = default_turn

    timestamp = parse_timestamp_ms(raw.get("timestamp"))
    if timestamp is None:
        timestamp = now_ms()

    reason = raw.get("reason")
    if not isinstance(reason, str):
        reason = raw.get("reasonCode") if isinstance(raw.get("reasonCode"), str) else None

    context = _json_object(_first_present(raw, "context", "meta", "metadata"))
    metadata = _json_object(_first_present(raw, "metadata", "meta"))

    explicit_id = _first_present(raw, "id", "eventId", "event_id")
    event_id = (
        str(explicit_id)
        if explicit_id
        else format_event_id(event_type=type_, owner_id=owner_id, turn=turn, timestamp=timestamp)
    )

    return TimelineEvent(
        id=event_id,
        type=type_,
        owner_id=owner_id,
        strike=coerce_number(raw.get("strike")),
        remaining=coerce_number(raw.get("remaining")),
        limit=coerce_number(raw.get("limit")),
        reason=reason,
        turn=turn,
        timestamp=timestamp,
        status=normalize_timeline_status(raw.get("status")),
        context=context,
        metadata=metadata,
        session_id=normalize_owner_id(_first_present(raw, "session_id", "sessionId")),
        game_id=normalize_owner_id(_first_present(raw, "game_id", "gameId")),
    )


def build_timeline_event_key(event: TimelineEvent | None) -> str | None:
    if event is None:
        return None
    if event.id:
        return f"id:{event.id}"
    return format_event_id(
        event_type=event.type or DEFAULT_EVENT_TYPE,
        owner_id=event.owner_id,
        turn=event.turn,
        timestamp=event.timestamp,
    )


def _merge_over(previous: TimelineEvent, incoming: TimelineEvent) -> TimelineEvent:
    """Later record wins field by field; a later None keeps what was already known."""

    updates = {
        name: value
        for name, value in incoming.model_dump().items()
        if value is not None
    }
    return previous.model_copy(update=updates)


def merge_timeline_events(
    existing: Iterable[Any] = (),
    incoming: Iterable[Any] = (),
    *,
    default_turn: int | float | None = None,
    default_type: str | None = DEFAULT_EVENT_TYPE,
    order: Order = "asc",
) -> list[TimelineEvent]:
    merged: dict[str, TimelineEvent] = {}

    for payload in [*(existing or ()), *(incoming or ())]:
        normalized = normalize_timeline_event(payload, default_turn=default_turn, default_type=default_type)
        if normalized is None:
            continue
        key = build_timeline_event_key(normalized)
        if key is None:
            continue
        previous = merged.get(key)
        merged[key] = normalized if previous is None else _merge_over(previous, normalized)

    ordered = sorted(merged.values(), key=lambda e: e.timestamp or 0)
    if order == "desc":
        ordered.reverse()
    return ordered


def normalize_timeline_events(events: Iterable[Any] | None = None, **options: Any) -> list[TimelineEvent]:
    return merge_timeline_events([], list(events or []), **options)


def sanitize_timeline_events(events: Iterable[Any] | None = None, **options: Any) -> list[TimelineEvent]:
    """Normalized events stripped down to the canonical fields."""

    return [
        event.model_copy(update={"session_id": None, "game_id": None})
        for event in normalize_timeline_events(events, **options)
    ]


def canonical_fields(event: TimelineEvent) -> dict[str, Any]:
    data = event.model_dump()
    return {name: copy.deepcopy(data[name]) for name in CANONICAL_FIELDS}


def event_to_row(
    event: Any,
    *,
    session_id: str | None = None,
    game_id: str | None = None,
) -> TimelineEventRow | None:
    normalized = normalize_timeline_event(event)
    if normalized is None:
        return None

    turn = normalized.turn if isinstance(normalized.turn, (int, float)) else None
    return TimelineEventRow(
        session_id=session_id or normalized.session_id,
        game_id=game_id or normalized.game_id,
        event_id=normalized.id,
        event_type=normalized.type,
        owner_id=normalized.owner_id,
        reason=normalized.reason,
        strike=normalized.strike,
        remaining=normalized.remaining,
        limit=normalized.limit,
        status=normalized.status,
        turn=turn,
        event_timestamp=ms_to_iso(normalized.timestamp),
        context=normalized.context,
        metadata=normalized.metadata,
    )


def row_to_event(row: Any, *, default_turn: int | float | None = None) -> TimelineEvent | None:
    if isinstance(row, TimelineEventRow):
        data: Mapping[str, Any] = row.model_dump()
    elif isinstance(row, Mapping):
        data = row
    else:
        return None

    timestamp = parse_timestamp_ms(data.get("timestamp_ms"))
    if timestamp is None:
        timestamp = parse_timestamp_ms(data.get("event_timestamp") or data.get("created_at"))
    if timestamp is None:
        timestamp = now_ms()

    return normalize_timeline_event(
        {
            "id": data.get("event_id") or data.get("id"),
            "type": data.get("event_type") or data.get("type"),
            "owner_id": data.get("owner_id"),
            "strike": data.get("strike"),
            "remaining": data.get("remaining"),
            "limit": data.get("limit"),
            "reason": data.get("reason"),
            "status": data.get("status"),
            "turn": data.get("turn"),
            "timestamp": timestamp,
            "context": data.get("context"),
            "metadata": data.get("metadata"),
            "session_id": data.get("session_id"),
            "game_id": data.get("game_id"),
        },
        default_turn=default_turn,
    )
