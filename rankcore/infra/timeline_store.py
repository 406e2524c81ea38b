from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any, cast

import redis

from rankcore.models import TimelineEvent, TimelineEventRow
from rankcore.timeline import Order, event_to_row, merge_timeline_events, row_to_event

logger = logging.getLogger(__name__)

_JSON_FIELDS = ("context", "metadata")


def timeline_key(session_id: str) -> str:
    return f"timeline:{session_id}"


def _row_to_fields(row: TimelineEventRow) -> dict[str, str]:
    # Streams only hold flat string fields: JSON for the nested blobs, "" for None.
    fields: dict[str, str] = {}
    for name, value in row.model_dump().items():
        if value is None:
            fields[name] = ""
        elif name in _JSON_FIELDS:
            fields[name] = json.dumps(value)
        else:
            fields[name] = str(value)
    return fields


def _fields_to_row(fields: Mapping[str, str]) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for name, value in fields.items():
        if value == "":
            row[name] = None
        elif name in _JSON_FIELDS:
            try:
                row[name] = json.loads(value)
            except ValueError:
                logger.debug("Unreadable %s blob in timeline stream: %r", name, value)
                row[name] = None
        else:
            row[name] = value
    return row


class TimelineEventStore:
    """Timeline events of a session persisted as a Redis stream.

    Appends are blind; reads merge by event key, so a replayed append does not
    duplicate events.
    """

    def __init__(self, r: redis.Redis):
        self.r = r

    def append(
        self,
        session_id: str,
        events: Iterable[Any],
        *,
        game_id: str | None = None,
    ) -> list[str]:
        key = timeline_key(session_id)
        ids: list[str] = []
        for event in events:
            row = event_to_row(event, session_id=session_id, game_id=game_id)
            if row is None:
                continue
            stream_id = self.r.xadd(key, _row_to_fields(row))
            ids.append(cast(str, stream_id))
        return ids

    def load(self, session_id: str, *, order: Order = "asc") -> list[TimelineEvent]:
        entries = self.r.xrange(timeline_key(session_id))
        events = [row_to_event(_fields_to_row(fields)) for _, fields in entries]
        return merge_timeline_events([], [e for e in events if e is not None], order=order)

    def clear(self, session_id: str) -> None:
        self.r.delete(timeline_key(session_id))
