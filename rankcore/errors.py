from __future__ import annotations


class RankCoreError(ValueError):
    """Base class for errors raised by the boundary adapters."""


class SessionBusyError(RankCoreError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session is busy: {session_id}")
        self.session_id = session_id
