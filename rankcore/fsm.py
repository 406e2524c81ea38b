from __future__ import annotations

from typing import TYPE_CHECKING

from statemachine import State, StateMachine

from rankcore.status import ParticipantStatus

if TYPE_CHECKING:
    from rankcore.session import OwnerTurnEntry


IN_PLAY = "in_play"


class ProxyEscalationFSM(StateMachine):
    """FSM wrapper around one owner's turn entry.

    - `in_play` covers every status the participant table can impose (active, pending, defeated, ...).
    - `proxied` is reached only through `escalate`; participation does not leave it.
    The session manager decides *when* to escalate; the FSM only guards the transition
    and writes the result back onto the entry.
    """

    in_play = State(IN_PLAY, value=IN_PLAY, initial=True)
    proxied = State(ParticipantStatus.proxy.value, value=ParticipantStatus.proxy.value)

    escalate = in_play.to(proxied)
    participate = in_play.to.itself() | proxied.to.itself()

    def __init__(self, entry: OwnerTurnEntry):
        self.entry = entry
        start = ParticipantStatus.proxy.value if entry.status == ParticipantStatus.proxy else IN_PLAY
        super().__init__(start_value=start)

    @property
    def is_proxied(self) -> bool:
        return self.proxied.is_active

    def on_escalate(self, turn: int | float | None = None) -> None:
        self.entry.status = ParticipantStatus.proxy.value
        self.entry.proxied_at_turn = turn

    def on_participate(self) -> None:
        if not self.is_proxied:
            self.entry.status = ParticipantStatus.active.value
