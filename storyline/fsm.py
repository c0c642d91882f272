from __future__ import annotations

from typing import Protocol

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from storyline.api.models import SessionStatus
from storyline.errors import InvalidStateError


class HasStatus(Protocol):
    status: SessionStatus


class SessionFSM(StateMachine):
    """Lifecycle guard shared by branching paths and narrative progress.

    not_started -> in_progress -> completed. The record owns the status; the FSM only
    validates transitions and writes the new status back.
    """

    not_started = State(
        SessionStatus.not_started.value,
        value=SessionStatus.not_started.value,
        initial=True,
    )
    in_progress = State(SessionStatus.in_progress.value, value=SessionStatus.in_progress.value)
    completed = State(SessionStatus.completed.value, value=SessionStatus.completed.value, final=True)

    begin = not_started.to(in_progress)
    finish = in_progress.to(completed)

    def __init__(self, record: HasStatus):
        self.record = record
        super().__init__(start_value=record.status.value)

    @property
    def status(self) -> SessionStatus:
        return SessionStatus(str(self.current_state.value))

    def require(self, expected: SessionStatus, *, action: str) -> None:
        if self.status != expected:
            raise InvalidStateError(f"Cannot {action}: session is {self.status.value} (expected {expected.value})")

    def advance(self, event: str) -> None:
        """Fire `event` and persist the resulting status on the record."""

        try:
            self.send(event)
        except TransitionNotAllowed as e:
            raise InvalidStateError(f"Cannot {event}: session is {self.status.value}") from e
        self.sync_status_to_model()

    def sync_status_to_model(self) -> None:
        self.record.status = self.status
