"""Session states, allowed transitions and lifecycle events."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionState(Enum):
    """Lifecycle of a language server session.

    CLOSED is both the state before start() and the terminal state.
    """

    CLOSED = "closed"
    CREATED = "created"  # Endpoint spawned
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    SHUTTING_DOWN = "shutting_down"
    CRASHED = "crashed"


TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CLOSED: frozenset({SessionState.CREATED}),
    SessionState.CREATED: frozenset({SessionState.NEGOTIATING, SessionState.CLOSED}),
    SessionState.NEGOTIATING: frozenset({SessionState.ACTIVE, SessionState.CLOSED}),
    SessionState.ACTIVE: frozenset({SessionState.SHUTTING_DOWN, SessionState.CRASHED}),
    SessionState.SHUTTING_DOWN: frozenset({SessionState.CLOSED}),
    SessionState.CRASHED: frozenset({SessionState.CREATED, SessionState.CLOSED}),
}


class SessionEventKind(Enum):
    STARTED = "started"
    STOPPED = "stopped"
    CRASHED = "crashed"
    RESTARTED = "restarted"
    FATAL = "fatal"


@dataclass(frozen=True)
class SessionEvent:
    """Lifecycle event delivered to the collaborator."""

    kind: SessionEventKind
    state: SessionState
    error: BaseException | None = None
