"""Session lifecycle management.

Example usage:
    from ravenlsp.session import LanguageSession

    session = LanguageSession(config)
    handle = await session.start()
    await session.open_document("file:///a.raven", "raven", "let x = 1\\n")
    ...
    await handle.dispose()
"""

from ravenlsp.session.lifecycle import Disposable, LanguageSession
from ravenlsp.session.process import (
    Endpoint,
    connect_in_process,
    graceful_shutdown,
    spawn_endpoint,
)
from ravenlsp.session.restart import RestartPolicy
from ravenlsp.session.state import SessionEvent, SessionEventKind, SessionState

__all__ = [
    "Disposable",
    "Endpoint",
    "LanguageSession",
    "RestartPolicy",
    "SessionEvent",
    "SessionEventKind",
    "SessionState",
    "connect_in_process",
    "graceful_shutdown",
    "spawn_endpoint",
]
