"""Language client: the collaborator-facing wrapper around a session.

The editor host forwards every document event here; only documents whose
language id matches the document selector reach the server.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from ravenlsp.config import Config
from ravenlsp.dispatcher import DEFAULT_TIMEOUT
from ravenlsp.documents import Document
from ravenlsp.protocol.types import TextDocumentContentChangeEvent
from ravenlsp.session import Disposable, LanguageSession, SessionEventKind, SessionState
from ravenlsp.session.lifecycle import EventListener
from ravenlsp.session.process import Connector

_log = logging.getLogger("ravenlsp.client")


class LanguageClient:
    """Routes selected editor documents into a supervised session."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        connector: Connector | None = None,
    ) -> None:
        self.config = config or Config()
        self.document_selector = self.config.client.document_selector
        self.session = LanguageSession(self.config, connector=connector)
        self.session.on_event(self._log_event)

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def running(self) -> bool:
        return self.session.state is SessionState.ACTIVE

    def on_event(self, listener: EventListener) -> None:
        self.session.on_event(listener)

    def handles(self, language_id: str) -> bool:
        return language_id == self.document_selector

    async def start(self) -> Disposable:
        return await self.session.start()

    async def stop(self) -> None:
        await self.session.stop()

    async def restart(self) -> Disposable:
        await self.session.stop()
        return await self.session.start()

    async def did_open(self, uri: str, language_id: str, text: str) -> Document | None:
        if not self.handles(language_id):
            return None
        return await self.session.open_document(uri, language_id, text)

    async def did_change(
        self,
        uri: str,
        version: int,
        changes: Sequence[TextDocumentContentChangeEvent | dict[str, Any]],
    ) -> Document | None:
        if uri not in self.session.documents:
            return None
        return await self.session.change_document(uri, version, changes)

    async def did_close(self, uri: str) -> None:
        if uri not in self.session.documents:
            return
        await self.session.close_document(uri)

    async def request(
        self, method: str, params: Any = None, *, timeout: float | None = DEFAULT_TIMEOUT
    ) -> Any:
        return await self.session.request(method, params, timeout=timeout)

    def _log_event(self, event: Any) -> None:
        if event.kind is SessionEventKind.FATAL:
            _log.error("Language server stopped permanently: %s", event.error)
        else:
            _log.info("Language server %s", event.kind.value)
