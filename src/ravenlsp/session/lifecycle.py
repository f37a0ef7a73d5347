"""Session lifecycle: spawn, negotiate, synchronize documents, stop, recover.

State changes only happen in ``_transition``; every other method reads the
state and calls it. The document store lives on the session so that open
documents survive a restart and are replayed to the new server.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from ravenlsp.capabilities import CapabilityNegotiator, CapabilitySet
from ravenlsp.config import Config
from ravenlsp.dispatcher import DEFAULT_TIMEOUT, Dispatcher
from ravenlsp.documents import Document, DocumentStore
from ravenlsp.errors import (
    JsonRpcError,
    PeerLost,
    RequestTimeout,
    SessionError,
    SessionFatal,
)
from ravenlsp.protocol import methods
from ravenlsp.protocol.types import (
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    TextDocumentContentChangeEvent,
    TextDocumentIdentifier,
    TextDocumentItem,
    VersionedTextDocumentIdentifier,
)
from ravenlsp.session.process import Connector, Endpoint, spawn_endpoint
from ravenlsp.session.restart import RestartPolicy
from ravenlsp.session.state import TRANSITIONS, SessionEvent, SessionEventKind, SessionState

_log = logging.getLogger("ravenlsp.session")

EventListener = Callable[[SessionEvent], None]


class Disposable:
    """Handle whose dispose() releases what it represents, once."""

    def __init__(self, dispose: Callable[[], Awaitable[None] | None]) -> None:
        self._dispose = dispose
        self.disposed = False

    async def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        result = self._dispose()
        if result is not None:
            await result


class LanguageSession:
    """One supervised connection to a language server."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        connector: Connector | None = None,
    ) -> None:
        self.config = config or Config()
        self._connector = connector or (lambda: spawn_endpoint(self.config.server))
        self.documents = DocumentStore()
        self.restart_policy = RestartPolicy(self.config.restart)

        self._state = SessionState.CLOSED
        self._endpoint: Endpoint | None = None
        self._dispatcher: Dispatcher | None = None
        self._capabilities: CapabilitySet | None = None
        self._listeners: list[EventListener] = []
        self._recovery: asyncio.Task[None] | None = None
        self._launching: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def capabilities(self) -> CapabilitySet | None:
        return self._capabilities

    @property
    def dispatcher(self) -> Dispatcher | None:
        return self._dispatcher

    def on_event(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def _transition(self, new: SessionState) -> None:
        old = self._state
        if new not in TRANSITIONS[old]:
            raise SessionError(f"Invalid session transition {old.value} -> {new.value}")
        self._state = new
        _log.debug("Session %s -> %s", old.value, new.value)

    def _emit(self, kind: SessionEventKind, error: BaseException | None = None) -> None:
        event = SessionEvent(kind=kind, state=self._state, error=error)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                _log.exception("Session event listener failed for %s", kind.value)

    def _require_active(self) -> Dispatcher:
        if self._state is not SessionState.ACTIVE or self._dispatcher is None:
            raise SessionError(f"Session is not active (state: {self._state.value})")
        return self._dispatcher

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    async def start(self) -> Disposable:
        """Spawn the server, negotiate capabilities and become active.

        Returns:
            A disposable whose dispose() stops the session.

        Raises:
            SessionError: If the session is already running, or stop() was
                called before it became active.
            NegotiationError: If the handshake failed; the session is CLOSED.
        """
        if self._state is not SessionState.CLOSED:
            raise SessionError(f"Session already started (state: {self._state.value})")
        launch = asyncio.get_running_loop().create_task(
            self._launch(), name="ravenlsp-session-launch"
        )
        self._launching = launch
        try:
            await launch
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise SessionError("Session stopped before it became active") from None
        finally:
            if self._launching is launch:
                self._launching = None
        self._emit(SessionEventKind.STARTED)
        return Disposable(self.stop)

    async def _launch(self) -> None:
        """CLOSED/CRASHED -> CREATED -> NEGOTIATING -> ACTIVE."""
        self._transition(SessionState.CREATED)
        try:
            endpoint = await self._connector()
        except BaseException:
            self._transition(SessionState.CLOSED)
            raise
        self._endpoint = endpoint

        dispatcher = Dispatcher(
            endpoint.transport,
            name="client",
            request_timeout=self.config.client.request_timeout,
        )
        dispatcher.on_close(lambda error: self._on_connection_closed(dispatcher, error))
        self._dispatcher = dispatcher
        dispatcher.start()

        self._transition(SessionState.NEGOTIATING)
        negotiator = CapabilityNegotiator(
            dispatcher,
            self.config.client.capabilities,
            root_uri=self.config.client.root_uri,
        )
        try:
            self._capabilities = await negotiator.negotiate()
        except BaseException:
            await self._release()
            self._transition(SessionState.CLOSED)
            raise

        self._transition(SessionState.ACTIVE)

    async def stop(self) -> None:
        """Shut the server down and release every resource. Idempotent.

        A start or restart still in progress is abandoned: the endpoint is
        released without a shutdown handshake.
        """
        running = self._state is not SessionState.CLOSED
        await self._cancel_recovery()
        await self._cancel_launch()
        if self._state is SessionState.CLOSED:
            if running:
                self._emit(SessionEventKind.STOPPED)
            return

        if self._state is SessionState.CRASHED:
            await self._release()
            self._transition(SessionState.CLOSED)
            self._emit(SessionEventKind.STOPPED)
            return

        if self._state is not SessionState.ACTIVE:
            raise SessionError(f"Cannot stop while {self._state.value}")

        self._transition(SessionState.SHUTTING_DOWN)
        dispatcher = self._dispatcher
        try:
            if dispatcher is not None:
                await self._shutdown_handshake(dispatcher)
        finally:
            await self._release()
            self._transition(SessionState.CLOSED)
            self._emit(SessionEventKind.STOPPED)

    async def _shutdown_handshake(self, dispatcher: Dispatcher) -> None:
        grace = self.config.shutdown.grace_timeout
        try:
            await dispatcher.send_request(methods.SHUTDOWN, None, timeout=grace)
        except (RequestTimeout, PeerLost, JsonRpcError) as e:
            _log.warning("Server did not acknowledge shutdown: %s", e)
        try:
            await dispatcher.send_notification(methods.EXIT)
        except PeerLost as e:
            _log.debug("Could not send exit: %s", e)

    async def _release(self) -> None:
        dispatcher, self._dispatcher = self._dispatcher, None
        endpoint, self._endpoint = self._endpoint, None
        self._capabilities = None
        try:
            if dispatcher is not None:
                await dispatcher.close()
        finally:
            if endpoint is not None:
                await endpoint.release(self.config.shutdown)

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    def _on_connection_closed(self, dispatcher: Dispatcher, error: Exception | None) -> None:
        if dispatcher is not self._dispatcher or self._state is not SessionState.ACTIVE:
            return
        _log.error("Language server connection lost: %s", error or "EOF")
        self._transition(SessionState.CRASHED)
        self._emit(SessionEventKind.CRASHED, error)
        self._recovery = asyncio.get_running_loop().create_task(
            self._recover(error), name="ravenlsp-session-recovery"
        )

    async def _recover(self, cause: Exception | None) -> None:
        await self._release()

        delay = self.restart_policy.record_crash()
        if delay is None:
            self._fail(SessionFatal(
                f"Language server crashed {self.restart_policy.recent_crashes} time(s) "
                f"within {self.config.restart.cooldown}s; giving up"
            ), cause)
            return

        _log.info("Restarting language server in %.2fs", delay)
        await asyncio.sleep(delay)
        try:
            await self._launch()
            await self._replay_documents()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._recovery is not asyncio.current_task():
                # The new connection crashed too; a newer recovery took over
                return
            if self._state is SessionState.ACTIVE:
                self._transition(SessionState.SHUTTING_DOWN)
                await self._release()
            self._fail(SessionFatal(f"Restart failed: {e}"), e)
            return

        self._emit(SessionEventKind.RESTARTED)

    def _fail(self, fatal: SessionFatal, cause: BaseException | None) -> None:
        fatal.__cause__ = cause
        if self._state is not SessionState.CLOSED:
            self._transition(SessionState.CLOSED)
        _log.error("%s", fatal)
        self._emit(SessionEventKind.FATAL, fatal)

    async def _cancel_recovery(self) -> None:
        task, self._recovery = self._recovery, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait({task})

    async def _cancel_launch(self) -> None:
        task = self._launching
        if task is None or task.done():
            return
        _log.info("Abandoning session start (state: %s)", self._state.value)
        task.cancel()
        await asyncio.wait({task})

    async def wait_recovered(self) -> None:
        """Wait for an in-progress restart attempt to finish."""
        if self._recovery is not None:
            await asyncio.shield(self._recovery)

    async def _replay_documents(self) -> None:
        """Reopen every tracked document at version 0 on the new server."""
        documents = list(self.documents)
        for document in documents:
            self.documents.close(document.uri)
            reopened = self.documents.open(document.uri, document.language_id, document.content)
            await self._send_did_open(self._require_active(), reopened)
        if documents:
            _log.info("Resynced %d document(s) after restart", len(documents))

    # ------------------------------------------------------------------
    # Document synchronization
    # ------------------------------------------------------------------

    async def _send_did_open(self, dispatcher: Dispatcher, document: Document) -> None:
        params = DidOpenTextDocumentParams(
            text_document=TextDocumentItem(
                uri=document.uri,
                language_id=document.language_id,
                version=document.version,
                text=document.content,
            )
        )
        await dispatcher.send_notification(methods.DID_OPEN, params.to_wire())

    async def open_document(self, uri: str, language_id: str, text: str) -> Document:
        dispatcher = self._require_active()
        dispatcher.check_capability(methods.DID_OPEN)
        document = self.documents.open(uri, language_id, text)
        await self._send_did_open(dispatcher, document)
        return document

    async def change_document(
        self,
        uri: str,
        version: int,
        changes: Sequence[TextDocumentContentChangeEvent | dict[str, Any]],
    ) -> Document:
        """Apply a change locally, then forward it.

        Raises:
            VersionConflict: Nothing was applied or sent; call resync_document().
        """
        dispatcher = self._require_active()
        dispatcher.check_capability(methods.DID_CHANGE)
        events = [
            c if isinstance(c, TextDocumentContentChangeEvent)
            else TextDocumentContentChangeEvent.model_validate(c)
            for c in changes
        ]
        document = self.documents.apply_change(uri, version, events)
        params = DidChangeTextDocumentParams(
            text_document=VersionedTextDocumentIdentifier(uri=uri, version=document.version),
            content_changes=events,
        )
        await dispatcher.send_notification(methods.DID_CHANGE, params.to_wire())
        return document

    async def close_document(self, uri: str) -> None:
        dispatcher = self._require_active()
        dispatcher.check_capability(methods.DID_CLOSE)
        self.documents.close(uri)
        params = DidCloseTextDocumentParams(text_document=TextDocumentIdentifier(uri=uri))
        await dispatcher.send_notification(methods.DID_CLOSE, params.to_wire())

    async def resync_document(
        self, uri: str, text: str, language_id: str | None = None
    ) -> Document:
        """Close (if open) and reopen a document at version 0 with ``text``."""
        current = self.documents.get(uri)
        if current is not None:
            language_id = language_id or current.language_id
            await self.close_document(uri)
        if language_id is None:
            raise SessionError(f"Language id required to open {uri}")
        return await self.open_document(uri, language_id, text)

    # ------------------------------------------------------------------
    # Feature requests
    # ------------------------------------------------------------------

    async def request(
        self, method: str, params: Any = None, *, timeout: float | None = DEFAULT_TIMEOUT
    ) -> Any:
        """Send a feature request; fails fast if its capability was not negotiated."""
        return await self._require_active().send_request(method, params, timeout=timeout)

    async def notify(self, method: str, params: Any = None) -> None:
        """Send a notification that has no document-store bookkeeping."""
        await self._require_active().send_notification(method, params)
