"""Reference Raven language server endpoint.

Serves the protocol surface on a Dispatcher: the initialize handshake,
document synchronization into its own DocumentStore, shutdown/exit, and a
line-echo hover. It performs no language analysis.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any

from ravenlsp import __version__
from ravenlsp.capabilities import CapabilitySet
from ravenlsp.dispatcher import Dispatcher, Handler, Transport
from ravenlsp.documents import DocumentStore
from ravenlsp.errors import DocumentError, ErrorCode, JsonRpcError
from ravenlsp.protocol import methods
from ravenlsp.protocol.types import (
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    Hover,
    InitializeParams,
    InitializeResult,
    Position,
    Range,
    ServerInfo,
    TextDocumentPositionParams,
)

_log = logging.getLogger("ravenlsp.server")

SERVER_FEATURES: frozenset[str] = frozenset({
    methods.TEXT_DOCUMENT_SYNC,
    methods.HOVER_PROVIDER,
})


class RavenLanguageServer:
    """Server-side protocol state for one connection."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        features: Iterable[str] = SERVER_FEATURES,
    ) -> None:
        self.dispatcher = dispatcher
        self.features = frozenset(features)
        self.documents = DocumentStore()
        self.capabilities: CapabilitySet | None = None
        self.shutdown_requested = False
        self.exit_code: int | None = None
        self._exited = asyncio.Event()

        self._request(methods.INITIALIZE, self.initialize, requires_init=False)
        self._request(methods.SHUTDOWN, self.shutdown)
        self._request(methods.HOVER, self.hover)
        dispatcher.on_notification(methods.INITIALIZED, self.initialized)
        dispatcher.on_notification(methods.EXIT, self.exit)
        dispatcher.on_notification(methods.DID_OPEN, self.did_open)
        dispatcher.on_notification(methods.DID_CHANGE, self.did_change)
        dispatcher.on_notification(methods.DID_CLOSE, self.did_close)

    def _request(self, method: str, handler: Handler, *, requires_init: bool = True) -> None:
        if requires_init:
            handler = self._guard(handler)
        self.dispatcher.on_request(method, handler)

    def _guard(self, handler: Handler) -> Callable[[Any], Any]:
        def guarded(params: Any) -> Any:
            if self.capabilities is None:
                raise JsonRpcError(
                    "Server not initialized", code=ErrorCode.SERVER_NOT_INITIALIZED
                )
            return handler(params)

        return guarded

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, params: Any) -> dict[str, Any]:
        if self.capabilities is not None:
            raise JsonRpcError("initialize may only be sent once", code=ErrorCode.INVALID_REQUEST)

        request = InitializeParams.model_validate(params or {})
        if request.protocol_version != methods.PROTOCOL_VERSION:
            raise JsonRpcError(
                f"Unsupported protocol version {request.protocol_version}; "
                f"server speaks {methods.PROTOCOL_VERSION}",
                code=ErrorCode.INVALID_PARAMS,
            )

        self.capabilities = CapabilitySet.from_tags(request.capabilities, self.features)
        self.dispatcher.capabilities = self.capabilities
        client = request.client_info.name if request.client_info else "unknown client"
        _log.info("Initialized for %s: %s", client, sorted(self.capabilities.negotiated))

        return InitializeResult(
            capabilities=sorted(self.features),
            server_info=ServerInfo(name="ravenlsp", version=__version__),
        ).to_wire()

    def initialized(self, params: Any) -> None:
        _log.debug("Client confirmed initialization")

    def shutdown(self, params: Any) -> None:
        self.shutdown_requested = True
        _log.info("Shutdown requested")
        return None

    def exit(self, params: Any) -> None:
        self.exit_code = 0 if self.shutdown_requested else 1
        _log.info("Exit requested (code %d)", self.exit_code)
        self._exited.set()

    async def wait_exit(self) -> None:
        await self._exited.wait()

    # ------------------------------------------------------------------
    # Document synchronization
    # ------------------------------------------------------------------

    def did_open(self, params: Any) -> None:
        item = DidOpenTextDocumentParams.model_validate(params).text_document
        try:
            self.documents.open(item.uri, item.language_id, item.text)
        except DocumentError as e:
            _log.warning("didOpen rejected: %s", e)

    def did_change(self, params: Any) -> None:
        change = DidChangeTextDocumentParams.model_validate(params)
        try:
            self.documents.apply_change(
                change.text_document.uri,
                change.text_document.version,
                change.content_changes,
            )
        except DocumentError as e:
            # The client resyncs with close+open; nothing to reply to a notification
            _log.warning("didChange rejected: %s", e)

    def did_close(self, params: Any) -> None:
        uri = DidCloseTextDocumentParams.model_validate(params).text_document.uri
        try:
            self.documents.close(uri)
        except DocumentError as e:
            _log.warning("didClose rejected: %s", e)

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def hover(self, params: Any) -> dict[str, Any] | None:
        request = TextDocumentPositionParams.model_validate(params)
        document = self.documents.get(request.text_document.uri)
        if document is None:
            return None

        line = request.position.line
        text = document.line(line)
        if not text:
            return None
        return Hover(
            contents=text,
            range=Range(
                start=Position(line=line, character=0),
                end=Position(line=line, character=len(text.encode("utf-16-le")) // 2),
            ),
        ).to_wire()


async def serve(transport: Transport) -> int:
    """Serve one connection until exit or connection loss.

    Returns:
        Process exit code: 0 after shutdown+exit, 1 otherwise.
    """
    dispatcher = Dispatcher(transport, name="server", request_timeout=None)
    server = RavenLanguageServer(dispatcher)
    dispatcher.start()

    exit_wait = asyncio.ensure_future(server.wait_exit())
    closed_wait = asyncio.ensure_future(dispatcher.wait_closed())
    try:
        await asyncio.wait({exit_wait, closed_wait}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        exit_wait.cancel()
        closed_wait.cancel()
        await dispatcher.close()

    if server.exit_code is None:
        _log.warning("Connection ended without exit notification")
        return 1
    return server.exit_code


async def serve_stdio() -> int:
    """Serve over this process's stdin/stdout."""
    from ravenlsp.transport.stdio import StdioTransport

    transport = await StdioTransport.from_stdio()
    return await serve(transport)
