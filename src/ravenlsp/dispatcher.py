"""Request/response correlation and message routing for one connection.

The Dispatcher owns the read loop of a transport. Outbound requests get a
fresh id from a monotonic counter and a single-shot future in the pending
table; inbound responses resolve those futures by id, so concurrent requests
complete independently of arrival order.

Inbound traffic:
- Requests run as tasks, started in arrival order, so a handler may itself
  send requests to the peer. ``$/cancelRequest`` cancels the handler task.
- Notifications run inline, strictly in arrival order.
- Responses resolve pending requests. A response for an id this side issued
  but already retired (timeout, cancellation) is discarded; any other
  unmatched id is a protocol violation and closes the connection.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError

from ravenlsp.errors import (
    ErrorCode,
    FrameError,
    JsonRpcError,
    MethodNotFound,
    PeerLost,
    ProtocolViolation,
    RequestCancelled,
    RequestTimeout,
)
from ravenlsp.logging import TRACE
from ravenlsp.protocol.methods import CANCEL_REQUEST
from ravenlsp.protocol.types import CancelParams
from ravenlsp.transport.messages import Message, Notification, Request, RequestId, Response

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from ravenlsp.capabilities import CapabilitySet

_log = logging.getLogger("ravenlsp.dispatcher")

Handler = Callable[[Any], Any]
CloseCallback = Callable[[Exception | None], None]

# Sentinel meaning "use the dispatcher's default timeout"
DEFAULT_TIMEOUT: Any = object()


class Transport(Protocol):
    """What the dispatcher needs from a byte channel."""

    def messages(self) -> AsyncIterator[Message]: ...

    async def write_message(self, message: Message) -> None: ...

    async def close(self) -> None: ...


@dataclass
class PendingRequest:
    """An outbound request waiting for its response."""

    id: int
    method: str
    issued_at: float
    future: asyncio.Future[Any] = field(repr=False)
    cancelled: bool = False
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)


class Dispatcher:
    """Message bus for one connection."""

    def __init__(
        self,
        transport: Transport,
        *,
        name: str = "client",
        request_timeout: float | None = 30.0,
    ) -> None:
        self.name = name
        self.request_timeout = request_timeout
        self.capabilities: CapabilitySet | None = None

        self._transport = transport
        self._ids = itertools.count(1)
        self._last_id = 0
        self._pending: dict[int, PendingRequest] = {}
        self._request_handlers: dict[str, Handler] = {}
        self._notification_handlers: dict[str, Handler] = {}
        self._inbound: dict[RequestId, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._close_callbacks: list[CloseCallback] = []
        self._reader_task: asyncio.Task[None] | None = None
        self._closed = False
        self.close_error: Exception | None = None

        self.on_notification(CANCEL_REQUEST, self._handle_cancel_request)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        """Start the read loop. Calling it again is a no-op.

        Register handlers before starting; messages arriving for a method
        without a handler are answered with MethodNotFound or dropped.
        """
        if self._reader_task is not None:
            return
        self._reader_task = asyncio.get_running_loop().create_task(
            self._read_loop(), name=f"ravenlsp-{self.name}-reader"
        )

    async def wait_closed(self) -> None:
        """Wait until the read loop has ended."""
        if self._reader_task is not None:
            await asyncio.shield(self._reader_task)

    async def close(self) -> None:
        """Stop reading, fail everything outstanding and close the transport."""
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            await asyncio.wait({self._reader_task})
        self._teardown(None)
        await self._transport.close()

    def on_close(self, callback: CloseCallback) -> None:
        """Register a callback run once when the connection ends.

        The callback receives the fatal error, or None for a clean EOF or
        an explicit close().
        """
        self._close_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Handler registration
    # ------------------------------------------------------------------

    def on_request(self, method: str, handler: Handler) -> None:
        """Register the handler for an inbound request method.

        Args:
            method: JSON-RPC method name, e.g. ``textDocument/hover``.
            handler: Plain or async callable taking the raw ``params``. Its
                return value becomes the result. A JsonRpcError keeps its
                code, a ValueError becomes InvalidParams and anything else
                becomes InternalError.

        Each request runs in its own task, so the handler may await
        requests to the peer. ``$/cancelRequest`` from the peer cancels it.

        Example:
            >>> dispatcher.on_request("textDocument/hover", server.hover)
        """
        self._request_handlers[method] = handler

    def on_notification(self, method: str, handler: Handler) -> None:
        """Register the handler for an inbound notification method.

        Args:
            method: JSON-RPC method name, e.g. ``textDocument/didChange``.
            handler: Plain or async callable taking the raw ``params``.
                Exceptions are logged; notifications have no reply.

        Notifications run inline in the read loop so they apply in arrival
        order. While an async handler is awaited nothing else is read from
        the connection. It must not await send_request() on the same
        dispatcher: the response could not be read until the handler
        returns, so the call would only end at its timeout. Spawn a task
        for such work instead.
        """
        self._notification_handlers[method] = handler

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def check_capability(self, method: str) -> None:
        """Raise UnsupportedCapability if the method is outside the negotiated set."""
        if self.capabilities is not None:
            self.capabilities.check_method(method)

    async def send_request(
        self,
        method: str,
        params: Any = None,
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> Any:
        """Send a request and wait for its result.

        Args:
            method: JSON-RPC method name.
            params: JSON-serializable params, omitted from the wire when None.
            timeout: Seconds before the request is retired with
                RequestTimeout and the peer is sent ``$/cancelRequest``.
                Defaults to the dispatcher's ``request_timeout``; None
                waits without a deadline.

        Returns:
            The ``result`` member of the peer's response.

        Raises:
            UnsupportedCapability: Method outside the negotiated set (nothing sent).
            JsonRpcError: The peer answered with an error (rebuilt by code).
            RequestCancelled: cancel_request() was called for this id.
            RequestTimeout: The deadline passed before a response arrived.
            PeerLost: The connection closed first.
        """
        self._ensure_open()
        self.check_capability(method)

        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        self._last_id = request_id
        pending = PendingRequest(
            id=request_id,
            method=method,
            issued_at=loop.time(),
            future=loop.create_future(),
        )
        self._pending[request_id] = pending

        deadline = self.request_timeout if timeout is DEFAULT_TIMEOUT else timeout
        if deadline is not None:
            pending.timer = loop.call_later(deadline, self._expire, request_id, deadline)

        try:
            await self._write(Request(id=request_id, method=method, params=params))
        except BaseException:
            self._retire(request_id)
            raise

        try:
            return await pending.future
        except asyncio.CancelledError:
            # The caller gave up; tell the peer unless the request is already settled
            if self._retire(request_id) is not None:
                self._spawn(self._send_cancel(request_id))
            raise

    async def send_notification(self, method: str, params: Any = None) -> None:
        """Send a notification; no reply is expected.

        Raises:
            UnsupportedCapability: Method outside the negotiated set (nothing sent).
            PeerLost: The connection is closed.

        Example:
            >>> await dispatcher.send_notification("textDocument/didClose", params)
        """
        self._ensure_open()
        self.check_capability(method)
        await self._write(Notification(method=method, params=params))

    async def cancel_request(self, request_id: int) -> None:
        """Cancel an outstanding request.

        The local call resolves with RequestCancelled immediately and the
        peer is advised with ``$/cancelRequest``. Unknown or completed ids
        are ignored.

        Args:
            request_id: The id allocated by send_request(), as listed by
                pending_ids().
        """
        pending = self._retire(request_id)
        if pending is None:
            return
        pending.cancelled = True
        if not pending.future.done():
            pending.future.set_exception(
                RequestCancelled(f"Request {request_id} ({pending.method}) cancelled")
            )
        await self._send_cancel(request_id)

    def pending_ids(self) -> list[int]:
        """Ids of requests still waiting for a response, oldest first."""
        return sorted(self._pending)

    # ------------------------------------------------------------------
    # Internals: outbound helpers
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise PeerLost(f"Connection '{self.name}' is closed")

    async def _write(self, message: Message) -> None:
        _log.log(TRACE, "[%s] --> %s", self.name, message)
        await self._transport.write_message(message)

    async def _send_cancel(self, request_id: int) -> None:
        if self._closed:
            return
        try:
            await self._write(Notification(method=CANCEL_REQUEST, params={"id": request_id}))
        except PeerLost as e:
            _log.debug("[%s] Could not send cancellation for %s: %s", self.name, request_id, e)

    def _retire(self, request_id: int) -> PendingRequest | None:
        pending = self._pending.pop(request_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        return pending

    def _expire(self, request_id: int, deadline: float) -> None:
        pending = self._retire(request_id)
        if pending is None:
            return
        pending.cancelled = True
        _log.warning(
            "[%s] Request %s (%s) timed out after %.1fs",
            self.name, request_id, pending.method, deadline,
        )
        if not pending.future.done():
            pending.future.set_exception(
                RequestTimeout(f"Request {request_id} ({pending.method}) timed out after {deadline}s")
            )
        self._spawn(self._send_cancel(request_id))

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Internals: inbound
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        error: Exception | None = None
        try:
            async for message in self._transport.messages():
                _log.log(TRACE, "[%s] <-- %s", self.name, message)
                await self._dispatch(message)
            _log.info("[%s] Peer closed the connection", self.name)
        except (FrameError, ProtocolViolation) as e:
            _log.error("[%s] Fatal protocol error: %s", self.name, e)
            error = e
        except (ConnectionError, OSError) as e:
            _log.error("[%s] Channel error: %s", self.name, e)
            error = e
        except Exception as e:
            _log.exception("[%s] Read loop failed", self.name)
            error = e
        finally:
            self._teardown(error)

    async def _dispatch(self, message: Message) -> None:
        if isinstance(message, Response):
            self._handle_response(message)
        elif isinstance(message, Request):
            self._handle_request(message)
        else:
            await self._handle_notification(message)

    def _handle_response(self, response: Response) -> None:
        request_id = response.id
        pending = self._retire(request_id) if isinstance(request_id, int) else None
        if pending is None:
            if isinstance(request_id, int) and 0 < request_id <= self._last_id:
                _log.debug("[%s] Discarding late response for %s", self.name, request_id)
                return
            raise ProtocolViolation(f"Response for unknown request id {request_id!r}")

        if pending.future.done():
            return
        try:
            if response.error is not None:
                pending.future.set_exception(JsonRpcError.from_dict(response.error))
            else:
                pending.future.set_result(response.result)
        except Exception as e:
            # The entry is already retired; the caller must not be left waiting
            violation = ProtocolViolation(f"Malformed response to {request_id} ({pending.method}): {e}")
            pending.future.set_exception(violation)
            raise violation from e

    def _handle_request(self, request: Request) -> None:
        if request.id in self._inbound:
            raise ProtocolViolation(f"Duplicate in-flight request id {request.id!r}")

        handler = self._request_handlers.get(request.method)
        if handler is None:
            error: JsonRpcError = MethodNotFound(f"Method not found: {request.method}")
            self._spawn(self._reply(Response(id=request.id, error=error.to_dict())))
            return

        task = asyncio.get_running_loop().create_task(self._run_request(request, handler))
        self._inbound[request.id] = task

    async def _run_request(self, request: Request, handler: Handler) -> None:
        try:
            self.check_capability(request.method)
            result = handler(request.params)
            if inspect.isawaitable(result):
                result = await result
            response = Response(id=request.id, result=result)
        except asyncio.CancelledError:
            response = Response(
                id=request.id,
                error=RequestCancelled(f"Request {request.id} cancelled").to_dict(),
            )
        except JsonRpcError as e:
            response = Response(id=request.id, error=e.to_dict())
        except ValueError as e:
            # Includes pydantic.ValidationError raised while parsing params
            response = Response(
                id=request.id,
                error=JsonRpcError(str(e), code=ErrorCode.INVALID_PARAMS).to_dict(),
            )
        except Exception as e:
            _log.exception("[%s] Handler for %s failed", self.name, request.method)
            response = Response(
                id=request.id,
                error=JsonRpcError(str(e), code=ErrorCode.INTERNAL_ERROR).to_dict(),
            )
        finally:
            self._inbound.pop(request.id, None)

        await self._reply(response)

    async def _reply(self, response: Response) -> None:
        if self._closed:
            return
        try:
            await self._write(response)
        except PeerLost as e:
            _log.debug("[%s] Could not send response %s: %s", self.name, response.id, e)

    async def _handle_notification(self, notification: Notification) -> None:
        handler = self._notification_handlers.get(notification.method)
        if handler is None:
            _log.log(TRACE, "[%s] Dropping unhandled notification %s", self.name, notification.method)
            return
        try:
            result = handler(notification.params)
            if inspect.isawaitable(result):
                await result
        except (FrameError, ProtocolViolation):
            raise
        except Exception:
            # Notifications have no reply channel; the failure is only logged
            _log.exception("[%s] Notification handler for %s failed", self.name, notification.method)

    def _handle_cancel_request(self, params: Any) -> None:
        try:
            request_id = CancelParams.model_validate(params).id
        except ValidationError as e:
            _log.warning("[%s] Ignoring malformed cancellation: %s", self.name, e)
            return
        task = self._inbound.get(request_id)
        if task is not None and not task.done():
            _log.debug("[%s] Peer cancelled request %s", self.name, request_id)
            task.cancel()

    def _teardown(self, error: Exception | None) -> None:
        if self._closed:
            return
        self._closed = True
        self.close_error = error

        pending = list(self._pending.values())
        self._pending.clear()
        for item in pending:
            if item.timer is not None:
                item.timer.cancel()
            if not item.future.done():
                item.future.set_exception(
                    PeerLost(f"Connection lost before response to {item.id} ({item.method})")
                )

        for task in list(self._inbound.values()):
            task.cancel()
        self._inbound.clear()

        if pending:
            _log.warning("[%s] Failed %d pending request(s) with PeerLost", self.name, len(pending))

        for callback in list(self._close_callbacks):
            try:
                callback(error)
            except Exception:
                _log.exception("[%s] Close callback failed", self.name)
