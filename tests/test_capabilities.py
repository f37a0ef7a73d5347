"""Tests for capability negotiation."""

from __future__ import annotations

import asyncio

import pytest

from ravenlsp.capabilities import CapabilityNegotiator, CapabilitySet
from ravenlsp.dispatcher import Dispatcher
from ravenlsp.errors import (
    ErrorCode,
    JsonRpcError,
    NegotiationError,
    PeerLost,
    ProtocolViolation,
    SessionError,
    UnsupportedCapability,
)
from ravenlsp.protocol import methods
from ravenlsp.protocol.types import ClientInfo
from ravenlsp.transport.messages import Notification, Request, Response

from tests.utils import RecordingTransport, wait_for


class TestCapabilitySet:
    def test_negotiated_is_intersection(self) -> None:
        caps = CapabilitySet.from_tags(
            {methods.TEXT_DOCUMENT_SYNC, methods.HOVER_PROVIDER},
            {methods.HOVER_PROVIDER, methods.COMPLETION_PROVIDER},
        )
        assert caps.negotiated == {methods.HOVER_PROVIDER}
        assert caps.supports(methods.HOVER_PROVIDER)
        assert not caps.supports(methods.COMPLETION_PROVIDER)
        assert not caps.supports(methods.TEXT_DOCUMENT_SYNC)

    def test_require_names_the_method(self) -> None:
        caps = CapabilitySet.from_tags({methods.HOVER_PROVIDER}, set())
        with pytest.raises(UnsupportedCapability, match="textDocument/hover"):
            caps.check_method(methods.HOVER)

    def test_lifecycle_methods_are_never_gated(self) -> None:
        caps = CapabilitySet.from_tags(set(), set())
        for method in (methods.INITIALIZE, methods.SHUTDOWN, methods.EXIT, methods.CANCEL_REQUEST):
            caps.check_method(method)

    def test_immutable(self) -> None:
        caps = CapabilitySet.from_tags({"a"}, {"a"})
        with pytest.raises(AttributeError):
            caps.client = frozenset()  # type: ignore[misc]


class TestNegotiator:
    """The initialize exchange."""

    async def _negotiate(
        self, transport: RecordingTransport, negotiator: CapabilityNegotiator, reply: Response
    ) -> CapabilitySet:
        task = asyncio.create_task(negotiator.negotiate())
        await wait_for(lambda: len(transport.written) == 1)
        transport.feed(reply)
        return await task

    @pytest.mark.asyncio
    async def test_successful_handshake(self) -> None:
        transport = RecordingTransport()
        dispatcher = Dispatcher(transport)
        dispatcher.start()
        negotiator = CapabilityNegotiator(
            dispatcher,
            [methods.TEXT_DOCUMENT_SYNC, methods.HOVER_PROVIDER],
            client_info=ClientInfo(name="test-editor", version="1.0"),
            root_uri="file:///work",
        )

        caps = await self._negotiate(
            transport,
            negotiator,
            Response(
                id=1,
                result={
                    "capabilities": [methods.HOVER_PROVIDER, methods.COMPLETION_PROVIDER],
                    "serverInfo": {"name": "raven-test", "version": "9"},
                },
            ),
        )

        request = transport.written[0]
        assert isinstance(request, Request)
        assert request.method == methods.INITIALIZE
        assert request.params["capabilities"] == [methods.HOVER_PROVIDER, methods.TEXT_DOCUMENT_SYNC]
        assert request.params["clientInfo"] == {"name": "test-editor", "version": "1.0"}
        assert request.params["rootUri"] == "file:///work"
        assert request.params["protocolVersion"] == methods.PROTOCOL_VERSION

        assert caps.negotiated == {methods.HOVER_PROVIDER}
        assert dispatcher.capabilities is caps
        assert negotiator.result is caps
        assert negotiator.server_info == {"name": "raven-test", "version": "9"}

        await wait_for(lambda: len(transport.written) == 2)
        assert transport.written[1] == Notification(method=methods.INITIALIZED, params={})
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_feature_outside_intersection_fails_without_traffic(self) -> None:
        transport = RecordingTransport()
        dispatcher = Dispatcher(transport)
        dispatcher.start()
        negotiator = CapabilityNegotiator(
            dispatcher, [methods.TEXT_DOCUMENT_SYNC, methods.HOVER_PROVIDER]
        )
        await self._negotiate(
            transport,
            negotiator,
            Response(id=1, result={"capabilities": [methods.HOVER_PROVIDER, methods.COMPLETION_PROVIDER]}),
        )
        await wait_for(lambda: len(transport.written) == 2)
        sent_before = len(transport.written)

        with pytest.raises(UnsupportedCapability):
            await dispatcher.send_notification(methods.DID_OPEN, {})
        with pytest.raises(UnsupportedCapability):
            await dispatcher.send_request(methods.COMPLETION, {})

        assert len(transport.written) == sent_before
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_negotiates_only_once(self) -> None:
        transport = RecordingTransport()
        dispatcher = Dispatcher(transport)
        dispatcher.start()
        negotiator = CapabilityNegotiator(dispatcher, [methods.HOVER_PROVIDER])
        await self._negotiate(transport, negotiator, Response(id=1, result={"capabilities": []}))

        with pytest.raises(SessionError, match="already negotiated"):
            await negotiator.negotiate()
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_server_refusal(self, dispatchers) -> None:
        client, server = dispatchers

        def refuse(params):
            raise JsonRpcError("go away", code=ErrorCode.INVALID_REQUEST)

        server.on_request(methods.INITIALIZE, refuse)
        negotiator = CapabilityNegotiator(client, [methods.HOVER_PROVIDER])

        with pytest.raises(NegotiationError, match="go away"):
            await negotiator.negotiate()
        assert client.capabilities is None
        assert negotiator.result is None

    @pytest.mark.asyncio
    async def test_malformed_result(self, dispatchers) -> None:
        client, server = dispatchers
        server.on_request(methods.INITIALIZE, lambda params: {"capabilities": "hover"})

        with pytest.raises(NegotiationError, match="Malformed"):
            await CapabilityNegotiator(client, [methods.HOVER_PROVIDER]).negotiate()

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        transport = RecordingTransport()
        dispatcher = Dispatcher(transport)
        dispatcher.start()

        with pytest.raises(NegotiationError, match="timed out"):
            await CapabilityNegotiator(dispatcher, []).negotiate(timeout=0.02)
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_peer_gone(self) -> None:
        transport = RecordingTransport()
        dispatcher = Dispatcher(transport)
        dispatcher.start()
        task = asyncio.create_task(CapabilityNegotiator(dispatcher, []).negotiate())
        await wait_for(lambda: len(transport.written) == 1)

        transport.sever()

        with pytest.raises(NegotiationError):
            await task

    @pytest.mark.asyncio
    async def test_default_deadline_comes_from_dispatcher(self) -> None:
        transport = RecordingTransport()
        dispatcher = Dispatcher(transport, request_timeout=0.05)
        dispatcher.start()

        with pytest.raises(NegotiationError, match="timed out"):
            await asyncio.wait_for(CapabilityNegotiator(dispatcher, []).negotiate(), timeout=2.0)
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_connection_lost_before_initialized(self) -> None:
        class DropsAfterInitialize(RecordingTransport):
            async def write_message(self, message) -> None:
                if isinstance(message, Notification) and message.method == methods.INITIALIZED:
                    raise PeerLost("pipe closed")
                await super().write_message(message)

        transport = DropsAfterInitialize()
        dispatcher = Dispatcher(transport)
        dispatcher.start()

        with pytest.raises(NegotiationError, match="before initialized") as excinfo:
            await self._negotiate(
                transport,
                CapabilityNegotiator(dispatcher, [methods.HOVER_PROVIDER]),
                Response(id=1, result={"capabilities": [methods.HOVER_PROVIDER]}),
            )
        assert isinstance(excinfo.value.__cause__, PeerLost)
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_malformed_initialize_response(self) -> None:
        transport = RecordingTransport()
        dispatcher = Dispatcher(transport)
        dispatcher.start()

        with pytest.raises(NegotiationError) as excinfo:
            await self._negotiate(
                transport,
                CapabilityNegotiator(dispatcher, []),
                Response(id=1, error={"code": {"bad": 1}, "message": "x"}),
            )
        assert isinstance(excinfo.value.__cause__, ProtocolViolation)
        await dispatcher.close()
