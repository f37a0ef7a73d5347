"""Tests for the reference language server."""

from __future__ import annotations

import asyncio

import pytest

from ravenlsp.dispatcher import Dispatcher
from ravenlsp.errors import ErrorCode, JsonRpcError, UnsupportedCapability
from ravenlsp.protocol import methods
from ravenlsp.server import SERVER_FEATURES, RavenLanguageServer, serve
from ravenlsp.transport.loopback import create_pipe

from tests.utils import wait_for

URI = "file:///a.raven"


def _init_params(**overrides) -> dict:
    params = {
        "processId": 1,
        "clientInfo": {"name": "tests"},
        "capabilities": [methods.TEXT_DOCUMENT_SYNC, methods.HOVER_PROVIDER],
    }
    params.update(overrides)
    return params


@pytest.fixture
def served(dispatchers):
    client, server_dispatcher = dispatchers
    return client, RavenLanguageServer(server_dispatcher)


class TestInitialize:
    @pytest.mark.asyncio
    async def test_requests_before_initialize_are_refused(self, served) -> None:
        client, _ = served

        with pytest.raises(JsonRpcError) as exc_info:
            await client.send_request(methods.HOVER, {"textDocument": {"uri": URI}, "position": {"line": 0, "character": 0}})
        assert exc_info.value.code == ErrorCode.SERVER_NOT_INITIALIZED

    @pytest.mark.asyncio
    async def test_initialize_advertises_features(self, served) -> None:
        client, server = served

        result = await client.send_request(methods.INITIALIZE, _init_params())

        assert set(result["capabilities"]) == SERVER_FEATURES
        assert result["serverInfo"]["name"] == "ravenlsp"
        assert server.capabilities is not None
        assert server.capabilities.negotiated == SERVER_FEATURES

    @pytest.mark.asyncio
    async def test_second_initialize_refused(self, served) -> None:
        client, _ = served
        await client.send_request(methods.INITIALIZE, _init_params())

        with pytest.raises(JsonRpcError) as exc_info:
            await client.send_request(methods.INITIALIZE, _init_params())
        assert exc_info.value.code == ErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_protocol_version_mismatch(self, served) -> None:
        client, server = served

        with pytest.raises(JsonRpcError) as exc_info:
            await client.send_request(methods.INITIALIZE, _init_params(protocolVersion=99))
        assert exc_info.value.code == ErrorCode.INVALID_PARAMS
        assert server.capabilities is None

    @pytest.mark.asyncio
    async def test_server_gates_features_client_lacks(self, served) -> None:
        """Hover is refused when the client did not advertise it."""
        client, _ = served
        await client.send_request(
            methods.INITIALIZE, _init_params(capabilities=[methods.TEXT_DOCUMENT_SYNC])
        )

        with pytest.raises(UnsupportedCapability):
            await client.send_request(
                methods.HOVER, {"textDocument": {"uri": URI}, "position": {"line": 0, "character": 0}}
            )


class TestDocumentsAndHover:
    @pytest.mark.asyncio
    async def test_sync_and_hover(self, served) -> None:
        client, server = served
        await client.send_request(methods.INITIALIZE, _init_params())

        await client.send_notification(
            methods.DID_OPEN,
            {"textDocument": {"uri": URI, "languageId": "raven", "version": 0, "text": "let x = 1\nprint x\n"}},
        )
        await client.send_notification(
            methods.DID_CHANGE,
            {
                "textDocument": {"uri": URI, "version": 1},
                "contentChanges": [
                    {"range": {"start": {"line": 1, "character": 6}, "end": {"line": 1, "character": 7}}, "text": "y"}
                ],
            },
        )

        hover = await client.send_request(
            methods.HOVER, {"textDocument": {"uri": URI}, "position": {"line": 1, "character": 2}}
        )

        assert server.documents.get(URI).version == 1
        assert hover == {
            "contents": "print y",
            "range": {"start": {"line": 1, "character": 0}, "end": {"line": 1, "character": 7}},
        }

    @pytest.mark.asyncio
    async def test_stale_change_is_ignored(self, served) -> None:
        client, server = served
        await client.send_request(methods.INITIALIZE, _init_params())
        await client.send_notification(
            methods.DID_OPEN,
            {"textDocument": {"uri": URI, "languageId": "raven", "version": 0, "text": "a"}},
        )
        await client.send_notification(
            methods.DID_CHANGE,
            {"textDocument": {"uri": URI, "version": 3}, "contentChanges": [{"text": "b"}]},
        )
        # Round trip so the notifications are processed
        await client.send_request(
            methods.HOVER, {"textDocument": {"uri": URI}, "position": {"line": 0, "character": 0}}
        )

        document = server.documents.get(URI)
        assert document.version == 0
        assert document.content == "a"

    @pytest.mark.asyncio
    async def test_hover_unknown_document(self, served) -> None:
        client, _ = served
        await client.send_request(methods.INITIALIZE, _init_params())

        result = await client.send_request(
            methods.HOVER, {"textDocument": {"uri": "file:///nope.raven"}, "position": {"line": 0, "character": 0}}
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_did_close(self, served) -> None:
        client, server = served
        await client.send_request(methods.INITIALIZE, _init_params())
        await client.send_notification(
            methods.DID_OPEN,
            {"textDocument": {"uri": URI, "languageId": "raven", "version": 0, "text": "a"}},
        )
        await client.send_notification(methods.DID_CLOSE, {"textDocument": {"uri": URI}})

        await wait_for(lambda: URI not in server.documents)

    @pytest.mark.asyncio
    async def test_bad_params_are_invalid_params(self, served) -> None:
        client, _ = served
        await client.send_request(methods.INITIALIZE, _init_params())

        with pytest.raises(JsonRpcError) as exc_info:
            await client.send_request(methods.HOVER, {"position": "nowhere"})
        assert exc_info.value.code == ErrorCode.INVALID_PARAMS


class TestServe:
    """serve() exit codes."""

    @pytest.mark.asyncio
    async def test_shutdown_then_exit_returns_zero(self) -> None:
        client_side, server_side = create_pipe()
        server_task = asyncio.create_task(serve(server_side))
        client = Dispatcher(client_side)
        client.start()

        await client.send_request(methods.INITIALIZE, _init_params())
        assert await client.send_request(methods.SHUTDOWN) is None
        await client.send_notification(methods.EXIT)

        assert await asyncio.wait_for(server_task, timeout=2.0) == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_exit_without_shutdown_returns_one(self) -> None:
        client_side, server_side = create_pipe()
        server_task = asyncio.create_task(serve(server_side))
        client = Dispatcher(client_side)
        client.start()

        await client.send_notification(methods.EXIT)

        assert await asyncio.wait_for(server_task, timeout=2.0) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_loss_returns_one(self) -> None:
        client_side, server_side = create_pipe()
        server_task = asyncio.create_task(serve(server_side))

        await client_side.close()

        assert await asyncio.wait_for(server_task, timeout=2.0) == 1
