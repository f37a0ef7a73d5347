"""Shared test utilities for ravenlsp tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from ravenlsp.config import Config, RestartConfig, ShutdownConfig
from ravenlsp.session.process import Endpoint
from ravenlsp.transport.loopback import create_pipe
from ravenlsp.transport.messages import Message


class RecordingTransport:
    """Transport fake that records writes and replays scripted inbound messages.

    Inbound messages are pushed with ``feed()``; ``sever()`` ends the stream
    as if the peer had gone away.
    """

    def __init__(self) -> None:
        self.written: list[Message] = []
        self._inbound: asyncio.Queue[Message | None] = asyncio.Queue()
        self.closed = False

    def feed(self, message: Message) -> None:
        self._inbound.put_nowait(message)

    def sever(self) -> None:
        self._inbound.put_nowait(None)

    async def messages(self) -> AsyncIterator[Message]:
        while True:
            message = await self._inbound.get()
            if message is None:
                return
            yield message

    async def write_message(self, message: Message) -> None:
        self.written.append(message)

    async def close(self) -> None:
        self.closed = True
        self.sever()


class InProcessServers:
    """Connector that starts a fresh in-process reference server per call.

    Keeps every endpoint so tests can sever a connection to simulate a crash.
    """

    def __init__(self) -> None:
        self.endpoints: list[Endpoint] = []

    async def __call__(self) -> Endpoint:
        from ravenlsp.server import serve

        client_side, server_side = create_pipe()
        task = asyncio.get_running_loop().create_task(serve(server_side))
        endpoint = Endpoint(transport=client_side, task=task)
        endpoint.server_transport = server_side  # type: ignore[attr-defined]
        self.endpoints.append(endpoint)
        return endpoint

    @property
    def latest(self) -> Endpoint:
        return self.endpoints[-1]

    def crash_latest(self) -> None:
        """Kill the newest server: cancel its task and close its side of the pipe."""
        endpoint = self.latest
        assert endpoint.task is not None
        endpoint.task.cancel()
        endpoint.server_transport.writer.close()  # type: ignore[attr-defined]


def fast_config(**restart: object) -> Config:
    """Config with short timeouts suitable for tests."""
    config = Config()
    config.client.request_timeout = 2.0
    config.shutdown = ShutdownConfig(grace_timeout=1.0, interrupt_timeout=1.0, terminate_timeout=1.0)
    config.restart = RestartConfig(initial_delay=0.01, max_delay=0.05, **restart)  # type: ignore[arg-type]
    return config


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll a predicate on the event loop until it holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)
