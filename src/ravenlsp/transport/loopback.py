"""In-memory transport pair for running both endpoints in one event loop."""

from __future__ import annotations

import asyncio

from ravenlsp.transport.stdio import StdioTransport


class _LoopbackWriter:
    """Minimal StreamWriter stand-in that feeds the peer's StreamReader."""

    def __init__(self, peer: asyncio.StreamReader) -> None:
        self._peer = peer
        self._closing = False

    def write(self, data: bytes) -> None:
        if self._closing:
            raise ConnectionResetError("Loopback writer is closed")
        self._peer.feed_data(data)

    async def drain(self) -> None:
        # Yield so the reading side gets a chance to run
        await asyncio.sleep(0)

    def is_closing(self) -> bool:
        return self._closing

    def close(self) -> None:
        if not self._closing:
            self._closing = True
            self._peer.feed_eof()

    async def wait_closed(self) -> None:
        return None


def create_pipe() -> tuple[StdioTransport, StdioTransport]:
    """Create two transports connected back to back.

    Bytes written on one side are read, still framed, on the other. Closing
    either side delivers EOF to its peer, which is how a severed channel
    looks to the reader.
    """
    left_reader = asyncio.StreamReader()
    right_reader = asyncio.StreamReader()
    left = StdioTransport(reader=left_reader, writer=_LoopbackWriter(right_reader))  # type: ignore[arg-type]
    right = StdioTransport(reader=right_reader, writer=_LoopbackWriter(left_reader))  # type: ignore[arg-type]
    return left, right
