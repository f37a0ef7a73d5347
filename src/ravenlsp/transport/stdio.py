"""Stdio transport for framed JSON-RPC messages."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from ravenlsp.errors import FrameError, PeerLost
from ravenlsp.transport.framing import DEFAULT_MAX_MESSAGE_SIZE, FrameDecoder, encode
from ravenlsp.transport.messages import Message

_log = logging.getLogger("ravenlsp.transport")

READ_CHUNK_SIZE = 64 * 1024


@dataclass
class StdioTransport:
    """Async framed transport over a pair of byte streams.

    Reads arrive in arbitrary chunks; the FrameDecoder splits them into
    messages, so one read may produce several messages or none.
    """

    reader: asyncio.StreamReader | None = None
    writer: asyncio.StreamWriter | None = None
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    _write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    async def from_stdio(cls) -> StdioTransport:
        """Create transport from stdin/stdout."""
        loop = asyncio.get_running_loop()

        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin.buffer)

        writer_transport, writer_protocol = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin, sys.stdout.buffer
        )
        writer = asyncio.StreamWriter(writer_transport, writer_protocol, reader, loop)

        return cls(reader=reader, writer=writer)

    @classmethod
    def from_process(cls, process: asyncio.subprocess.Process) -> StdioTransport:
        """Create transport from subprocess stdin/stdout."""
        if process.stdin is None or process.stdout is None:
            raise ValueError("Process must have stdin and stdout pipes")

        return cls(reader=process.stdout, writer=process.stdin)

    async def messages(self) -> AsyncIterator[Message]:
        """Iterate over incoming messages until EOF.

        Raises:
            FrameError: On malformed data, or EOF in the middle of a frame.
        """
        if self.reader is None:
            return

        decoder = FrameDecoder(max_message_size=self.max_message_size)
        while True:
            chunk = await self.reader.read(READ_CHUNK_SIZE)
            if not chunk:
                if decoder.pending:
                    raise FrameError(f"EOF inside a frame ({decoder.pending} bytes buffered)")
                return
            for message in decoder.feed(chunk):
                yield message

    async def write_message(self, message: Message) -> None:
        """Write one framed message.

        Raises:
            PeerLost: If the stream is closed or the write fails.
        """
        if self.writer is None or self.writer.is_closing():
            raise PeerLost("Transport is closed")

        data = encode(message)
        async with self._write_lock:
            try:
                self.writer.write(data)
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                raise PeerLost(f"Write failed: {e}") from e

    async def close(self) -> None:
        """Close the transport."""
        if self.writer is not None and not self.writer.is_closing():
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (ConnectionError, OSError) as e:
                _log.debug("Error while closing transport: %s", e)
