"""Content-Length framing for JSON-RPC messages.

A frame is an ASCII header block, a blank line, then the UTF-8 JSON body:

    Content-Length: 52\r\n
    Content-Type: application/vscode-jsonrpc; charset=utf-8\r\n
    \r\n
    {"jsonrpc":"2.0","id":1,"method":"shutdown"}

Content-Length counts octets of the encoded body. Content-Type is optional
and ignored. Anything malformed raises FrameError, after which the stream
position is unknown and the connection must be dropped.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from ravenlsp.errors import FrameError
from ravenlsp.transport.messages import Message, message_from_dict

CONTENT_LENGTH = "Content-Length"
HEADER_ENCODING = "ascii"
CONTENT_ENCODING = "utf-8"
HEADER_SEPARATOR = b"\r\n\r\n"

DEFAULT_MAX_MESSAGE_SIZE = 10 * 1024 * 1024
MAX_HEADER_SIZE = 64 * 1024


def parse_header(header_bytes: bytes) -> dict[str, str]:
    """Split a header block (without its blank-line terminator) into a dict.

    Args:
        header_bytes: ASCII header lines joined by CRLF, for example
            ``b"Content-Length: 42"``.

    Returns:
        Header names mapped to their stripped values. Unknown headers are
        kept as they are.

    Raises:
        FrameError: On an empty or non-ASCII block, a line without a colon,
            or a missing, non-numeric or negative Content-Length.

    Example:
        >>> parse_header(b"Content-Length: 42\r\nContent-Type: application/json")
        {'Content-Length': '42', 'Content-Type': 'application/json'}
    """
    if not header_bytes:
        raise FrameError("Empty header block")
    try:
        lines = header_bytes.decode(HEADER_ENCODING).split("\r\n")
    except UnicodeDecodeError as e:
        raise FrameError(f"Header block is not ASCII: {e}") from e

    headers: dict[str, str] = {}
    for line in filter(None, lines):
        name, colon, value = line.partition(":")
        if not colon:
            raise FrameError(f"Header line has no colon: {line!r}")
        if not name.strip():
            raise FrameError(f"Header line has no name: {line!r}")
        headers[name.strip()] = value.strip()

    _content_length(headers)
    return headers


def _content_length(headers: dict[str, str], max_message_size: int | None = None) -> int:
    raw = headers.get(CONTENT_LENGTH)
    if raw is None:
        raise FrameError("Missing required Content-Length header")
    try:
        length = int(raw)
    except ValueError:
        raise FrameError(f"Invalid Content-Length {raw!r}") from None
    if length < 0:
        raise FrameError(f"Negative Content-Length {length}")
    if max_message_size is not None and length > max_message_size:
        raise FrameError(f"Message size {length} exceeds maximum {max_message_size}")
    return length


def encode(message: Message) -> bytes:
    """Frame a message for the wire.

    Args:
        message: Request, Response or Notification to send.

    Returns:
        The Content-Length header, the blank line and the compact UTF-8 body.

    Raises:
        FrameError: If the message cannot be serialized to JSON.

    Example:
        >>> encode(Notification(method="exit"))
        b'Content-Length: 33\r\n\r\n{"jsonrpc":"2.0","method":"exit"}'
    """
    return encode_payload(message.to_dict())


def encode_payload(payload: dict[str, Any]) -> bytes:
    """Frame an already-built JSON-RPC object.

    The payload is written as given; nothing checks that it is a valid
    JSON-RPC message.

    Raises:
        FrameError: If the payload cannot be serialized to JSON.
    """
    try:
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode(CONTENT_ENCODING)
    except (TypeError, ValueError) as e:
        raise FrameError(f"Message cannot be serialized to JSON: {e}") from e
    return f"{CONTENT_LENGTH}: {len(body)}\r\n\r\n".encode(HEADER_ENCODING) + body


def _parse_body(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body.decode(CONTENT_ENCODING))
    except UnicodeDecodeError as e:
        raise FrameError(f"Invalid UTF-8 in message body: {e}") from e
    except json.JSONDecodeError as e:
        raise FrameError(f"Invalid JSON in message body: {e}") from e
    if not isinstance(payload, dict):
        raise FrameError(f"JSON-RPC message must be an object, got {type(payload).__name__}")
    return payload


def decode(
    buffer: bytes,
    *,
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
) -> tuple[Message | None, bytes]:
    """Decode one message from the front of ``buffer``.

    Args:
        buffer: Bytes received so far. May hold a partial frame or several
            complete ones.
        max_message_size: Largest accepted Content-Length, in bytes.

    Returns:
        ``(message, remaining)`` when a complete frame is available, or
        ``(None, buffer)`` when more bytes are needed.

    Raises:
        FrameError: If the header or body is malformed.
        ProtocolViolation: If the body is JSON but not a JSON-RPC message.

    Example:
        >>> message, rest = decode(encode(Notification(method="exit")) + b"Content-")
        >>> message.method, rest
        ('exit', b'Content-')
    """
    separator = buffer.find(HEADER_SEPARATOR)
    if separator == -1:
        if len(buffer) > MAX_HEADER_SIZE:
            raise FrameError(f"No header terminator within {MAX_HEADER_SIZE} bytes")
        return None, buffer

    length = _content_length(parse_header(buffer[:separator]), max_message_size)
    body_start = separator + len(HEADER_SEPARATOR)
    body_end = body_start + length
    if len(buffer) < body_end:
        return None, buffer
    return message_from_dict(_parse_body(buffer[body_start:body_end])), buffer[body_end:]


class FrameDecoder:
    """Incremental decoder that carries partial frames across reads.

    Example:
        >>> decoder = FrameDecoder()
        >>> frame = encode(Notification(method="exit"))
        >>> decoder.feed(frame[:10])
        []
        >>> [m.method for m in decoder.feed(frame[10:])]
        ['exit']
    """

    def __init__(self, *, max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE) -> None:
        self.max_message_size = max_message_size
        self._buffer = b""

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet forming a complete frame."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[Message]:
        """Add bytes and return every message that is now complete."""
        self._buffer += data
        messages: list[Message] = []
        while True:
            message, self._buffer = decode(self._buffer, max_message_size=self.max_message_size)
            if message is None:
                return messages
            messages.append(message)


async def read_message(
    reader: asyncio.StreamReader,
    *,
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
) -> Message | None:
    """Read exactly one message from a stream.

    Args:
        reader: Stream positioned at a frame boundary.
        max_message_size: Largest accepted Content-Length, in bytes.

    Returns:
        The decoded message, or None when the stream ends cleanly between
        frames.

    Raises:
        FrameError: On malformed framing or EOF inside a frame.
        ProtocolViolation: If the body is JSON but not a JSON-RPC message.

    Example:
        >>> while (message := await read_message(reader)) is not None:
        ...     await dispatch(message)
    """
    try:
        block = await reader.readuntil(HEADER_SEPARATOR)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise FrameError(f"Unexpected EOF in header block ({len(e.partial)} bytes)") from e
    except asyncio.LimitOverrunError as e:
        raise FrameError(f"Header block too long: {e}") from e

    headers = parse_header(block[: -len(HEADER_SEPARATOR)])
    length = _content_length(headers, max_message_size)
    try:
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise FrameError(
            f"Incomplete message body: expected {length} bytes, got {len(e.partial)}"
        ) from e
    return message_from_dict(_parse_body(body))


async def write_message(
    writer: asyncio.StreamWriter,
    message: Message,
    *,
    drain: bool = True,
) -> None:
    """Write one framed message; header and body go out in a single write.

    Args:
        writer: Stream to write to.
        message: Message to frame and send.
        drain: Wait for the write buffer to flush. Pass False when batching
            several messages and draining once afterwards.
    """
    writer.write(encode(message))
    if drain:
        await writer.drain()
