"""Transport layer: message types, Content-Length framing and byte streams."""

from ravenlsp.transport.framing import (
    FrameDecoder,
    decode,
    encode,
    parse_header,
    read_message,
    write_message,
)
from ravenlsp.transport.loopback import create_pipe
from ravenlsp.transport.messages import (
    Message,
    Notification,
    Request,
    RequestId,
    Response,
    message_from_dict,
)
from ravenlsp.transport.stdio import StdioTransport

__all__ = [
    "FrameDecoder",
    "Message",
    "Notification",
    "Request",
    "RequestId",
    "Response",
    "StdioTransport",
    "create_pipe",
    "decode",
    "encode",
    "message_from_dict",
    "parse_header",
    "read_message",
    "write_message",
]
