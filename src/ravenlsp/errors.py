"""Error taxonomy for the Raven protocol runtime.

Errors fall into three groups:
- Fatal transport/protocol errors (FrameError, ProtocolViolation) that
  close the connection.
- JSON-RPC errors carried inside error Responses (JsonRpcError and its
  subclasses), rebuilt on the receiving side by JsonRpcError.from_dict().
- Local outcomes of a single operation (RequestTimeout, PeerLost, document
  and session errors) that never reach the wire.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """JSON-RPC and LSP error codes."""

    # JSON-RPC defined errors
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Server defined errors
    SERVER_NOT_INITIALIZED = -32002
    UNKNOWN_ERROR_CODE = -32001
    UNSUPPORTED_CAPABILITY = -32003

    # LSP request errors
    REQUEST_CANCELLED = -32800
    CONTENT_MODIFIED = -32801


class RavenError(Exception):
    """Base class for all ravenlsp errors."""


class FrameError(RavenError):
    """Malformed transport data.

    Raised when:
    - Content-Length header is missing, not an integer, or negative
    - A header line is malformed
    - The declared body exceeds the size limit
    - The body is not valid UTF-8 JSON describing an object

    Terminal for the connection: the decoder never tries to resync.
    """


class ProtocolViolation(RavenError):
    """A well-framed message that breaks the protocol (e.g. unmatched response id)."""


class JsonRpcError(RavenError):
    """Error carried in a JSON-RPC error Response."""

    code: int = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-RPC error object."""
        error: dict[str, Any] = {
            "code": int(self.code),
            "message": self.message,
        }
        if self.data is not None:
            error["data"] = self.data
        return error

    @classmethod
    def from_dict(cls, error: dict[str, Any]) -> JsonRpcError:
        """Rebuild an error from a received error object.

        Known codes map onto their dedicated subclass so callers can catch
        MethodNotFound, RequestCancelled, etc. directly.
        """
        code = error.get("code", ErrorCode.UNKNOWN_ERROR_CODE)
        message = error.get("message", "")
        data = error.get("data")
        error_type = _ERROR_TYPES.get(code, JsonRpcError)
        if error_type is JsonRpcError:
            return JsonRpcError(message, code=code, data=data)
        return error_type(message, data=data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={int(self.code)}, message={self.message!r})"


class MethodNotFound(JsonRpcError):
    """The peer has no handler for the requested method."""

    code = ErrorCode.METHOD_NOT_FOUND


class UnsupportedCapability(JsonRpcError):
    """The method belongs to a feature outside the negotiated capability set."""

    code = ErrorCode.UNSUPPORTED_CAPABILITY


class RequestCancelled(JsonRpcError):
    """The request was cancelled before a result was produced."""

    code = ErrorCode.REQUEST_CANCELLED


_ERROR_TYPES: dict[int, type[JsonRpcError]] = {
    ErrorCode.METHOD_NOT_FOUND: MethodNotFound,
    ErrorCode.UNSUPPORTED_CAPABILITY: UnsupportedCapability,
    ErrorCode.REQUEST_CANCELLED: RequestCancelled,
}


class RequestTimeout(RavenError):
    """No response arrived before the request deadline."""


class PeerLost(RavenError):
    """The connection to the peer closed while an operation was outstanding."""


class DocumentError(RavenError):
    """Base class for document store errors."""

    def __init__(self, uri: str, message: str) -> None:
        super().__init__(message)
        self.uri = uri


class AlreadyOpen(DocumentError):
    def __init__(self, uri: str) -> None:
        super().__init__(uri, f"Document already open: {uri}")


class NotOpen(DocumentError):
    def __init__(self, uri: str) -> None:
        super().__init__(uri, f"Document not open: {uri}")


class VersionConflict(DocumentError):
    """A change did not carry the next version; the document must be resynced."""

    def __init__(self, uri: str, current: int, received: int) -> None:
        super().__init__(
            uri,
            f"Version conflict for {uri}: expected {current + 1}, got {received}",
        )
        self.current = current
        self.received = received


class SessionError(RavenError):
    """Operation not allowed in the session's current state."""


class NegotiationError(SessionError):
    """The initialize handshake failed or was refused by the server."""


class SessionFatal(SessionError):
    """The session crashed and could not be recovered."""
