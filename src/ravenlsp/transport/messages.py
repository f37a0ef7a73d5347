"""JSON-RPC 2.0 message types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from ravenlsp.errors import ProtocolViolation

JSONRPC_VERSION = "2.0"

RequestId = Union[int, str]


@dataclass
class Request:
    """A request: expects exactly one Response with the same id."""

    id: RequestId
    method: str
    params: Any = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            d["params"] = self.params
        return d


@dataclass
class Response:
    """A response carrying either a result or an error object."""

    id: RequestId | None
    result: Any = None
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        # A null result is still a result; only one of the two keys is sent
        if self.error is not None:
            d["error"] = self.error
        else:
            d["result"] = self.result
        return d


@dataclass
class Notification:
    """A notification (no id, no response expected)."""

    method: str
    params: Any = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            d["params"] = self.params
        return d


Message = Union[Request, Response, Notification]


def message_from_dict(data: dict[str, Any]) -> Message:
    """Classify a decoded JSON object as a Request, Response or Notification.

    Raises:
        ProtocolViolation: If the object is not a valid JSON-RPC message.
    """
    method = data.get("method")
    has_id = "id" in data

    if method is not None:
        if not isinstance(method, str):
            raise ProtocolViolation(f"Method must be a string, got {type(method).__name__}")
        if has_id:
            request_id = data["id"]
            if not isinstance(request_id, (int, str)) or isinstance(request_id, bool):
                raise ProtocolViolation(f"Invalid request id: {request_id!r}")
            return Request(id=request_id, method=method, params=data.get("params"))
        return Notification(method=method, params=data.get("params"))

    if has_id and ("result" in data or "error" in data):
        error = data.get("error")
        if error is not None:
            _check_error_object(error)
        return Response(id=data["id"], result=data.get("result"), error=error)

    raise ProtocolViolation(f"Not a JSON-RPC message: {sorted(data)}")


def _check_error_object(error: Any) -> None:
    if not isinstance(error, dict):
        raise ProtocolViolation(f"Error must be an object, got {type(error).__name__}")
    code = error.get("code")
    if not isinstance(code, int) or isinstance(code, bool):
        raise ProtocolViolation(f"Error code must be an integer, got {code!r}")
    if not isinstance(error.get("message"), str):
        raise ProtocolViolation(f"Error message must be a string, got {error.get('message')!r}")
