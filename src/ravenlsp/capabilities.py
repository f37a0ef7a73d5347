"""Capability negotiation: the initialize handshake."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ravenlsp import __version__
from ravenlsp.dispatcher import DEFAULT_TIMEOUT
from ravenlsp.errors import (
    JsonRpcError,
    NegotiationError,
    PeerLost,
    ProtocolViolation,
    RequestTimeout,
    SessionError,
    UnsupportedCapability,
)
from ravenlsp.protocol.methods import INITIALIZE, INITIALIZED, METHOD_CAPABILITIES
from ravenlsp.protocol.types import ClientInfo, InitializeParams, InitializeResult

if TYPE_CHECKING:
    from ravenlsp.dispatcher import Dispatcher

_log = logging.getLogger("ravenlsp.capabilities")


@dataclass(frozen=True)
class CapabilitySet:
    """Feature tags advertised by each side; immutable once negotiated."""

    client: frozenset[str]
    server: frozenset[str]

    @classmethod
    def from_tags(cls, client: Iterable[str], server: Iterable[str]) -> CapabilitySet:
        return cls(client=frozenset(client), server=frozenset(server))

    @property
    def negotiated(self) -> frozenset[str]:
        return self.client & self.server

    def supports(self, tag: str) -> bool:
        return tag in self.negotiated

    def require(self, tag: str, method: str | None = None) -> None:
        """Raise UnsupportedCapability unless ``tag`` was negotiated."""
        if tag not in self.negotiated:
            what = f"{method} requires '{tag}'" if method else f"'{tag}'"
            raise UnsupportedCapability(f"Capability not negotiated: {what}")

    def check_method(self, method: str) -> None:
        """Gate a method by the feature tag it belongs to, if any."""
        tag = METHOD_CAPABILITIES.get(method)
        if tag is not None:
            self.require(tag, method)


class CapabilityNegotiator:
    """Runs the single initialize exchange of a session.

    The negotiated set is installed on the dispatcher, after which feature
    traffic outside the set fails fast on both sending and receiving side.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        client_tags: Iterable[str],
        *,
        client_info: ClientInfo | None = None,
        root_uri: str | None = None,
        environment: dict[str, Any] | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._client_tags = frozenset(client_tags)
        self._client_info = client_info or ClientInfo(name="ravenlsp", version=__version__)
        self._root_uri = root_uri
        self._environment = environment or {}
        self._result: CapabilitySet | None = None
        self.server_info: dict[str, Any] | None = None

    @property
    def result(self) -> CapabilitySet | None:
        return self._result

    def build_params(self) -> InitializeParams:
        return InitializeParams(
            process_id=os.getpid(),
            client_info=self._client_info,
            root_uri=self._root_uri,
            capabilities=sorted(self._client_tags),
            environment=self._environment,
        )

    async def negotiate(self, *, timeout: float | None = DEFAULT_TIMEOUT) -> CapabilitySet:
        """Send initialize, compute the intersection and send initialized.

        Args:
            timeout: Deadline for the initialize request. Defaults to the
                dispatcher's request_timeout.

        Raises:
            SessionError: If this negotiator already ran.
            NegotiationError: If the server refused or the exchange failed.
        """
        if self._result is not None:
            raise SessionError("Capabilities already negotiated for this session")

        params = self.build_params().to_wire()
        try:
            raw = await self._dispatcher.send_request(INITIALIZE, params, timeout=timeout)
            reply = InitializeResult.model_validate(raw or {})
        except JsonRpcError as e:
            raise NegotiationError(f"Server refused initialize: {e.message}") from e
        except (RequestTimeout, PeerLost, ProtocolViolation) as e:
            raise NegotiationError(f"Initialize failed: {e}") from e
        except ValueError as e:
            # pydantic.ValidationError derives from ValueError
            raise NegotiationError(f"Malformed initialize result: {e}") from e

        capabilities = CapabilitySet.from_tags(self._client_tags, reply.capabilities)
        self._result = capabilities
        self.server_info = reply.server_info.to_wire() if reply.server_info else None
        self._dispatcher.capabilities = capabilities

        try:
            await self._dispatcher.send_notification(INITIALIZED, {})
        except PeerLost as e:
            raise NegotiationError(f"Connection lost before initialized: {e}") from e
        _log.info(
            "Negotiated capabilities: %s (server=%s)",
            sorted(capabilities.negotiated),
            self.server_info,
        )
        return capabilities
