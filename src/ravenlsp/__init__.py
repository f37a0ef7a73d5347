"""ravenlsp - client/server protocol runtime for the Raven language.

Example usage:
    from ravenlsp import LanguageClient, load_config

    client = LanguageClient(load_config())
    handle = await client.start()
    await client.did_open("file:///a.raven", "raven", "let x = 1\\n")
    await handle.dispose()
"""

__version__ = "0.1.0"

from ravenlsp.capabilities import CapabilityNegotiator, CapabilitySet
from ravenlsp.client import LanguageClient
from ravenlsp.config import Config, load_config
from ravenlsp.dispatcher import Dispatcher
from ravenlsp.documents import Document, DocumentStore
from ravenlsp.errors import (
    AlreadyOpen,
    FrameError,
    JsonRpcError,
    MethodNotFound,
    NegotiationError,
    NotOpen,
    PeerLost,
    ProtocolViolation,
    RavenError,
    RequestCancelled,
    RequestTimeout,
    SessionError,
    SessionFatal,
    UnsupportedCapability,
    VersionConflict,
)
from ravenlsp.server import RavenLanguageServer, serve
from ravenlsp.session import LanguageSession, SessionEvent, SessionEventKind, SessionState

__all__ = [
    "AlreadyOpen",
    "CapabilityNegotiator",
    "CapabilitySet",
    "Config",
    "Dispatcher",
    "Document",
    "DocumentStore",
    "FrameError",
    "JsonRpcError",
    "LanguageClient",
    "LanguageSession",
    "MethodNotFound",
    "NegotiationError",
    "NotOpen",
    "PeerLost",
    "ProtocolViolation",
    "RavenError",
    "RavenLanguageServer",
    "RequestCancelled",
    "RequestTimeout",
    "SessionError",
    "SessionEvent",
    "SessionEventKind",
    "SessionFatal",
    "SessionState",
    "UnsupportedCapability",
    "VersionConflict",
    "load_config",
    "serve",
]
