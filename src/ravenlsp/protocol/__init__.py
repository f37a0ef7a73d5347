"""Protocol surface: method names, feature tags and wire types."""

from ravenlsp.protocol import methods
from ravenlsp.protocol.types import (
    CancelParams,
    ClientInfo,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    Hover,
    InitializeParams,
    InitializeResult,
    Position,
    Range,
    ServerInfo,
    TextDocumentContentChangeEvent,
    TextDocumentIdentifier,
    TextDocumentItem,
    TextDocumentPositionParams,
    VersionedTextDocumentIdentifier,
)

__all__ = [
    "CancelParams",
    "ClientInfo",
    "DidChangeTextDocumentParams",
    "DidCloseTextDocumentParams",
    "DidOpenTextDocumentParams",
    "Hover",
    "InitializeParams",
    "InitializeResult",
    "Position",
    "Range",
    "ServerInfo",
    "TextDocumentContentChangeEvent",
    "TextDocumentIdentifier",
    "TextDocumentItem",
    "TextDocumentPositionParams",
    "VersionedTextDocumentIdentifier",
    "methods",
]
