"""Wire types for protocol params and results."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ravenlsp.protocol.methods import PROTOCOL_VERSION


class RavenModel(BaseModel):
    """Base model for wire types with populate_by_name enabled."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump using the camelCase wire names."""
        return self.model_dump(by_alias=True, exclude_none=True)


# === Handshake ===


class ClientInfo(RavenModel):
    """Client identification."""

    name: str
    version: str | None = None


class ServerInfo(RavenModel):
    """Server identification."""

    name: str
    version: str | None = None


class InitializeParams(RavenModel):
    """Initialize request from client to server."""

    process_id: int | None = Field(default=None, alias="processId")
    client_info: ClientInfo | None = Field(default=None, alias="clientInfo")
    root_uri: str | None = Field(default=None, alias="rootUri")
    protocol_version: int = Field(default=PROTOCOL_VERSION, alias="protocolVersion")
    capabilities: list[str] = Field(default_factory=list)
    environment: dict[str, Any] = Field(default_factory=dict)


class InitializeResult(RavenModel):
    """Server reply to initialize."""

    capabilities: list[str] = Field(default_factory=list)
    server_info: ServerInfo | None = Field(default=None, alias="serverInfo")


class CancelParams(RavenModel):
    id: int | str


# === Documents ===


class Position(RavenModel):
    """Zero-based line and UTF-16 character offset."""

    line: int
    character: int


class Range(RavenModel):
    start: Position
    end: Position


class TextDocumentIdentifier(RavenModel):
    uri: str


class VersionedTextDocumentIdentifier(RavenModel):
    uri: str
    version: int


class TextDocumentItem(RavenModel):
    uri: str
    language_id: str = Field(alias="languageId")
    version: int
    text: str


class TextDocumentContentChangeEvent(RavenModel):
    """Either a full replacement (no range) or a ranged edit."""

    range: Range | None = None
    text: str


class DidOpenTextDocumentParams(RavenModel):
    text_document: TextDocumentItem = Field(alias="textDocument")


class DidChangeTextDocumentParams(RavenModel):
    text_document: VersionedTextDocumentIdentifier = Field(alias="textDocument")
    content_changes: list[TextDocumentContentChangeEvent] = Field(alias="contentChanges")


class DidCloseTextDocumentParams(RavenModel):
    text_document: TextDocumentIdentifier = Field(alias="textDocument")


# === Features ===


class TextDocumentPositionParams(RavenModel):
    text_document: TextDocumentIdentifier = Field(alias="textDocument")
    position: Position


class Hover(RavenModel):
    contents: str
    range: Range | None = None
