"""Document store: authoritative state of open text documents.

Each accepted change produces a new immutable Document snapshot with the
next version. Mutation is synchronous, so on a single event loop changes
are applied exactly in the order they are dequeued from the channel.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, replace
from typing import Any

from ravenlsp.errors import AlreadyOpen, NotOpen, VersionConflict
from ravenlsp.protocol.types import Position, TextDocumentContentChangeEvent

_log = logging.getLogger("ravenlsp.documents")

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class Document:
    uri: str
    language_id: str
    version: int
    content: str

    def line(self, number: int) -> str:
        """Text of a zero-based line without its line break ('' if out of range)."""
        lines = _LINE_BREAK.split(self.content)
        if 0 <= number < len(lines):
            return lines[number]
        return ""


def _line_starts(text: str) -> list[int]:
    return [0] + [m.end() for m in _LINE_BREAK.finditer(text)]


def offset_at(text: str, position: Position) -> int:
    """Convert a line/UTF-16 character position to a string index.

    Positions past the end of a line clamp to the line end; positions past
    the last line clamp to the end of the text.
    """
    starts = _line_starts(text)
    if position.line < 0:
        return 0
    if position.line >= len(starts):
        return len(text)

    start = starts[position.line]
    end = starts[position.line + 1] if position.line + 1 < len(starts) else len(text)
    line_text = _LINE_BREAK.sub("", text[start:end])

    units = 0
    index = 0
    for ch in line_text:
        if units >= position.character:
            break
        units += 2 if ord(ch) > 0xFFFF else 1
        index += 1
    return start + index


def apply_content_changes(
    text: str, changes: Sequence[TextDocumentContentChangeEvent]
) -> str:
    """Apply content changes in order and return the new text."""
    for change in changes:
        if change.range is None:
            text = change.text
            continue
        start = offset_at(text, change.range.start)
        end = offset_at(text, change.range.end)
        if end < start:
            start, end = end, start
        text = text[:start] + change.text + text[end:]
    return text


def _coerce_changes(
    changes: Sequence[TextDocumentContentChangeEvent | dict[str, Any]],
) -> list[TextDocumentContentChangeEvent]:
    return [
        c if isinstance(c, TextDocumentContentChangeEvent)
        else TextDocumentContentChangeEvent.model_validate(c)
        for c in changes
    ]


class DocumentStore:
    """Tracks open documents keyed by uri."""

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}

    def open(self, uri: str, language_id: str, content: str) -> Document:
        """Start tracking a document at version 0.

        Raises:
            AlreadyOpen: If the uri is already tracked.
        """
        if uri in self._documents:
            raise AlreadyOpen(uri)
        document = Document(uri=uri, language_id=language_id, version=0, content=content)
        self._documents[uri] = document
        _log.debug("Opened %s (%s)", uri, language_id)
        return document

    def apply_change(
        self,
        uri: str,
        version: int,
        changes: Sequence[TextDocumentContentChangeEvent | dict[str, Any]],
    ) -> Document:
        """Apply a change carrying the next version.

        Raises:
            NotOpen: If the uri is not tracked.
            VersionConflict: If ``version`` is not current + 1. The stored
                document is left untouched; the caller must resync.
        """
        current = self._documents.get(uri)
        if current is None:
            raise NotOpen(uri)
        if version != current.version + 1:
            raise VersionConflict(uri, current.version, version)

        content = apply_content_changes(current.content, _coerce_changes(changes))
        document = replace(current, version=version, content=content)
        self._documents[uri] = document
        return document

    def close(self, uri: str) -> Document:
        """Stop tracking a document and return its last state.

        Raises:
            NotOpen: If the uri is not tracked.
        """
        try:
            document = self._documents.pop(uri)
        except KeyError:
            raise NotOpen(uri) from None
        _log.debug("Closed %s at version %d", uri, document.version)
        return document

    def get(self, uri: str) -> Document | None:
        return self._documents.get(uri)

    def clear(self) -> None:
        self._documents.clear()

    def __contains__(self, uri: object) -> bool:
        return uri in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self) -> Iterator[Document]:
        return iter(list(self._documents.values()))
