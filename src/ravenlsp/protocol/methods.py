"""Method names and the feature tags that gate them."""

from __future__ import annotations

# Lifecycle
INITIALIZE = "initialize"
INITIALIZED = "initialized"
SHUTDOWN = "shutdown"
EXIT = "exit"
CANCEL_REQUEST = "$/cancelRequest"

# Document synchronization
DID_OPEN = "textDocument/didOpen"
DID_CHANGE = "textDocument/didChange"
DID_CLOSE = "textDocument/didClose"

# Language features
HOVER = "textDocument/hover"
COMPLETION = "textDocument/completion"
DEFINITION = "textDocument/definition"
FORMATTING = "textDocument/formatting"

# Feature tags exchanged during initialize
TEXT_DOCUMENT_SYNC = "textDocumentSync"
HOVER_PROVIDER = "hover"
COMPLETION_PROVIDER = "completion"
DEFINITION_PROVIDER = "definition"
FORMATTING_PROVIDER = "formatting"

ALL_FEATURES: frozenset[str] = frozenset({
    TEXT_DOCUMENT_SYNC,
    HOVER_PROVIDER,
    COMPLETION_PROVIDER,
    DEFINITION_PROVIDER,
    FORMATTING_PROVIDER,
})

# Method name to the feature tag both sides must have negotiated.
# Methods not listed here (lifecycle, $/ methods, extensions) are never gated.
METHOD_CAPABILITIES: dict[str, str] = {
    DID_OPEN: TEXT_DOCUMENT_SYNC,
    DID_CHANGE: TEXT_DOCUMENT_SYNC,
    DID_CLOSE: TEXT_DOCUMENT_SYNC,
    HOVER: HOVER_PROVIDER,
    COMPLETION: COMPLETION_PROVIDER,
    DEFINITION: DEFINITION_PROVIDER,
    FORMATTING: FORMATTING_PROVIDER,
}

PROTOCOL_VERSION = 1
