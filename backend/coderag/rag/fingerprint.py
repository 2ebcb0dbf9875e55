"""Deterministic content fingerprints.

A fingerprint is the hex SHA-256 of a length-prefixed encoding of the chunk
text, optionally followed by its source path and line range.  It is used
both as the primary key of an embedding record and as the change-detection
signal: unchanged chunks keep their fingerprint across runs and processes,
so they are never re-embedded.

Scopes:

``content``
    text only; identical snippets anywhere share one record.
``path``
    text + source path; a snippet moving within its file keeps its record
    (and its old line numbers).
``location``
    text + source path + line range; stored line numbers are always exact,
    at the cost of re-embedding chunks whose lines shifted.
"""
import hashlib
from typing import Literal

from .chunker import CodeChunk

FingerprintScope = Literal["content", "path", "location"]

FINGERPRINT_HEX_LEN = 64


def _update(h, label: str, value: str) -> None:
    data = value.encode("utf-8")
    h.update(label.encode("ascii"))
    h.update(len(data).to_bytes(8, "big"))
    h.update(data)


def fingerprint_text(text: str) -> str:
    """Fingerprint a raw string."""
    h = hashlib.sha256()
    _update(h, "text", text)
    return h.hexdigest()


def fingerprint(chunk: CodeChunk, scope: FingerprintScope = "location") -> str:
    """Fingerprint a chunk under the given *scope*."""
    h = hashlib.sha256()
    _update(h, "text", chunk.content)
    if scope in ("path", "location"):
        _update(h, "path", chunk.file_path)
    if scope == "location":
        _update(h, "lines", f"{chunk.start_line}-{chunk.end_line}")
    return h.hexdigest()
