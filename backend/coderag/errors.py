"""Typed errors raised by the indexing and query pipelines.

Per-item errors (``ChunkingError``, ``InferenceError``) are aggregated into
reports or trigger degraded mode; configuration-level errors
(``DimensionMismatchError``, ``ConfigurationError``) and
``StoreConnectivityError`` abort the current run.
"""


class CodeRagError(Exception):
    """Base class for all coderag errors."""


class ChunkingError(CodeRagError):
    """Document content is malformed or binary and cannot be chunked."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot chunk {path}: {reason}")
        self.path = path
        self.reason = reason


class InferenceError(CodeRagError):
    """The embedding or reranking service is unreachable or returned garbage."""


class DimensionMismatchError(CodeRagError):
    """A vector does not match the configured embedding dimension."""

    def __init__(self, expected: int, actual: int, context: str = "") -> None:
        where = f" ({context})" if context else ""
        super().__init__(
            f"Embedding dimension mismatch{where}: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class StoreConnectivityError(CodeRagError):
    """The vector store cannot be read from or written to."""


class InvalidQueryParameters(CodeRagError):
    """Query tunables are inconsistent (e.g. ``top_n > limit``)."""


class ConfigurationError(CodeRagError):
    """Settings are inconsistent with persisted state or with each other."""
