"""coderag - index a codebase into a vector store and query it."""

__version__ = "0.1.0"
