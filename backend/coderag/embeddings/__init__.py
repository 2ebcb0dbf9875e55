"""Embedding client.

Maps text to fixed-dimension vectors through an external inference service
(a local Ollama server by default) behind a provider abstraction.
"""
from .ollama import OllamaEmbeddingProvider
from .provider import EmbeddingProvider
from .service import EmbeddingService

__all__ = [
    "EmbeddingProvider",
    "OllamaEmbeddingProvider",
    "EmbeddingService",
]
