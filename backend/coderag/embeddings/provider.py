"""Abstract EmbeddingProvider interface.

Every embedding back-end must implement this interface so the service layer
stays provider-agnostic.
"""
from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Provider-internal model identifier (used for logging)."""

    @property
    @abstractmethod
    def dim(self) -> int:
        """Configured dimensionality of the embedding vectors."""

    @abstractmethod
    async def embed(self, texts: list[str], input_type: str = "search_document") -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Args:
            texts: Non-empty list of strings to embed.
            input_type: ``"search_document"`` when indexing and
                        ``"search_query"`` when querying.

        Returns:
            One float vector per input text, in input order.

        Raises:
            InferenceError: On service error (network, HTTP status, bad body).
        """

    async def aclose(self) -> None:
        """Release network resources.  Default: nothing to release."""
