"""Abstract RerankProvider interface."""
from abc import ABC, abstractmethod


class RerankProvider(ABC):
    """Scores (query, candidate) pairs for relevance; higher is more relevant."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Provider-internal model identifier (used for logging)."""

    @property
    def batch_size(self) -> int:
        """Maximum candidates per ``score`` call.

        The service splits larger candidate sets and issues one request per
        batch, each under the concurrency cap.
        """
        return 32

    @abstractmethod
    async def score(self, query: str, candidates: list[str]) -> list[float]:
        """Return one relevance score per candidate, in input order.

        Raises:
            InferenceError: On service error or an unparsable response.
        """

    async def aclose(self) -> None:
        """Release network resources.  Default: nothing to release."""
