"""EmbeddingService - thin orchestration layer over EmbeddingProvider.

Validates batch-size constraints, caps the number of requests in flight to
the inference service, retries transient failures with bounded backoff and
checks every returned vector against the configured dimension.
"""
import asyncio
import logging

from coderag.config import EmbeddingSettings
from coderag.errors import DimensionMismatchError
from coderag.retry import call_with_retry

from .provider import EmbeddingProvider

logger = logging.getLogger(__name__)

PROBE_TEXT = "dimension probe"


class EmbeddingService:
    """Validates requests and delegates to an EmbeddingProvider.

    Args:
        provider: Concrete embedding provider to use.
        settings: Batch, concurrency and retry limits.
    """

    def __init__(self, provider: EmbeddingProvider, settings: EmbeddingSettings) -> None:
        self._provider = provider
        self._settings = settings
        self._semaphore = asyncio.Semaphore(settings.max_concurrency)
        self.calls = 0  # provider requests issued, retries included

    @property
    def model_id(self) -> str:
        return self._provider.model_id

    @property
    def dim(self) -> int:
        return self._settings.dim

    @property
    def max_batch(self) -> int:
        return self._settings.max_batch

    async def embed(self, texts: list[str], input_type: str = "search_document") -> list[list[float]]:
        """Embed a validated batch of texts.

        Raises:
            ValueError:             If ``texts`` is empty or exceeds ``max_batch``.
            InferenceError:         After retries are exhausted.
            DimensionMismatchError: If any vector has the wrong length (not retried).
        """
        if not texts:
            raise ValueError("texts must not be empty")
        if len(texts) > self._settings.max_batch:
            raise ValueError(
                f"Batch size {len(texts)} exceeds maximum of {self._settings.max_batch}"
            )

        async def _attempt() -> list[list[float]]:
            async with self._semaphore:
                self.calls += 1
                return await self._provider.embed(texts, input_type=input_type)

        vectors = await call_with_retry(
            _attempt,
            max_retries=self._settings.max_retries,
            backoff_base=self._settings.backoff_base,
            backoff_max=self._settings.backoff_max,
            label=f"embed[{len(texts)}]",
        )
        for vec in vectors:
            if len(vec) != self._settings.dim:
                raise DimensionMismatchError(self._settings.dim, len(vec), self.model_id)

        logger.debug(
            "[EmbeddingService] embedded %d text(s) model=%s input_type=%s",
            len(texts), self.model_id, input_type,
        )
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        vectors = await self.embed([text], input_type="search_query")
        return vectors[0]

    async def probe_dimension(self) -> int:
        """Embed a probe string and check the model's output dimension.

        Called once at startup so a model/config mismatch surfaces before
        any ingestion or query work is attempted.
        """
        vector = (await self.embed([PROBE_TEXT], input_type="search_query"))[0]
        logger.info(
            "[EmbeddingService] Probe ok: model=%s dim=%d", self.model_id, len(vector),
        )
        return len(vector)

    async def aclose(self) -> None:
        await self._provider.aclose()
