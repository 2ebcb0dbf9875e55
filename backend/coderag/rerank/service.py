"""RerankService - concurrency-capped, retrying front for a RerankProvider."""
import asyncio
import logging

from coderag.config import RerankSettings
from coderag.errors import InferenceError
from coderag.retry import call_with_retry

from .provider import RerankProvider

logger = logging.getLogger(__name__)


class RerankService:
    """Splits candidates into provider-sized batches and scores them.

    At most ``settings.max_concurrency`` provider requests are in flight at
    once.  Each batch is retried independently; if any batch still fails
    the whole call fails with ``InferenceError`` (the query engine then falls
    back to stage-1 ordering).
    """

    def __init__(self, provider: RerankProvider, settings: RerankSettings) -> None:
        self._provider = provider
        self._settings = settings
        self._semaphore = asyncio.Semaphore(settings.max_concurrency)
        self.calls = 0

    @property
    def model_id(self) -> str:
        return self._provider.model_id

    async def score(self, query: str, candidates: list[str]) -> list[float]:
        if not candidates:
            return []

        size = max(1, self._provider.batch_size)
        batches = [candidates[i:i + size] for i in range(0, len(candidates), size)]

        async def _score_batch(batch: list[str]) -> list[float]:
            async def _attempt() -> list[float]:
                async with self._semaphore:
                    self.calls += 1
                    return await self._provider.score(query, batch)

            scores = await call_with_retry(
                _attempt,
                max_retries=self._settings.max_retries,
                backoff_base=self._settings.backoff_base,
                backoff_max=self._settings.backoff_max,
                label=f"rerank[{len(batch)}]",
            )
            if len(scores) != len(batch):
                raise InferenceError(
                    f"Reranker returned {len(scores)} scores for {len(batch)} candidates"
                )
            return scores

        tasks = [asyncio.ensure_future(_score_batch(b)) for b in batches]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        scores = [s for batch_scores in results for s in batch_scores]
        logger.debug(
            "[RerankService] scored %d candidate(s) in %d batch(es) model=%s",
            len(scores), len(batches), self.model_id,
        )
        return scores

    async def aclose(self) -> None:
        await self._provider.aclose()
