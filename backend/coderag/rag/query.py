"""Two-stage query pipeline: dense retrieval, then reranking.

1. Embed the query and fetch the ``limit`` nearest records (ascending
   distance, ties by id).
2. Score ``(query, candidate.text)`` pairs with the reranker, sort by
   descending score (ties keep the stage-1 order) and keep ``top_n``.

If the reranker is missing or fails, the stage-1 order is truncated to
``top_n`` instead: quality degrades, the query still answers.
"""
import logging
from typing import Optional

from coderag.embeddings.service import EmbeddingService
from coderag.errors import InferenceError, InvalidQueryParameters
from coderag.rerank.service import RerankService

from .schemas import EmbeddingRecord, RankedResult
from .vector_store import FaissVectorStore

logger = logging.getLogger(__name__)


def validate_query_parameters(text: str, limit: int, top_n: int) -> None:
    """Reject inconsistent tunables before any inference call is made."""
    if not text or not text.strip():
        raise InvalidQueryParameters("query text must not be empty")
    if limit < 1:
        raise InvalidQueryParameters(f"limit must be >= 1, got {limit}")
    if top_n < 1:
        raise InvalidQueryParameters(f"top_n must be >= 1, got {top_n}")
    if top_n > limit:
        raise InvalidQueryParameters(f"top_n ({top_n}) must not exceed limit ({limit})")


class QueryEngine:
    """Answers queries against a ``FaissVectorStore``.

    Args:
        store:    Vector store to search (read-only).
        embedder: Embedding service used for the query vector.
        reranker: Optional rerank service; ``None`` always uses degraded mode.
    """

    def __init__(
        self,
        store: FaissVectorStore,
        embedder: EmbeddingService,
        reranker: Optional[RerankService] = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._reranker = reranker

    async def query(self, text: str, limit: int, top_n: int) -> list[RankedResult]:
        """Return at most ``top_n`` results ranked by relevance.

        Raises:
            InvalidQueryParameters: bad tunables (before any external call).
            InferenceError:         the query could not be embedded.
            DimensionMismatchError: the query vector has the wrong dimension.
        """
        validate_query_parameters(text, limit, top_n)

        if self._store.size == 0:
            logger.info("[QueryEngine] Store is empty; returning no results")
            return []

        query_vector = await self._embedder.embed_query(text)
        candidates = self._store.nearest_neighbors(query_vector, limit)
        logger.info(
            "[QueryEngine] Retrieved %d candidates (limit=%d) for reranking",
            len(candidates), limit,
        )
        if not candidates:
            return []

        scores = await self._rerank(text, [rec for rec, _ in candidates])
        if scores is None:
            return [
                _result(rec, -dist, dist, reranked=False)
                for rec, dist in candidates[:top_n]
            ]

        order = sorted(range(len(candidates)), key=lambda i: (-scores[i], i))
        return [
            _result(candidates[i][0], scores[i], candidates[i][1], reranked=True)
            for i in order[:top_n]
        ]

    async def _rerank(self, text: str, records: list[EmbeddingRecord]) -> Optional[list[float]]:
        if self._reranker is None:
            logger.info("[QueryEngine] No reranker configured; using stage-1 order")
            return None
        try:
            return await self._reranker.score(text, [rec.text for rec in records])
        except InferenceError as exc:
            logger.warning(
                "[QueryEngine] Reranker unavailable, falling back to stage-1 order: %s", exc,
            )
            return None


def _result(rec: EmbeddingRecord, score: float, distance: float, reranked: bool) -> RankedResult:
    return RankedResult(
        id=rec.id,
        text=rec.text,
        metadata=rec.metadata,
        score=score,
        distance=distance,
        reranked=reranked,
    )
