"""Builds the store, clients and coordinators from settings."""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from coderag.config import AppSettings
from coderag.embeddings import EmbeddingService, OllamaEmbeddingProvider
from coderag.errors import DimensionMismatchError
from coderag.rerank import OllamaRerankProvider, RerankService

from .indexer import RagIndexer
from .loader import IgnorePolicy
from .query import QueryEngine
from .vector_store import FaissVectorStore

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    settings: AppSettings
    store: FaissVectorStore
    embedder: EmbeddingService
    reranker: Optional[RerankService]
    indexer: RagIndexer
    engine: QueryEngine

    @property
    def ignore_policy(self) -> IgnorePolicy:
        return IgnorePolicy.with_extras(
            dirs=self.settings.ingestion.extra_ignored_dirs,
            files=self.settings.ingestion.extra_ignored_files,
        )

    async def aclose(self) -> None:
        await self.embedder.aclose()
        if self.reranker is not None:
            await self.reranker.aclose()


def build_pipeline(settings: AppSettings) -> Pipeline:
    """Create every component and load the persisted store.

    Raises:
        DimensionMismatchError / ConfigurationError: persisted store does not
            match the configured dimension or metric.
        StoreConnectivityError: persisted store cannot be read.
    """
    emb = settings.embedding
    embedder = EmbeddingService(
        OllamaEmbeddingProvider(
            model_id=emb.model,
            dim=emb.dim,
            base_url=emb.base_url,
            timeout_seconds=emb.timeout_seconds,
        ),
        emb,
    )

    reranker: Optional[RerankService] = None
    rr = settings.rerank
    if rr.enabled:
        reranker = RerankService(
            OllamaRerankProvider(
                model_id=rr.model,
                base_url=rr.base_url,
                timeout_seconds=rr.timeout_seconds,
                max_candidate_chars=rr.max_candidate_chars,
            ),
            rr,
        )

    store = FaissVectorStore(
        dim=emb.dim,
        metric=settings.store.metric,
        data_dir=Path(settings.store.data_dir),
    )
    loaded = store.load()
    logger.info(
        "[pipeline] Store ready: loaded=%s size=%d dim=%d metric=%s",
        loaded, store.size, store.dim, store.metric,
    )

    indexer = RagIndexer(store, embedder, settings.chunking, settings.ingestion)
    engine = QueryEngine(store, embedder, reranker)
    return Pipeline(settings, store, embedder, reranker, indexer, engine)


async def verify_embedding_dimension(pipeline: Pipeline) -> None:
    """Fail fast if the embedding model's output does not match the store.

    Raises:
        DimensionMismatchError: on mismatch.
        InferenceError:         if the embedding service cannot be reached.
    """
    actual = await pipeline.embedder.probe_dimension()
    if actual != pipeline.store.dim:
        raise DimensionMismatchError(pipeline.store.dim, actual, "embedding probe")
