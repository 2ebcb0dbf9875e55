"""Shared test fixtures: in-process fake inference providers and settings."""
import hashlib
import math
from typing import Optional

import pytest

from coderag.config import (
    ChunkingSettings,
    EmbeddingSettings,
    IngestionSettings,
    RerankSettings,
)
from coderag.embeddings.provider import EmbeddingProvider
from coderag.embeddings.service import EmbeddingService
from coderag.errors import InferenceError
from coderag.rag.schemas import Document
from coderag.rerank.provider import RerankProvider
from coderag.rerank.service import RerankService

DIM = 8


def hash_vector(text: str, dim: int = DIM) -> list[float]:
    """Deterministic pseudo-embedding derived from the text's SHA-256."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    vec = [(digest[i % len(digest)] - 127.5) / 127.5 for i in range(dim)]
    norm = math.sqrt(sum(v * v for v in vec)) or 1.0
    return [v / norm for v in vec]


class FakeEmbeddingProvider(EmbeddingProvider):
    """Embeds via ``hash_vector`` unless a text has an explicit vector.

    Batches containing a text that includes any marker in ``fail_on`` raise
    ``InferenceError``.
    """

    def __init__(
        self,
        dim: int = DIM,
        vectors: Optional[dict[str, list[float]]] = None,
        fail_on: tuple[str, ...] = (),
        out_dim: Optional[int] = None,
    ) -> None:
        self._dim = dim
        self._out_dim = out_dim or dim
        self.vectors = vectors or {}
        self.fail_on = fail_on
        self.requests: list[list[str]] = []

    @property
    def model_id(self) -> str:
        return "fake-embed"

    @property
    def dim(self) -> int:
        return self._dim

    async def embed(self, texts: list[str], input_type: str = "search_document") -> list[list[float]]:
        self.requests.append(list(texts))
        if any(marker in t for t in texts for marker in self.fail_on):
            raise InferenceError("fake embedding failure")
        return [self.vectors.get(t) or hash_vector(t, self._out_dim) for t in texts]

    @property
    def embedded_texts(self) -> list[str]:
        return [t for batch in self.requests for t in batch]


class FakeRerankProvider(RerankProvider):
    """Scores candidates from a text→score map (default 0.0)."""

    def __init__(self, scores: Optional[dict[str, float]] = None, fail: bool = False) -> None:
        self.scores = scores or {}
        self.fail = fail
        self.requests: list[tuple[str, list[str]]] = []

    @property
    def model_id(self) -> str:
        return "fake-rerank"

    async def score(self, query: str, candidates: list[str]) -> list[float]:
        self.requests.append((query, list(candidates)))
        if self.fail:
            raise InferenceError("fake reranker down")
        return [self.scores.get(c, 0.0) for c in candidates]


def no_backoff(**overrides) -> dict:
    return {"backoff_base": 0.0, "backoff_max": 0.0, **overrides}


@pytest.fixture
def embedding_settings() -> EmbeddingSettings:
    return EmbeddingSettings(dim=DIM, max_batch=8, max_retries=2, **no_backoff())


@pytest.fixture
def rerank_settings() -> RerankSettings:
    return RerankSettings(max_retries=1, **no_backoff())


@pytest.fixture
def chunking_settings() -> ChunkingSettings:
    return ChunkingSettings(max_lines=20, max_tokens=400, overlap_lines=2, min_chunk_lines=2)


@pytest.fixture
def ingestion_settings() -> IngestionSettings:
    return IngestionSettings(workers=2, embed_batch_size=4)


@pytest.fixture
def embed_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedder(embed_provider, embedding_settings) -> EmbeddingService:
    return EmbeddingService(embed_provider, embedding_settings)


@pytest.fixture
def rerank_provider() -> FakeRerankProvider:
    return FakeRerankProvider()


@pytest.fixture
def reranker(rerank_provider, rerank_settings) -> RerankService:
    return RerankService(rerank_provider, rerank_settings)


def python_doc(path: str = "pkg/mod.py", n_funcs: int = 3, tag: str = "") -> Document:
    """A small Python module with *n_funcs* top-level functions."""
    parts = ["import os\n", "\n"]
    for i in range(n_funcs):
        parts.append(f"def func_{i}(x):\n    return x + {i}  # {tag}\n\n")
    return Document(path=path, content="".join(parts), language="python")
