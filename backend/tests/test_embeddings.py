"""Tests for the embedding layer: Ollama provider and EmbeddingService."""
import asyncio
import json

import httpx
import pytest

from coderag.config import EmbeddingSettings
from coderag.embeddings.ollama import OllamaEmbeddingProvider
from coderag.embeddings.service import EmbeddingService
from coderag.errors import DimensionMismatchError, InferenceError

from conftest import DIM, FakeEmbeddingProvider, no_backoff


def _ollama(handler, dim: int = 3) -> OllamaEmbeddingProvider:
    client = httpx.AsyncClient(
        base_url="http://ollama.test", transport=httpx.MockTransport(handler),
    )
    return OllamaEmbeddingProvider(model_id="embed-model", dim=dim, client=client)


# ---------------------------------------------------------------------------
# OllamaEmbeddingProvider
# ---------------------------------------------------------------------------

class TestOllamaEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_posts_model_and_input(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]})

        provider = _ollama(handler)
        vectors = await provider.embed(["a", "b"])

        assert seen["path"] == "/api/embed"
        assert seen["body"] == {"model": "embed-model", "input": ["a", "b"]}
        assert vectors == [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        provider = _ollama(lambda r: httpx.Response(500, text="model not loaded"))
        with pytest.raises(InferenceError, match="HTTP 500"):
            await provider.embed(["a"])

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        provider = _ollama(handler)
        with pytest.raises(InferenceError, match="request failed"):
            await provider.embed(["a"])

    @pytest.mark.asyncio
    async def test_missing_embeddings_key(self):
        provider = _ollama(lambda r: httpx.Response(200, json={"error": "nope"}))
        with pytest.raises(InferenceError, match="'embeddings' key missing"):
            await provider.embed(["a"])

    @pytest.mark.asyncio
    async def test_vector_count_mismatch(self):
        provider = _ollama(lambda r: httpx.Response(200, json={"embeddings": [[1, 2, 3]]}))
        with pytest.raises(InferenceError, match="1 vectors for 2 texts"):
            await provider.embed(["a", "b"])

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        provider = _ollama(lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(InferenceError):
            await provider.embed(["a"])


# ---------------------------------------------------------------------------
# EmbeddingService
# ---------------------------------------------------------------------------

class FlakyProvider(FakeEmbeddingProvider):
    """Fails the first *failures* calls, then behaves."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def embed(self, texts, input_type="search_document"):
        self.requests.append(list(texts))
        if len(self.requests) <= self.failures:
            raise InferenceError("transient")
        return [[0.0] * DIM for _ in texts]


class ConcurrencyTracker(FakeEmbeddingProvider):
    """Records the peak number of concurrent ``embed`` calls."""

    def __init__(self) -> None:
        super().__init__()
        self.active = 0
        self.peak = 0

    async def embed(self, texts, input_type="search_document"):
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return await super().embed(texts, input_type)


class TestEmbeddingService:
    @pytest.mark.asyncio
    async def test_embed_delegates(self, embedder, embed_provider):
        vectors = await embedder.embed(["x", "y"])
        assert len(vectors) == 2
        assert all(len(v) == DIM for v in vectors)
        assert embed_provider.requests == [["x", "y"]]
        assert embedder.calls == 1
        assert embedder.model_id == "fake-embed"
        assert embedder.dim == DIM

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, embedder, embed_provider):
        with pytest.raises(ValueError, match="empty"):
            await embedder.embed([])
        assert embed_provider.requests == []

    @pytest.mark.asyncio
    async def test_oversized_batch_rejected(self, embedder, embed_provider):
        with pytest.raises(ValueError, match="exceeds maximum"):
            await embedder.embed(["t"] * (embedder.max_batch + 1))
        assert embed_provider.requests == []

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, embedding_settings):
        provider = FlakyProvider(failures=2)
        service = EmbeddingService(provider, embedding_settings)
        vectors = await service.embed(["a"])
        assert len(vectors) == 1
        assert service.calls == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, embedding_settings):
        provider = FlakyProvider(failures=10)
        service = EmbeddingService(provider, embedding_settings)
        with pytest.raises(InferenceError):
            await service.embed(["a"])
        assert service.calls == embedding_settings.max_retries + 1

    @pytest.mark.asyncio
    async def test_dimension_mismatch_not_retried(self, embedding_settings):
        provider = FakeEmbeddingProvider(out_dim=DIM + 1)
        service = EmbeddingService(provider, embedding_settings)
        with pytest.raises(DimensionMismatchError):
            await service.embed(["a"])
        assert service.calls == 1

    @pytest.mark.asyncio
    async def test_embed_query_and_probe(self, embedder, embed_provider):
        vec = await embedder.embed_query("find it")
        assert len(vec) == DIM
        assert await embedder.probe_dimension() == DIM
        assert len(embed_provider.requests) == 2

    @pytest.mark.asyncio
    async def test_probe_detects_wrong_model_dim(self):
        settings = EmbeddingSettings(dim=DIM, max_batch=4, max_retries=0, **no_backoff())
        service = EmbeddingService(FakeEmbeddingProvider(out_dim=16), settings)
        with pytest.raises(DimensionMismatchError) as exc_info:
            await service.probe_dimension()
        assert exc_info.value.expected == DIM
        assert exc_info.value.actual == 16

    @pytest.mark.asyncio
    async def test_concurrency_capped(self):
        settings = EmbeddingSettings(dim=DIM, max_batch=4, max_concurrency=2, max_retries=0, **no_backoff())
        provider = ConcurrencyTracker()
        service = EmbeddingService(provider, settings)

        results = await asyncio.gather(*(service.embed([f"t{i}"]) for i in range(6)))

        assert provider.peak == 2
        assert len(results) == 6
        assert service.calls == 6
