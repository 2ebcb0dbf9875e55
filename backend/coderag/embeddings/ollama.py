"""Ollama embedding provider.

Calls ``POST {base_url}/api/embed`` on a local Ollama server.

Request body
------------
::

    { "model": "dengcao/Qwen3-Embedding-4B:Q4_K_M", "input": ["text1", "text2"] }

Response body
-------------
::

    { "model": "...", "embeddings": [[...], [...]] }
"""
import logging
from typing import Optional

import httpx

from coderag.errors import InferenceError

from .provider import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by a local Ollama server.

    Args:
        model_id:        Ollama model tag.
        dim:             Expected vector dimensionality.
        base_url:        Ollama server URL.
        timeout_seconds: Per-request timeout.
        client:          Optional pre-built ``httpx.AsyncClient`` (tests).
    """

    def __init__(
        self,
        model_id: str,
        dim: int,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._model_id = model_id
        self._dim = dim
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._client = client

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def dim(self) -> int:
        return self._dim

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    async def embed(self, texts: list[str], input_type: str = "search_document") -> list[list[float]]:
        """Embed a batch of texts.

        Ollama has no notion of query vs. document inputs, so *input_type*
        only shows up in debug logs.
        """
        logger.debug(
            "[embeddings/ollama] model=%s texts=%d input_type=%s",
            self._model_id, len(texts), input_type,
        )
        try:
            response = await self._get_client().post(
                "/api/embed", json={"model": self._model_id, "input": texts},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise InferenceError(
                f"Ollama embed returned HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise InferenceError(f"Ollama embed request failed: {exc}") from exc

        vectors = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(vectors, list):
            raise InferenceError("Unexpected Ollama response: 'embeddings' key missing")
        if len(vectors) != len(texts):
            raise InferenceError(
                f"Provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
