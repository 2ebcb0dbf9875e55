"""Ollama prompt-based reranker.

Ollama has no native rerank endpoint, so each candidate is scored by asking
a reranker model, through ``POST {base_url}/api/generate``, for a single
relevance number between 0.0 and 1.0.  The last non-empty line of the
model's answer is parsed as the score (reranker models may think out loud
before answering).
"""
import logging
import math
from typing import Optional

import httpx

from coderag.errors import InferenceError

from .provider import RerankProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"

RERANK_PROMPT = (
    "Given the query: '{query}' and the document: '{document}'. "
    "Output only a single floating-point number between 0.0 and 1.0 representing "
    "the relevance score. No other text, explanation, or formatting."
)


def parse_score(response_text: str) -> float:
    """Parse the relevance score from the last non-empty line of a response."""
    lines = [line.strip() for line in response_text.strip().splitlines() if line.strip()]
    last_line = lines[-1] if lines else ""
    try:
        score = float(last_line)
    except ValueError:
        raise InferenceError(f"Could not parse rerank score from line {last_line!r}") from None
    if not math.isfinite(score):
        raise InferenceError(f"Rerank score is not finite: {last_line!r}")
    return score


class OllamaRerankProvider(RerankProvider):
    """Reranker backed by a generative model on a local Ollama server.

    Args:
        model_id:            Ollama model tag.
        base_url:            Ollama server URL.
        timeout_seconds:     Per-request timeout.
        max_candidate_chars: Candidate text is truncated to this length.
        client:              Optional pre-built ``httpx.AsyncClient`` (tests).
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 120.0,
        max_candidate_chars: int = 4000,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._model_id = model_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._max_chars = max_candidate_chars
        self._client = client

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def batch_size(self) -> int:
        return 1

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    async def score(self, query: str, candidates: list[str]) -> list[float]:
        return [await self._score_one(query, c) for c in candidates]

    async def _score_one(self, query: str, candidate: str) -> float:
        prompt = RERANK_PROMPT.format(query=query, document=candidate[: self._max_chars])
        try:
            response = await self._get_client().post(
                "/api/generate",
                json={
                    "model": self._model_id,
                    "prompt": prompt,
                    "stream": False,
                    "options": {"temperature": 0},
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise InferenceError(
                f"Ollama generate returned HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise InferenceError(f"Ollama generate request failed: {exc}") from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise InferenceError("Unexpected Ollama response: 'response' key missing")
        return parse_score(text)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
