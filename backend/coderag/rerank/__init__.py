"""Reranker client: second-stage relevance scoring of retrieval candidates."""
from .ollama import OllamaRerankProvider
from .provider import RerankProvider
from .service import RerankService

__all__ = ["RerankProvider", "OllamaRerankProvider", "RerankService"]
