"""coderag configuration.

Loads settings from ``coderag.settings.yaml`` (path overridable with the
``CODERAG_SETTINGS`` environment variable).  Every section is a frozen
pydantic model; components receive their section at construction time and
never read process state afterwards.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("coderag.settings.yaml")
SETTINGS_ENV_VAR = "CODERAG_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(_Frozen):
    host: str = "127.0.0.1"
    port: int = 8000


class LoggingSettings(_Frozen):
    level: str = "info"


class EmbeddingSettings(_Frozen):
    """Dense-embedding inference service."""
    provider:        Literal["ollama"] = "ollama"
    base_url:        str   = "http://localhost:11434"
    model:           str   = "dengcao/Qwen3-Embedding-4B:Q4_K_M"
    dim:             int   = Field(default=2560, ge=1)
    max_batch:       int   = Field(default=32, ge=1)
    max_concurrency: int   = Field(default=2, ge=1)
    timeout_seconds: float = Field(default=120.0, gt=0)
    max_retries:     int   = Field(default=3, ge=0)
    backoff_base:    float = Field(default=0.5, ge=0)
    backoff_max:     float = Field(default=8.0, ge=0)


class RerankSettings(_Frozen):
    """Cross-encoder style relevance scorer."""
    enabled:             bool  = True
    provider:            Literal["ollama"] = "ollama"
    base_url:            str   = "http://localhost:11434"
    model:               str   = "hf.co/mradermacher/Qwen3-Reranker-4B-GGUF:Q4_K_M"
    max_concurrency:     int   = Field(default=2, ge=1)
    timeout_seconds:     float = Field(default=120.0, gt=0)
    max_retries:         int   = Field(default=2, ge=0)
    backoff_base:        float = Field(default=0.5, ge=0)
    backoff_max:         float = Field(default=8.0, ge=0)
    max_candidate_chars: int   = Field(default=4000, ge=1)


class StoreSettings(_Frozen):
    data_dir: str = "./coderag_data"
    metric:   Literal["cosine", "euclidean"] = "cosine"


class ChunkingSettings(_Frozen):
    max_lines:       int = Field(default=200, ge=1)
    max_tokens:      int = Field(default=1024, ge=1)
    overlap_lines:   int = Field(default=20, ge=0)
    min_chunk_lines: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingSettings":
        if self.overlap_lines >= self.max_lines:
            raise ValueError("chunking.overlap_lines must be smaller than chunking.max_lines")
        return self


class IngestionSettings(_Frozen):
    workers:                     int  = Field(default=4, ge=1)
    embed_batch_size:            int  = Field(default=16, ge=1)
    fingerprint_scope:           Literal["content", "path", "location"] = "location"
    extra_ignored_dirs:          List[str] = Field(default_factory=list)
    extra_ignored_files:         List[str] = Field(default_factory=list)


class QuerySettings(_Frozen):
    default_limit: int = Field(default=25, ge=1)
    default_top_n: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def _check_top_n(self) -> "QuerySettings":
        if self.default_top_n > self.default_limit:
            raise ValueError("query.default_top_n must not exceed query.default_limit")
        return self


class AppSettings(_Frozen):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    rerank:    RerankSettings    = Field(default_factory=RerankSettings)
    store:     StoreSettings     = Field(default_factory=StoreSettings)
    chunking:  ChunkingSettings  = Field(default_factory=ChunkingSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    query:     QuerySettings     = Field(default_factory=QuerySettings)

    @model_validator(mode="after")
    def _check_batch(self) -> "AppSettings":
        if self.ingestion.embed_batch_size > self.embedding.max_batch:
            raise ValueError(
                "ingestion.embed_batch_size must not exceed embedding.max_batch"
            )
        return self


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load settings from YAML, falling back to defaults for missing keys."""
    if path is None:
        path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    app_settings = AppSettings(**_load_yaml(Path(path)))
    logger.info(
        "Settings loaded (embedding=%s dim=%d, rerank.enabled=%s, store=%s metric=%s)",
        app_settings.embedding.model,
        app_settings.embedding.dim,
        app_settings.rerank.enabled,
        app_settings.store.data_dir,
        app_settings.store.metric,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(settings: Optional[AppSettings]) -> None:
    """Replace (or clear) the cached settings."""
    global _config
    _config = settings
