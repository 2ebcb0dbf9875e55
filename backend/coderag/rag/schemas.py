"""Pydantic schemas for documents, stored records and the /rag API."""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Core data model
# ---------------------------------------------------------------------------

class Document(BaseModel):
    """A loaded source file.  Read-only to the pipeline."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Root-relative file path")
    content: str = Field(..., description="Full file text")
    language: str = Field(default="text", description="Language ID from the file extension")


class ChunkMetadata(BaseModel):
    """Structured metadata stored with every embedding record.

    Unknown keys are rejected so the shape written at ingestion time is the
    shape read back at query time.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source_path: str
    start_line: int = Field(..., ge=1)
    end_line: int = Field(..., ge=1)
    start_byte: int = Field(default=0, ge=0)
    end_byte: int = Field(default=0, ge=0)
    symbol_name: str = ""
    symbol_type: str = ""  # function | class | section | block
    language: str = ""


class EmbeddingRecord(BaseModel):
    """A persisted chunk embedding, keyed by its content fingerprint."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    vector: List[float]
    metadata: ChunkMetadata
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RankedResult(BaseModel):
    """A single query result."""

    id: str
    text: str
    metadata: ChunkMetadata
    score: float
    distance: float
    reranked: bool = True


class IngestionReport(BaseModel):
    """Outcome of one ingestion run."""

    documents: int = 0
    chunks: int = 0
    inserted: int = 0
    skipped: int = 0
    failed: int = 0
    failed_documents: List[str] = Field(default_factory=list)


class PruneReport(BaseModel):
    """Outcome of an explicit reconciliation run."""

    kept: int = 0
    removed: int = 0


# ---------------------------------------------------------------------------
# API models
# ---------------------------------------------------------------------------

class IngestRequest(BaseModel):
    """Request body for POST /rag/ingest.

    Either ``documents`` or ``root`` must be provided.
    """

    documents: Optional[List[Document]] = Field(
        default=None, description="Pre-loaded documents to ingest"
    )
    root: Optional[str] = Field(
        default=None, description="Directory to load documents from"
    )


class ReconcileRequest(BaseModel):
    """Request body for POST /rag/reconcile."""

    root: str = Field(..., min_length=1, description="Directory holding the current codebase")


class QueryRequest(BaseModel):
    """Request body for POST /rag/query.

    ``top_n > limit`` is checked by the query engine, not here, so the
    caller gets the engine's error message.
    """

    query: str = Field(..., min_length=1, description="Natural language or code query")
    limit: int = Field(default=25, ge=1, le=500, description="Stage-1 candidate count")
    top_n: int = Field(default=5, ge=1, description="Final result count")


class QueryResponse(BaseModel):
    """Response for POST /rag/query."""

    results: List[RankedResult]
    query: str
    degraded: bool = False


class StatsResponse(BaseModel):
    """Response for GET /rag/stats."""

    records: int
    dim: int
    metric: str
