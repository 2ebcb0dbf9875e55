"""RAG router - codebase indexing and retrieval endpoints.

Endpoints:
    POST /rag/ingest     - Change-aware ingestion (documents or a root path)
    POST /rag/query      - Retrieve-then-rerank query
    POST /rag/reconcile  - Remove records for content that no longer exists
    GET  /rag/stats      - Store size and configuration
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from coderag.errors import (
    ConfigurationError,
    DimensionMismatchError,
    InferenceError,
    InvalidQueryParameters,
    StoreConnectivityError,
)

from .loader import load_documents
from .pipeline import Pipeline
from .schemas import (
    IngestionReport,
    IngestRequest,
    PruneReport,
    QueryRequest,
    QueryResponse,
    ReconcileRequest,
    StatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rag", tags=["rag"])

# ---------------------------------------------------------------------------
# Singleton pipeline management
# ---------------------------------------------------------------------------

_pipeline: Optional[Pipeline] = None


def get_pipeline() -> Optional[Pipeline]:
    """Return the global Pipeline, or None if not configured."""
    return _pipeline


def set_pipeline(pipeline: Optional[Pipeline]) -> None:
    """Set (or clear) the global Pipeline."""
    global _pipeline
    _pipeline = pipeline


def _not_configured(endpoint: str) -> JSONResponse:
    logger.warning("[rag/%s] Pipeline not configured - returning 503", endpoint)
    return JSONResponse({"error": "RAG pipeline not configured"}, status_code=503)


def _error_response(endpoint: str, exc: Exception) -> JSONResponse:
    """Map pipeline errors to HTTP status codes."""
    if isinstance(exc, InvalidQueryParameters):
        status = 422
    elif isinstance(exc, (StoreConnectivityError, InferenceError)):
        status = 503
    elif isinstance(exc, (DimensionMismatchError, ConfigurationError)):
        status = 500
    elif isinstance(exc, (NotADirectoryError, ValueError)):
        status = 400
    else:
        status = 500
    if status >= 500:
        logger.exception("[rag/%s] Failed: %s", endpoint, exc)
    else:
        logger.info("[rag/%s] Rejected: %s", endpoint, exc)
    return JSONResponse({"error": str(exc)}, status_code=status)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/ingest", response_model=IngestionReport)
async def ingest(request: IngestRequest) -> IngestionReport | JSONResponse:
    """Ingest documents, embedding only chunks not already in the store."""
    pipeline = get_pipeline()
    if pipeline is None:
        return _not_configured("ingest")

    try:
        if request.documents is not None:
            documents = request.documents
        elif request.root:
            documents = await asyncio.to_thread(
                load_documents, request.root, pipeline.ignore_policy,
            )
        else:
            raise ValueError("Either 'documents' or 'root' must be provided")

        logger.info("[rag/ingest] Received: documents=%d", len(documents))
        report = await pipeline.indexer.ingest(documents)
        logger.info(
            "[rag/ingest] Success: inserted=%d skipped=%d failed=%d",
            report.inserted, report.skipped, report.failed,
        )
        return report
    except Exception as exc:
        return _error_response("ingest", exc)


@router.post("/query", response_model=QueryResponse)
async def query(request: QueryRequest) -> QueryResponse | JSONResponse:
    """Return the ``top_n`` most relevant chunks for a query."""
    pipeline = get_pipeline()
    if pipeline is None:
        return _not_configured("query")

    try:
        results = await pipeline.engine.query(request.query, request.limit, request.top_n)
        return QueryResponse(
            results=results,
            query=request.query,
            degraded=any(not r.reranked for r in results),
        )
    except Exception as exc:
        return _error_response("query", exc)


@router.post("/reconcile", response_model=PruneReport)
async def reconcile(request: ReconcileRequest) -> PruneReport | JSONResponse:
    """Drop records whose content is no longer present under ``root``."""
    pipeline = get_pipeline()
    if pipeline is None:
        return _not_configured("reconcile")

    try:
        documents = await asyncio.to_thread(
            load_documents, request.root, pipeline.ignore_policy,
        )
        report = await pipeline.indexer.reconcile(documents)
        logger.info(
            "[rag/reconcile] Success: kept=%d removed=%d", report.kept, report.removed,
        )
        return report
    except Exception as exc:
        return _error_response("reconcile", exc)


@router.get("/stats", response_model=StatsResponse)
async def stats() -> StatsResponse | JSONResponse:
    """Report store size, dimension and distance metric."""
    pipeline = get_pipeline()
    if pipeline is None:
        return _not_configured("stats")
    store = pipeline.store
    return StatsResponse(records=store.size, dim=store.dim, metric=store.metric)
