"""coderag API server.

Exposes the ingestion and query pipelines over HTTP for editor
integrations.  Run with ``uvicorn coderag.main:app``.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from coderag import __version__
from coderag.config import get_config
from coderag.errors import ConfigurationError, DimensionMismatchError, InferenceError, StoreConnectivityError
from coderag.logging_setup import configure_logging
from coderag.rag.pipeline import build_pipeline, verify_embedding_dimension
from coderag.rag.router import get_pipeline, router as rag_router, set_pipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    config = get_config()
    configure_logging(config.logging.level)
    logger.info("Root logger level set to %s", config.logging.level.upper())

    try:
        pipeline = build_pipeline(config)
    except StoreConnectivityError as exc:
        logger.error("Vector store unavailable; RAG endpoints disabled: %s", exc)
        pipeline = None

    if pipeline is not None:
        try:
            await verify_embedding_dimension(pipeline)
        except InferenceError as exc:
            logger.warning(
                "Embedding service unreachable at startup, dimension not verified: %s", exc,
            )
        except (DimensionMismatchError, ConfigurationError):
            await pipeline.aclose()
            raise
        set_pipeline(pipeline)
        logger.info(
            "RAG pipeline ready: records=%d dim=%d metric=%s rerank=%s",
            pipeline.store.size,
            pipeline.store.dim,
            pipeline.store.metric,
            "on" if pipeline.reranker is not None else "off",
        )

    yield  # Application runs here

    pipeline = get_pipeline()
    if pipeline is not None:
        await pipeline.aclose()
        set_pipeline(None)
    logger.info("Application shutdown complete")


app = FastAPI(
    title="coderag API",
    description="Change-aware codebase indexing and retrieve-then-rerank search",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(rag_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
