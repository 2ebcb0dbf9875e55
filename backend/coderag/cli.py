"""
coderag command line.

Usage:
    coderag ingest ../my-project
    coderag query -q "where are embeddings stored?" --limit 25 --top-n 5
    coderag prune ../my-project
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer

from coderag.config import load_settings
from coderag.errors import CodeRagError
from coderag.logging_setup import configure_logging
from coderag.rag.loader import load_documents
from coderag.rag.pipeline import Pipeline, build_pipeline, verify_embedding_dimension
from coderag.rag.schemas import RankedResult

PREVIEW_CHARS = 500

app = typer.Typer(
    help="coderag - change-aware codebase indexing and retrieve-then-rerank search",
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _pipeline(config: Optional[Path]) -> Pipeline:
    settings = load_settings(config)
    configure_logging(settings.logging.level)
    return build_pipeline(settings)


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except (CodeRagError, NotADirectoryError) as exc:
        typer.secho(f"error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def format_result(rank: int, result: RankedResult) -> str:
    """Render one result with a truncated text preview."""
    meta = result.metadata
    label = "score" if result.reranked else "distance"
    value = result.score if result.reranked else result.distance
    header = f"{rank}. {meta.source_path}:{meta.start_line}-{meta.end_line}"
    if meta.symbol_name:
        header += f" {meta.symbol_name}"
    lines = [
        f"{header} ({label}: {value:.4f})",
        "-" * 50,
        result.text[:PREVIEW_CHARS],
    ]
    if len(result.text) > PREVIEW_CHARS:
        lines.append("... (truncated)")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# commands
# ---------------------------------------------------------------------------

@app.command()
def ingest(
        root: Path = typer.Argument(..., help="Codebase root to index."),
        config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings YAML."),
) -> None:
    """Index ROOT, embedding only chunks that are not already stored."""

    async def _main() -> None:
        pipeline = _pipeline(config)
        try:
            await verify_embedding_dimension(pipeline)
            documents = load_documents(root, pipeline.ignore_policy)
            report = await pipeline.indexer.ingest(documents)
        finally:
            await pipeline.aclose()
        typer.echo(
            f"documents={report.documents} chunks={report.chunks} "
            f"inserted={report.inserted} skipped={report.skipped} failed={report.failed}"
        )
        for path in report.failed_documents:
            typer.echo(f"  not chunked: {path}")

    _run(_main())


@app.command()
def query(
        text: str = typer.Option(..., "--query", "-q", help="The query to search for."),
        limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Initial candidates to retrieve."),
        top_n: Optional[int] = typer.Option(None, "--top-n", "-t", help="Results to return after reranking."),
        config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings YAML."),
) -> None:
    """Retrieve and rerank the chunks most relevant to a query."""

    async def _main() -> None:
        pipeline = _pipeline(config)
        q = pipeline.settings.query
        try:
            await verify_embedding_dimension(pipeline)
            results = await pipeline.engine.query(
                text,
                limit if limit is not None else q.default_limit,
                top_n if top_n is not None else q.default_top_n,
            )
        finally:
            await pipeline.aclose()

        if not results:
            typer.echo("No results.")
            return
        heading = "Reranked" if all(r.reranked for r in results) else "Stage-1 (reranker unavailable)"
        typer.echo(f"\n--- Top {len(results)} {heading} Results ---")
        for rank, result in enumerate(results, start=1):
            typer.echo()
            typer.echo(format_result(rank, result))

    _run(_main())


@app.command()
def prune(
        root: Path = typer.Argument(..., help="Codebase root holding the current content."),
        config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings YAML."),
) -> None:
    """Remove stored records whose content no longer exists under ROOT."""

    async def _main() -> None:
        pipeline = _pipeline(config)
        try:
            documents = load_documents(root, pipeline.ignore_policy)
            report = await pipeline.indexer.reconcile(documents)
        finally:
            await pipeline.aclose()
        typer.echo(f"removed={report.removed} kept={report.kept}")

    _run(_main())


if __name__ == "__main__":
    app()
