"""Change-aware ingestion pipeline.

Documents are chunked and fingerprinted; fingerprints already present in the
store are skipped, so re-ingesting an unchanged codebase issues no embedding
calls at all.  Absent chunks are embedded in batches by a bounded pool of
worker tasks and upserted as immutable records.

Failure handling:

* ``ChunkingError``          - the document is reported and skipped.
* ``InferenceError``         - after the embedding service's retries, the
  batch's chunks are counted as ``failed``; other batches continue.
* ``DimensionMismatchError`` / ``StoreConnectivityError`` - fatal, abort the
  run (everything upserted so far is still persisted).

Stale records (for changed or deleted content) are never removed here; see
``reconcile`` for the explicit, opt-in cleanup.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from coderag.config import ChunkingSettings, IngestionSettings
from coderag.embeddings.service import EmbeddingService
from coderag.errors import ChunkingError, InferenceError

from .chunker import CodeChunk, chunk_document
from .fingerprint import fingerprint
from .schemas import Document, EmbeddingRecord, IngestionReport, PruneReport
from .vector_store import FaissVectorStore

logger = logging.getLogger(__name__)


@dataclass
class _Plan:
    """Chunks of one run, deduplicated by fingerprint, in first-seen order."""

    chunks: dict[str, CodeChunk] = field(default_factory=dict)
    total_chunks: int = 0
    failed_documents: list[str] = field(default_factory=list)


class RagIndexer:
    """Ingests documents into a ``FaissVectorStore``.

    Args:
        store:     Target vector store (single writer per run).
        embedder:  Embedding service; its own semaphore caps in-flight requests.
        chunking:  Chunk size budget.
        ingestion: Worker count, batch size and fingerprint scope.
    """

    def __init__(
        self,
        store: FaissVectorStore,
        embedder: EmbeddingService,
        chunking: Optional[ChunkingSettings] = None,
        ingestion: Optional[IngestionSettings] = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._chunking = chunking or ChunkingSettings()
        self._ingestion = ingestion or IngestionSettings()

    @property
    def store(self) -> FaissVectorStore:
        return self._store

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(self, documents: Iterable[Document]) -> IngestionReport:
        """Chunk, fingerprint, diff against the store and embed what is new."""
        documents = list(documents)
        logger.info("[RagIndexer] ingest called: documents=%d", len(documents))

        plan = self._plan(documents)
        present = self._store.exists(plan.chunks)
        pending = [(fp, c) for fp, c in plan.chunks.items() if fp not in present]

        report = IngestionReport(
            documents=len(documents),
            chunks=plan.total_chunks,
            skipped=plan.total_chunks - len(pending),
            failed_documents=plan.failed_documents,
        )
        logger.info(
            "[RagIndexer] %d chunks: %d cached, %d to embed, %d documents failed",
            plan.total_chunks, report.skipped, len(pending), len(plan.failed_documents),
        )

        if pending:
            try:
                await self._embed_and_upsert(pending, report)
            finally:
                if report.inserted and self._store.data_dir is not None:
                    await asyncio.to_thread(self._store.save)

        logger.info(
            "[RagIndexer] ingest done: inserted=%d skipped=%d failed=%d store_size=%d",
            report.inserted, report.skipped, report.failed, self._store.size,
        )
        return report

    def _plan(self, documents: list[Document]) -> _Plan:
        plan = _Plan()
        scope = self._ingestion.fingerprint_scope
        for doc in documents:
            try:
                chunks = chunk_document(doc, self._chunking)
            except ChunkingError as exc:
                logger.warning("[RagIndexer] Skipping document: %s", exc)
                plan.failed_documents.append(doc.path)
                continue
            plan.total_chunks += len(chunks)
            for chunk in chunks:
                plan.chunks.setdefault(fingerprint(chunk, scope), chunk)
        return plan

    async def _embed_and_upsert(
        self,
        pending: list[tuple[str, CodeChunk]],
        report: IngestionReport,
    ) -> None:
        size = self._ingestion.embed_batch_size
        batches = [pending[i:i + size] for i in range(0, len(pending), size)]
        workers = asyncio.Semaphore(self._ingestion.workers)
        total = len(batches)

        async def _run(batch_num: int, batch: list[tuple[str, CodeChunk]]) -> None:
            async with workers:
                texts = [c.content for _, c in batch]
                try:
                    vectors = await self._embedder.embed(texts, input_type="search_document")
                except InferenceError as exc:
                    logger.error(
                        "[RagIndexer] Embedding batch %d/%d failed (%d chunks): %s",
                        batch_num, total, len(batch), exc,
                    )
                    report.failed += len(batch)
                    return

            # Only complete responses reach the store.
            records = [
                EmbeddingRecord(id=fp, text=chunk.content, vector=vec, metadata=chunk.to_metadata())
                for (fp, chunk), vec in zip(batch, vectors)
            ]
            inserted = self._store.upsert(records)
            report.inserted += inserted
            # A concurrent run may have written the same ids first.
            report.skipped += len(records) - inserted
            logger.debug(
                "[RagIndexer] Batch %d/%d: inserted %d", batch_num, total, inserted,
            )

        logger.info(
            "[RagIndexer] Embedding %d chunks (%d batches of <=%d, %d workers)",
            len(pending), total, size, self._ingestion.workers,
        )
        tasks = [asyncio.ensure_future(_run(n, b)) for n, b in enumerate(batches, start=1)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def current_fingerprints(self, documents: Iterable[Document]) -> set[str]:
        """Fingerprints of every chunk the given documents produce."""
        return set(self._plan(list(documents)).chunks)

    async def reconcile(self, documents: Iterable[Document]) -> PruneReport:
        """Remove records whose content no longer exists in *documents*.

        Opt-in maintenance: never called by ``ingest``.  No embedding calls
        are made.  Documents that fail to chunk keep their records, since
        their current fingerprints are unknown.
        """
        documents = list(documents)
        plan = self._plan(documents)
        keep = set(plan.chunks)
        if plan.failed_documents:
            failed = set(plan.failed_documents)
            keep |= {
                rid for rid in self._store.ids()
                if (rec := self._store.get(rid)) is not None
                and rec.metadata.source_path in failed
            }
        removed = await self.prune(keep)
        return PruneReport(kept=self._store.size, removed=removed)

    async def prune(self, keep_ids: set[str]) -> int:
        """Remove every record whose id is not in *keep_ids*."""
        orphans = self._store.ids() - set(keep_ids)
        if not orphans:
            logger.info("[RagIndexer] prune: nothing to remove")
            return 0
        removed = self._store.remove(orphans)
        if self._store.data_dir is not None:
            await asyncio.to_thread(self._store.save)
        logger.info(
            "[RagIndexer] prune: removed %d orphan records, %d remain",
            removed, self._store.size,
        )
        return removed
