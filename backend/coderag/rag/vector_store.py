"""FAISS-based vector store for fingerprint-keyed embedding records.

Two distance metrics are supported, fixed when the store is created:

* ``cosine``    - ``IndexFlatIP`` over L2-normalised vectors; distance is
  ``1 - cosine_similarity``.
* ``euclidean`` - ``IndexFlatL2``; distance is the (non-squared) L2 norm.

Brute-force search is fast enough for a single codebase.  Persistence uses
``faiss.write_index`` plus a JSON sidecar holding the id map, the record
bodies and the store's ``dim``/``metric``, which are checked again on load.

Records are immutable: ``upsert`` only ever inserts ids that are absent,
and never rewrites an existing row.

Thread safety: all mutating operations acquire ``_lock``; searches take a
consistent snapshot of the index and id map under the lock and then run
without it.
"""
import json
import logging
import threading
from pathlib import Path
from typing import Iterable, Literal, Optional

import numpy as np

from coderag.errors import ConfigurationError, DimensionMismatchError, StoreConnectivityError

from .schemas import EmbeddingRecord

logger = logging.getLogger(__name__)

Metric = Literal["cosine", "euclidean"]

INDEX_FILE = "index.faiss"
RECORDS_FILE = "records.json"
FORMAT_VERSION = 1

# Extra neighbours fetched past ``k`` so ties at the cut-off are resolved by
# id.  The window doubles while the tie still reaches its last hit.
TIE_MARGIN = 16


class FaissVectorStore:
    """Fingerprint-keyed record store with exact nearest-neighbour search.

    Args:
        dim:      Vector dimensionality (must match the embedding model).
        metric:   ``"cosine"`` or ``"euclidean"``.
        data_dir: Optional directory for persistence (``save`` / ``load``).
    """

    def __init__(self, dim: int, metric: Metric = "cosine", data_dir: Optional[Path] = None) -> None:
        if metric not in ("cosine", "euclidean"):
            raise ConfigurationError(f"Unsupported distance metric: {metric!r}")
        self._dim = dim
        self._metric = metric
        self._data_dir = Path(data_dir) if data_dir else None
        self._index = self._new_index()
        self._records: dict[str, EmbeddingRecord] = {}
        self._id_map: list[str] = []  # position → record id
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def metric(self) -> str:
        return self._metric

    @property
    def size(self) -> int:
        return len(self._id_map)

    @property
    def data_dir(self) -> Optional[Path]:
        return self._data_dir

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def exists(self, ids: Iterable[str]) -> set[str]:
        """Return the subset of *ids* already present in the store."""
        return {i for i in ids if i in self._records}

    def ids(self) -> set[str]:
        return set(self._records)

    def get(self, record_id: str) -> Optional[EmbeddingRecord]:
        return self._records.get(record_id)

    def nearest_neighbors(
        self,
        vector: list[float],
        k: int,
    ) -> list[tuple[EmbeddingRecord, float]]:
        """Return up to *k* records closest to *vector*.

        Results are ordered by ascending distance, ties broken by record id.
        ``k`` larger than the store returns every record.

        Raises:
            DimensionMismatchError: if *vector* has the wrong length.
        """
        if len(vector) != self._dim:
            raise DimensionMismatchError(self._dim, len(vector), "query vector")
        if k <= 0:
            return []

        with self._lock:
            index, id_map = self._index, list(self._id_map)
        if not id_map:
            return []

        query = self._prepare(np.array([vector], dtype=np.float32))
        total = len(id_map)
        fetch_k = min(k + TIE_MARGIN, total)
        while True:
            raw_scores, positions = index.search(query, fetch_k)
            hits: list[tuple[float, str]] = [
                (self._to_distance(float(raw)), id_map[pos])
                for raw, pos in zip(raw_scores[0], positions[0])
                if pos >= 0
            ]
            # FAISS orders equal scores by insertion position, so a tie that
            # runs past the fetched window may hide lower ids.
            if fetch_k >= total or len(hits) <= k or hits[k - 1][0] != hits[-1][0]:
                break
            fetch_k = min(fetch_k * 2, total)
        hits.sort(key=lambda h: (h[0], h[1]))

        return [(self._records[rid], dist) for dist, rid in hits[:k] if rid in self._records]

    # ------------------------------------------------------------------
    # Write operations (under lock)
    # ------------------------------------------------------------------

    def upsert(self, records: list[EmbeddingRecord]) -> int:
        """Insert records whose id is absent; present ids are a no-op.

        Returns:
            Number of records actually inserted.

        Raises:
            DimensionMismatchError: if any record's vector has the wrong length.
        """
        for rec in records:
            if len(rec.vector) != self._dim:
                raise DimensionMismatchError(self._dim, len(rec.vector), f"record {rec.id[:12]}")

        with self._lock:
            fresh: dict[str, EmbeddingRecord] = {}
            for rec in records:
                if rec.id not in self._records and rec.id not in fresh:
                    fresh[rec.id] = rec
            if not fresh:
                return 0

            vecs = self._prepare(np.array([r.vector for r in fresh.values()], dtype=np.float32))
            self._index.add(vecs)
            for row, (rid, rec) in zip(vecs, fresh.items()):
                # Stored vector is exactly what the index holds.
                self._records[rid] = rec.model_copy(update={"vector": row.tolist()})
                self._id_map.append(rid)

        return len(fresh)

    def remove(self, ids: Iterable[str]) -> int:
        """Remove records by id.  Rebuilds the index without the removed ids.

        Returns:
            Number of records actually removed.
        """
        to_remove = set(ids)
        with self._lock:
            keep_positions = [
                i for i, rid in enumerate(self._id_map) if rid not in to_remove
            ]
            removed = len(self._id_map) - len(keep_positions)
            if removed == 0:
                return 0

            new_index = self._new_index()
            if keep_positions:
                kept_vecs = np.vstack(
                    [self._index.reconstruct(i).reshape(1, -1) for i in keep_positions]
                )
                new_index.add(kept_vecs)

            for rid in to_remove:
                self._records.pop(rid, None)
            self._id_map = [self._id_map[i] for i in keep_positions]
            self._index = new_index

        return removed

    def clear(self) -> None:
        """Drop every record."""
        with self._lock:
            self._index = self._new_index()
            self._records.clear()
            self._id_map.clear()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Persist the index and records to ``data_dir``.

        Raises:
            StoreConnectivityError: if the files cannot be written.
        """
        import faiss

        if self._data_dir is None:
            raise StoreConnectivityError("No data_dir configured for persistence")

        index_path = self._data_dir / INDEX_FILE
        records_path = self._data_dir / RECORDS_FILE

        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            with self._lock:
                faiss.write_index(self._index, str(index_path))
                payload = {
                    "version": FORMAT_VERSION,
                    "dim": self._dim,
                    "metric": self._metric,
                    "id_map": self._id_map,
                    "records": {
                        rid: rec.model_dump(mode="json", exclude={"vector"})
                        for rid, rec in self._records.items()
                    },
                }
                tmp_path = records_path.with_suffix(".json.tmp")
                tmp_path.write_text(json.dumps(payload), encoding="utf-8")
                tmp_path.replace(records_path)
        except (OSError, RuntimeError) as exc:
            raise StoreConnectivityError(f"Failed to persist store to {self._data_dir}: {exc}") from exc

        logger.info(
            "Saved FAISS store: %d records to %s", len(self._id_map), self._data_dir,
        )

    def load(self) -> bool:
        """Load a previously saved store.

        Returns:
            ``True`` if a store was loaded, ``False`` if nothing was persisted.

        Raises:
            DimensionMismatchError: persisted dim differs from the configured one.
            ConfigurationError:     persisted metric differs from the configured one.
            StoreConnectivityError: the files exist but cannot be read.
        """
        import faiss

        if self._data_dir is None:
            return False

        index_path = self._data_dir / INDEX_FILE
        records_path = self._data_dir / RECORDS_FILE

        if not index_path.exists() or not records_path.exists():
            return False

        try:
            loaded_index = faiss.read_index(str(index_path))
            payload = json.loads(records_path.read_text(encoding="utf-8"))
        except (OSError, RuntimeError, ValueError) as exc:
            raise StoreConnectivityError(f"Failed to load store from {self._data_dir}: {exc}") from exc

        if payload.get("dim") != self._dim:
            raise DimensionMismatchError(self._dim, payload.get("dim") or 0, f"store at {self._data_dir}")
        if payload.get("metric") != self._metric:
            raise ConfigurationError(
                f"Store at {self._data_dir} uses metric {payload.get('metric')!r}, "
                f"configured metric is {self._metric!r}"
            )

        id_map: list[str] = payload["id_map"]
        if loaded_index.ntotal != len(id_map):
            raise StoreConnectivityError(
                f"Store at {self._data_dir} is inconsistent: "
                f"{loaded_index.ntotal} vectors for {len(id_map)} ids"
            )

        records: dict[str, EmbeddingRecord] = {}
        for pos, rid in enumerate(id_map):
            body = payload["records"][rid]
            body["vector"] = loaded_index.reconstruct(pos).tolist()
            records[rid] = EmbeddingRecord.model_validate(body)

        with self._lock:
            self._index = loaded_index
            self._id_map = id_map
            self._records = records

        logger.info(
            "Loaded FAISS store: %d records from %s", len(id_map), self._data_dir,
        )
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _new_index(self):
        import faiss

        if self._metric == "cosine":
            return faiss.IndexFlatIP(self._dim)
        return faiss.IndexFlatL2(self._dim)

    def _prepare(self, vecs: np.ndarray) -> np.ndarray:
        """L2-normalise rows in-place for the cosine metric."""
        import faiss

        vecs = np.ascontiguousarray(vecs, dtype=np.float32)
        if self._metric == "cosine":
            faiss.normalize_L2(vecs)
        return vecs

    def _to_distance(self, raw: float) -> float:
        if self._metric == "cosine":
            return 1.0 - raw
        return float(np.sqrt(max(raw, 0.0)))
