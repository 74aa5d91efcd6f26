"""
In-memory approximate nearest-neighbour index, rebuilt for every query.

Large record sets go into an HNSW collection on a ChromaDB ephemeral
(in-process, never persisted) client.  Small sets, zero query vectors and
requests for at least as many neighbours as there are records use an exact
numpy scan instead.  Either way the similarities handed back are exact
cosine values recomputed from the stored vectors, so equal vectors tie
exactly and the tie-break (newer ``ts``, then larger ``id``) is
deterministic.  The HNSW collection has no embedding function of its own;
vectors are always handed over precomputed.
"""

from __future__ import annotations

import logging
import uuid
from typing import Sequence

import chromadb
import numpy as np
from chromadb.config import Settings

from .models import Record

logger = logging.getLogger(__name__)

#: Record counts at or below this are always scanned exactly.
BRUTE_FORCE_THRESHOLD: int = 64

HNSW_M: int = 16
HNSW_EF_CONSTRUCTION: int = 200
HNSW_EF_SEARCH: int = 50

# Lazily created; ChromaDB shares one in-process system per client settings.
_client: chromadb.ClientAPI | None = None


def _get_client() -> chromadb.ClientAPI:
    global _client
    if _client is None:
        _client = chromadb.EphemeralClient(settings=Settings(anonymized_telemetry=False))
    return _client


class VectorIndex:
    """
    Nearest-neighbour index over a fixed snapshot of records.

    Use as a context manager (or call :meth:`close`) so the backing
    ChromaDB collection is dropped once the query is answered.
    """

    def __init__(
        self,
        records: Sequence[Record],
        brute_force_threshold: int = BRUTE_FORCE_THRESHOLD,
        _client: chromadb.ClientAPI | None = None,
    ) -> None:
        self.records = list(records)
        dim = len(self.records[0].vector) if self.records else 0
        self._matrix = np.array([r.vector for r in self.records], dtype=np.float32).reshape(
            len(self.records), dim
        )
        norms = np.linalg.norm(self._matrix, axis=1)
        self._norms = np.where(norms > 0, norms, 1.0)
        self._zero = norms == 0
        self._positions = {r.id: i for i, r in enumerate(self.records)}

        self._client = None
        self.collection = None
        if len(self.records) > brute_force_threshold:
            self._client = _client or _get_client()
            self.collection = self._build_collection()

    def __len__(self) -> int:
        return len(self.records)

    def __enter__(self) -> "VectorIndex":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def approximate(self) -> bool:
        """``True`` when queries go through the HNSW graph."""
        return self.collection is not None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _build_collection(self):
        name = f"memstore_{uuid.uuid4().hex}"
        collection = self._client.get_or_create_collection(
            name=name,
            embedding_function=None,
            metadata={
                "hnsw:space": "cosine",
                "hnsw:M": HNSW_M,
                "hnsw:construction_ef": HNSW_EF_CONSTRUCTION,
                "hnsw:search_ef": HNSW_EF_SEARCH,
            },
        )
        batch = self._client.get_max_batch_size()
        for start in range(0, len(self.records), batch):
            end = start + batch
            collection.add(
                ids=[str(r.id) for r in self.records[start:end]],
                embeddings=self._matrix[start:end],
            )
        logger.debug("Built HNSW index %s over %d vectors", name, len(self.records))
        return collection

    def close(self) -> None:
        """Drop the backing collection, if any."""
        if self.collection is not None:
            self._client.delete_collection(self.collection.name)
            self.collection = None

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def similarities(self, vector: np.ndarray) -> np.ndarray:
        """Exact cosine similarity of *vector* against every indexed row."""
        q = np.asarray(vector, dtype=np.float32)
        q_norm = float(np.linalg.norm(q))
        if q_norm == 0.0 or self._matrix.shape[0] == 0:
            return np.zeros(self._matrix.shape[0], dtype=np.float64)
        sims = (self._matrix @ q).astype(np.float64) / (self._norms.astype(np.float64) * q_norm)
        sims[self._zero] = 0.0
        return sims

    def _candidate_positions(self, vector: np.ndarray, k: int) -> list[int]:
        results = self.collection.query(
            query_embeddings=[np.asarray(vector, dtype=np.float32)],
            n_results=k,
            include=["distances"],
        )
        ids = results["ids"][0] if results["ids"] else []
        return [self._positions[int(i)] for i in ids]

    def _widen_to_cutoff(self, positions: list[int], sims: np.ndarray, k: int) -> list[int]:
        """
        Add every record at least as similar as the k-th HNSW candidate.

        HNSW returns an arbitrary subset of equally similar vectors; the
        widened set always contains the exact top *k* under the tie-break.
        """
        if not positions:
            return positions
        ranked = np.sort(sims[positions])[::-1]
        cutoff = ranked[min(k, len(ranked)) - 1]
        extra = np.flatnonzero(sims >= cutoff).tolist()
        return sorted(set(positions).union(extra))

    def query(self, vector: np.ndarray, k: int) -> list[tuple[int, float]]:
        """
        Return up to *k* ``(record_id, similarity)`` pairs, best first.

        Ties on similarity are broken by newer ``ts`` then larger ``id``.
        """
        if k <= 0 or not self.records:
            return []

        exact = (
            self.collection is None
            or k >= len(self.records)
            or float(np.linalg.norm(vector)) == 0.0
        )
        sims = self.similarities(vector)
        if exact:
            positions = list(range(len(self.records)))
        else:
            positions = self._widen_to_cutoff(self._candidate_positions(vector, k), sims, k)

        hits = [(self.records[p], float(sims[p])) for p in positions]
        hits.sort(key=lambda h: (h[1], h[0].ts, h[0].id), reverse=True)
        return [(rec.id, sim) for rec, sim in hits[:k]]


def build(records: Sequence[Record], brute_force_threshold: int = BRUTE_FORCE_THRESHOLD) -> VectorIndex:
    """Build a fresh in-memory index over *records*."""
    return VectorIndex(records, brute_force_threshold=brute_force_threshold)


def query(index: VectorIndex, vector: np.ndarray, k: int) -> list[tuple[int, float]]:
    """Up to *k* approximate nearest neighbours of *vector* in *index*."""
    return index.query(vector, k)
