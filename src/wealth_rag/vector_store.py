"""Passage vector stores.

:class:`ChromaVectorStore` is the production backend. :class:`InMemoryVectorStore`
keeps vectors in a NumPy matrix and is used for tests and offline runs. Both
accept :class:`~wealth_rag.schema.RetrievalFilters` and raise
:class:`~wealth_rag.errors.StoreUnavailable` when the backend fails.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Collection
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import chromadb
import numpy as np

from .embeddings import cosine_similarity
from .errors import StoreUnavailable
from .schema import RetrievalFilters

logger = logging.getLogger(__name__)

Metadata = dict[str, Any]


@dataclass(slots=True)
class StoredRecord:
    """A stored passage as returned by a paginated ``get``."""

    id: str
    text: str
    metadata: Metadata = field(default_factory=dict)


@dataclass(slots=True)
class StoredHit:
    """A similarity-query hit; ``similarity`` is ``max(0, 1 - distance)``."""

    id: str
    text: str
    metadata: Metadata
    similarity: float


class VectorStore(Protocol):
    def upsert(
        self,
        ids: list[str],
        vectors: list[list[float]],
        texts: list[str],
        metadatas: list[Metadata],
    ) -> None: ...

    def query(self, vector: list[float], top_k: int, filters: RetrievalFilters | None = None) -> list[StoredHit]: ...

    def get(self, limit: int, offset: int = 0, filters: RetrievalFilters | None = None) -> list[StoredRecord]: ...

    def count(self) -> int: ...

    def delete_document(self, document_id: str, keep: Collection[str] = ()) -> None: ...


def to_chroma_where(filters: RetrievalFilters | None) -> dict[str, Any] | None:
    """Compile filters into a Chroma ``where`` clause.

    A single condition is returned bare, since Chroma rejects ``$and`` with
    fewer than two operands.
    """
    if filters is None:
        return None

    conditions: list[dict[str, Any]] = []
    for key, values in (("source", filters.sources), ("category", filters.categories), ("section", filters.sections)):
        if values:
            conditions.append({key: {"$in": list(values)}})
    for key, flag in (("has_table", filters.has_table), ("has_formula", filters.has_formula)):
        if flag is not None:
            conditions.append({key: {"$eq": flag}})
    if filters.year_from is not None:
        conditions.append({"year": {"$gte": filters.year_from}})
    if filters.year_to is not None:
        conditions.append({"year": {"$lte": filters.year_to}})

    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


def matches_filters(metadata: Metadata, filters: RetrievalFilters | None) -> bool:
    """Evaluate filters against one metadata map, with the semantics of :func:`to_chroma_where`."""
    if filters is None:
        return True
    for key, values in (("source", filters.sources), ("category", filters.categories), ("section", filters.sections)):
        if values and metadata.get(key) not in values:
            return False
    for key, flag in (("has_table", filters.has_table), ("has_formula", filters.has_formula)):
        if flag is not None and metadata.get(key) is not flag:
            return False
    year = metadata.get("year")
    if filters.year_from is not None and (not isinstance(year, (int, float)) or year < filters.year_from):
        return False
    if filters.year_to is not None and (not isinstance(year, (int, float)) or year > filters.year_to):
        return False
    return True


class ChromaVectorStore:
    """Chroma-backed passage store.

    Connects to a Chroma server when ``host`` is given, otherwise uses an
    embedded persistent client under ``persist_dir``. Tests may inject a
    ready-made ``client``.
    """

    def __init__(
        self,
        collection_name: str = "financial_documents",
        persist_dir: str | None = "artifacts/chroma",
        host: str | None = None,
        port: int = 8000,
        client: Any | None = None,
    ):
        try:
            if client is not None:
                self._client = client
            elif host:
                self._client = chromadb.HttpClient(host=host, port=port)
                logger.info("Chroma: connected to %s:%d", host, port)
            else:
                Path(persist_dir or "artifacts/chroma").mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=persist_dir or "artifacts/chroma")
                logger.info("Chroma: persistent at %s", persist_dir)
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine", "description": "Financial documents for retrieval"},
            )
        except Exception as exc:
            raise StoreUnavailable(f"Chroma initialisation failed: {exc}") from exc
        self.collection_name = collection_name

    def upsert(
        self,
        ids: list[str],
        vectors: list[list[float]],
        texts: list[str],
        metadatas: list[Metadata],
    ) -> None:
        if not ids:
            return
        try:
            self._collection.upsert(ids=ids, embeddings=vectors, documents=texts, metadatas=metadatas)
        except Exception as exc:
            raise StoreUnavailable(f"Chroma upsert failed: {exc}") from exc

    def query(self, vector: list[float], top_k: int, filters: RetrievalFilters | None = None) -> list[StoredHit]:
        """Return up to ``top_k`` nearest passages with distance-derived similarity."""
        try:
            n_results = min(top_k, self._collection.count())
            if n_results <= 0:
                return []
            kwargs: dict[str, Any] = {"query_embeddings": [vector], "n_results": n_results}
            where = to_chroma_where(filters)
            if where:
                kwargs["where"] = where
            response = self._collection.query(**kwargs)
        except Exception as exc:
            raise StoreUnavailable(f"Chroma query failed: {exc}") from exc

        ids = response["ids"][0]
        docs = response["documents"][0]
        metas = response["metadatas"][0]
        distances = response["distances"][0]
        return [
            StoredHit(id=hit_id, text=text or "", metadata=dict(meta or {}), similarity=max(0.0, 1.0 - float(distance)))
            for hit_id, text, meta, distance in zip(ids, docs, metas, distances, strict=True)
        ]

    def get(self, limit: int, offset: int = 0, filters: RetrievalFilters | None = None) -> list[StoredRecord]:
        try:
            kwargs: dict[str, Any] = {"limit": limit, "offset": offset, "include": ["documents", "metadatas"]}
            where = to_chroma_where(filters)
            if where:
                kwargs["where"] = where
            response = self._collection.get(**kwargs)
        except Exception as exc:
            raise StoreUnavailable(f"Chroma get failed: {exc}") from exc
        return [
            StoredRecord(id=record_id, text=text or "", metadata=dict(meta or {}))
            for record_id, text, meta in zip(response["ids"], response["documents"], response["metadatas"], strict=True)
        ]

    def count(self) -> int:
        try:
            return self._collection.count()
        except Exception as exc:
            raise StoreUnavailable(f"Chroma count failed: {exc}") from exc

    def delete_document(self, document_id: str, keep: Collection[str] = ()) -> None:
        """Delete the passages of ``document_id`` whose ids are not in ``keep``."""
        try:
            if not keep:
                self._collection.delete(where={"document_id": document_id})
                return
            stored = self._collection.get(where={"document_id": document_id}, include=["metadatas"])
            stale = [record_id for record_id in stored["ids"] if record_id not in keep]
            if stale:
                self._collection.delete(ids=stale)
        except Exception as exc:
            raise StoreUnavailable(f"Chroma delete failed: {exc}") from exc


class InMemoryVectorStore:
    """NumPy-backed store with the same contract as :class:`ChromaVectorStore`."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, StoredRecord] = {}
        self._vectors: dict[str, np.ndarray] = {}

    def upsert(
        self,
        ids: list[str],
        vectors: list[list[float]],
        texts: list[str],
        metadatas: list[Metadata],
    ) -> None:
        with self._lock:
            for record_id, vector, text, metadata in zip(ids, vectors, texts, metadatas, strict=True):
                self._records[record_id] = StoredRecord(id=record_id, text=text, metadata=dict(metadata))
                self._vectors[record_id] = np.asarray(vector, dtype=np.float64)

    def query(self, vector: list[float], top_k: int, filters: RetrievalFilters | None = None) -> list[StoredHit]:
        with self._lock:
            candidates = [record for record in self._records.values() if matches_filters(record.metadata, filters)]
            if not candidates or top_k <= 0:
                return []
            matrix = np.vstack([self._vectors[record.id] for record in candidates])
        scores = cosine_similarity(np.asarray(vector, dtype=np.float64), matrix)
        ranked = sorted(range(len(candidates)), key=lambda idx: scores[idx], reverse=True)[:top_k]
        return [
            StoredHit(
                id=candidates[idx].id,
                text=candidates[idx].text,
                metadata=dict(candidates[idx].metadata),
                similarity=max(0.0, float(scores[idx])),
            )
            for idx in ranked
        ]

    def get(self, limit: int, offset: int = 0, filters: RetrievalFilters | None = None) -> list[StoredRecord]:
        with self._lock:
            selected = [record for record in self._records.values() if matches_filters(record.metadata, filters)]
        return selected[offset : offset + limit]

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def delete_document(self, document_id: str, keep: Collection[str] = ()) -> None:
        with self._lock:
            doomed = [
                rid
                for rid, record in self._records.items()
                if record.metadata.get("document_id") == document_id and rid not in keep
            ]
            for record_id in doomed:
                del self._records[record_id]
                del self._vectors[record_id]


def build_vector_store(backend: str = "chroma", **kwargs: Any) -> VectorStore:
    """Create a vector store of the requested type.

    Raises:
        ValueError: Unknown backend.
    """
    if backend == "chroma":
        return ChromaVectorStore(**kwargs)
    if backend == "memory":
        return InMemoryVectorStore()
    raise ValueError(f"Unknown vector store backend: {backend!r}. Supported: 'chroma', 'memory'")
