from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace

from .chunking import StructuralChunker
from .diversify import mmr_select
from .embeddings import EmbeddingClient, embed_with_fallback
from .errors import RetrievalError, StoreUnavailable
from .expansion import QueryExpander
from .fusion import apply_section_bias, fuse
from .generation import TextGenerator
from .keyword import KeywordScan, keyword_search
from .schema import ExpandedQuery, Passage, RetrievalFilters, ScoredCandidate, UserProfile
from .settings import RetrievalConfig
from .tokenization import TokenizerFactory, build_tokenizer_factory, terms
from .tracing import ATTR_INPUT_VALUE, ATTR_OUTPUT_VALUE, ATTR_RETRIEVAL_DOCUMENTS, get_tracer, stage_span, traced_generator
from .vector_store import VectorStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RetrievalResponse:
    """Ranked passages for one query; an empty ``candidates`` list is a successful result."""

    expanded_query: ExpandedQuery
    candidates: list[ScoredCandidate]
    keyword_scan: KeywordScan

    @property
    def passages(self) -> list[Passage]:
        return [candidate.passage for candidate in self.candidates]


@dataclass(slots=True)
class HealthReport:
    healthy: bool
    passage_count: int | None = None
    detail: str | None = None


def document_id_for(text: str, metadata: Mapping[str, Any]) -> str:
    """Caller-supplied ``document_id``, else a hash of the content."""
    explicit = metadata.get("document_id")
    if explicit:
        return str(explicit)
    return "doc_" + hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


class HybridRetriever:
    """Hybrid vector and keyword retrieval with fusion, section bias and MMR.

    All collaborators are injected, so tests can substitute every external
    provider.

    Args:
        store: Passage vector store, read by both channels.
        embedder: Embedding provider; failures fall back to a local embedding.
        generator: Optional text-generation provider used for query expansion.
        tokenizer_factory: Produces the tokenizer used to size chunks.
        config: Ranking and chunking configuration.
        tracer: OpenTelemetry tracer for stage spans.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingClient,
        generator: TextGenerator | None = None,
        tokenizer_factory: TokenizerFactory | None = None,
        config: RetrievalConfig | None = None,
        tracer: trace.Tracer | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.config = config or RetrievalConfig()
        self.tracer = tracer or get_tracer("wealth_rag.pipeline")
        self.chunker = StructuralChunker(tokenizer_factory or build_tokenizer_factory(), self.config.chunking)
        if generator is not None:
            model = getattr(generator, "model", "")
            generator = traced_generator(generator, self.tracer, model_name=model if isinstance(model, str) else "")
        self.expander = QueryExpander(generator)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def add_document(self, text: str, metadata: Mapping[str, Any] | None = None, replace: bool = False) -> list[Passage]:
        """Chunk, embed and upsert one document.

        Args:
            text: Document body.
            metadata: Caller metadata (category, source, year, ...) copied onto every passage.
            replace: Remove passages stored under the same document id that the new
                text no longer produces. Existing passages survive a failed write.

        Returns:
            The passages written.

        Raises:
            StoreUnavailable: If the store rejects the write.
        """
        metadata = dict(metadata or {})
        document_id = document_id_for(text, metadata)
        with stage_span(self.tracer, "ingest", **{"document.id": document_id}) as span:
            passages = self.chunker.chunk(text, document_id, metadata)
            if not passages:
                if replace:
                    self.store.delete_document(document_id)
                logger.info("Document %s produced no passages", document_id)
                return []

            dimensions = self.config.embedding_dimensions
            vectors = [embed_with_fallback(self.embedder, passage.text, dimensions) for passage in passages]
            ids = [passage.passage_id for passage in passages]
            self.store.upsert(
                ids=ids,
                vectors=vectors,
                texts=[passage.text for passage in passages],
                metadatas=[passage.to_metadata() for passage in passages],
            )
            # Stale passages go only after the new ones are written.
            if replace:
                self.store.delete_document(document_id, keep=set(ids))
            span.set_attribute("document.passages", len(passages))
        logger.info("Stored %d passages for %s", len(passages), document_id)
        return passages

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def retrieve(
        self,
        query: str,
        profile: UserProfile | Mapping[str, Any] | None = None,
        filters: RetrievalFilters | None = None,
        k: int | None = None,
        cancel: threading.Event | None = None,
    ) -> RetrievalResponse:
        """Synchronous :meth:`aretrieve`; must not be called from a running event loop."""
        return asyncio.run(self.aretrieve(query, profile=profile, filters=filters, k=k, cancel=cancel))

    async def aretrieve(
        self,
        query: str,
        profile: UserProfile | Mapping[str, Any] | None = None,
        filters: RetrievalFilters | None = None,
        k: int | None = None,
        cancel: threading.Event | None = None,
    ) -> RetrievalResponse:
        """Expand, search both channels in parallel, fuse, bias and diversify.

        Args:
            query: Free-text question.
            profile: Optional user profile used for expansion.
            filters: Metadata constraints applied to both channels.
            k: Number of passages wanted; defaults to ``config.top_k``.
            cancel: Stops the keyword scan early; the call still succeeds.

        Returns:
            A :class:`RetrievalResponse` with at most ``k`` fused candidates.

        Raises:
            RetrievalError: If any stage fails, including store outages.
        """
        k = self.config.top_k if k is None else k
        if k <= 0:
            raise ValueError("k must be positive")
        try:
            return await self._retrieve(query, profile, filters, k, cancel)
        except RetrievalError:
            raise
        except StoreUnavailable as exc:
            raise RetrievalError(f"vector store unavailable: {exc}") from exc
        except Exception as exc:
            raise RetrievalError(f"retrieval failed: {exc}") from exc

    async def _retrieve(
        self,
        query: str,
        profile: UserProfile | Mapping[str, Any] | None,
        filters: RetrievalFilters | None,
        k: int,
        cancel: threading.Event | None,
    ) -> RetrievalResponse:
        config = self.config
        pool = config.pool_size(k)
        with stage_span(self.tracer, "retrieval", **{ATTR_INPUT_VALUE: query, "retrieval.k": k}) as root:
            with stage_span(self.tracer, "expand") as span:
                expanded = await asyncio.to_thread(self.expander.expand, query, profile)
                span.set_attribute("expansion.strategy", expanded.strategy)
                span.set_attribute(ATTR_OUTPUT_VALUE, expanded.expanded)

            with stage_span(self.tracer, "embed"):
                query_vector = await asyncio.to_thread(
                    embed_with_fallback, self.embedder, expanded.expanded, config.embedding_dimensions
                )

            stop = cancel or threading.Event()
            try:
                vector_results, scan = await asyncio.gather(
                    asyncio.to_thread(self._vector_search, query_vector, pool, filters),
                    asyncio.to_thread(self._keyword_search, terms(expanded.expanded), pool, filters, stop),
                )
            finally:
                if cancel is None:
                    stop.set()

            with stage_span(self.tracer, "fuse") as span:
                fused = fuse(vector_results, scan.candidates, config.alpha)
                biased = apply_section_bias(
                    fused, expanded.priority_sections, boost=config.section_boost, cap=config.score_cap
                )
                ranked = sorted(biased, key=lambda candidate: candidate.score, reverse=True)
                span.set_attribute("fusion.candidates", len(ranked))

            with stage_span(self.tracer, "diversify"):
                selected = mmr_select(ranked, k, config.mmr_lambda)

            root.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(selected))

        logger.info(
            "Retrieved %d passages for %r (vector=%d, keyword=%d, scanned=%d%s)",
            len(selected),
            query,
            len(vector_results),
            len(scan.candidates),
            scan.scanned,
            ", cancelled" if scan.cancelled else "",
        )
        return RetrievalResponse(expanded_query=expanded, candidates=selected, keyword_scan=scan)

    def _vector_search(
        self, query_vector: list[float], pool: int, filters: RetrievalFilters | None
    ) -> list[ScoredCandidate]:
        with stage_span(self.tracer, "vector_search", **{"retrieval.pool": pool}):
            hits = self.store.query(query_vector, pool, filters)
        return [
            ScoredCandidate(
                passage=Passage.from_record(hit.text, hit.metadata, fallback_id=hit.id),
                score=hit.similarity,
                channel="vector",
            )
            for hit in hits
        ]

    def _keyword_search(
        self,
        query_terms: list[str],
        pool: int,
        filters: RetrievalFilters | None,
        stop: threading.Event,
    ) -> KeywordScan:
        with stage_span(self.tracer, "keyword_search", **{"retrieval.pool": pool}) as span:
            scan = keyword_search(self.store, query_terms, pool, filters=filters, config=self.config.keyword, cancel=stop)
            span.set_attribute("keyword.scanned", scan.scanned)
            span.set_attribute("keyword.cancelled", scan.cancelled)
        return scan

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> HealthReport:
        """Report whether the store is reachable and how many passages it holds."""
        try:
            count = self.store.count()
        except StoreUnavailable as exc:
            logger.warning("Health check failed: %s", exc)
            return HealthReport(healthy=False, detail=str(exc))
        return HealthReport(healthy=True, passage_count=count)
