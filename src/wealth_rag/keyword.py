"""Lexical relevance scoring over the stored passage population.

Scores are a BM25-style term-frequency saturation averaged over the unique
query terms, with a fixed assumed document length, so they stay comparable
across queries of different lengths. The population is read from the vector
store in bounded pages.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field

from .schema import Passage, RetrievalFilters, ScoredCandidate
from .settings import KeywordScanConfig
from .tokenization import terms
from .vector_store import VectorStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class KeywordScan:
    """Outcome of one paginated scan.

    ``cancelled`` is set when a cancel signal or timeout stopped the scan and
    ``exhausted`` when the whole population was read.
    """

    candidates: list[ScoredCandidate] = field(default_factory=list)
    scanned: int = 0
    pages: int = 0
    cancelled: bool = False
    exhausted: bool = False


def saturation(tf: int, doc_length: int, k1: float = 1.2, b: float = 0.75, avg_doc_length: float = 100.0) -> float:
    """Saturated term frequency scaled into ``[0, 1)``."""
    if tf <= 0:
        return 0.0
    norm = k1 * (1 - b + b * doc_length / avg_doc_length)
    return (tf * (k1 + 1) / (tf + norm)) / (k1 + 1)


def score_passage(query_terms: list[str], passage_text: str, config: KeywordScanConfig | None = None) -> float:
    """Mean saturation of ``query_terms`` in ``passage_text``; 0 when none occur."""
    config = config or KeywordScanConfig()
    unique = list(dict.fromkeys(query_terms))
    if not unique:
        return 0.0
    tokens = terms(passage_text)
    counts = Counter(tokens)
    if not any(counts[term] for term in unique):
        return 0.0
    total = sum(
        saturation(counts[term], len(tokens), k1=config.k1, b=config.b, avg_doc_length=config.avg_doc_length)
        for term in unique
    )
    return total / len(unique)


def score_passages(
    query_terms: list[str],
    passages: list[Passage],
    config: KeywordScanConfig | None = None,
) -> list[ScoredCandidate]:
    """Score passages and keep those matching at least one query term.

    Args:
        query_terms: Terms produced by :func:`~wealth_rag.tokenization.terms`.
        passages: Passages to score.
        config: Saturation constants.

    Returns:
        Keyword-channel candidates sorted by descending score; ties keep input order.
    """
    scored = []
    for passage in passages:
        score = score_passage(query_terms, passage.text, config)
        if score > 0:
            scored.append(ScoredCandidate(passage=passage, score=score, channel="keyword"))
    scored.sort(key=lambda candidate: candidate.score, reverse=True)
    return scored


def keyword_search(
    store: VectorStore,
    query_terms: list[str],
    k: int,
    filters: RetrievalFilters | None = None,
    config: KeywordScanConfig | None = None,
    cancel: threading.Event | None = None,
) -> KeywordScan:
    """Scan the store page by page and return the top ``k`` keyword matches.

    The scan reads at most ``config.max_scanned`` passages, and stops early
    once ``config.early_stop_multiple * k`` matches exist after
    ``config.min_pages`` pages. Setting ``cancel`` (or exceeding
    ``config.timeout_seconds``) ends the scan between pages; whatever was
    scored so far is returned with ``cancelled=True``.

    Raises:
        StoreUnavailable: If a page cannot be read.
    """
    config = config or KeywordScanConfig()
    scan = KeywordScan()
    unique = list(dict.fromkeys(query_terms))
    if not unique or k <= 0:
        return scan

    deadline = time.monotonic() + config.timeout_seconds if config.timeout_seconds is not None else None
    matches: list[ScoredCandidate] = []
    offset = 0
    while scan.scanned < config.max_scanned:
        if (cancel is not None and cancel.is_set()) or (deadline is not None and time.monotonic() >= deadline):
            scan.cancelled = True
            logger.warning("Keyword scan stopped after %d passages", scan.scanned)
            break

        limit = min(config.page_size, config.max_scanned - scan.scanned)
        records = store.get(limit=limit, offset=offset, filters=filters)
        passages = [Passage.from_record(record.text, record.metadata, fallback_id=record.id) for record in records]
        matches.extend(score_passages(unique, passages, config))
        scan.pages += 1
        scan.scanned += len(records)
        offset += len(records)

        if len(records) < limit:
            scan.exhausted = True
            break
        if scan.pages >= config.min_pages and len(matches) >= config.early_stop_multiple * k:
            logger.debug("Keyword scan stopped early with %d matches after %d pages", len(matches), scan.pages)
            break

    matches.sort(key=lambda candidate: candidate.score, reverse=True)
    scan.candidates = matches[:k]
    return scan
