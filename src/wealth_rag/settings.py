from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


@dataclass(slots=True)
class OpenAISettings:
    """Runtime model configuration for embedding and generation calls."""

    embedding_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-4.1-mini"
    embedding_dimensions: int = 384


@dataclass(slots=True)
class ChromaSettings:
    """Where the passage collection lives.

    ``host`` selects a Chroma server; otherwise ``persist_dir`` is used for an
    embedded persistent client.
    """

    collection_name: str = "financial_documents"
    persist_dir: str = "artifacts/chroma"
    host: str | None = None
    port: int = 8000


@dataclass(slots=True)
class ChunkingConfig:
    """Token budgets for structural chunking."""

    chunk_size: int = 350
    chunk_overlap: int = 60


@dataclass(slots=True)
class KeywordScanConfig:
    """Bounds for the paginated keyword scan.

    The scan stops early once ``early_stop_multiple * k`` passages have
    matched and at least ``min_pages`` pages were read. Raising either value
    trades latency for recall.
    """

    page_size: int = 100
    max_scanned: int = 2000
    min_pages: int = 3
    early_stop_multiple: int = 3
    k1: float = 1.2
    b: float = 0.75
    avg_doc_length: float = 100.0
    timeout_seconds: float | None = None


@dataclass(slots=True)
class RetrievalConfig:
    """Ranking knobs passed to the orchestrator at construction time."""

    top_k: int = 5
    max_pool: int = 40
    alpha: float = 0.6
    mmr_lambda: float = 0.7
    section_boost: float = 0.2
    score_cap: float = 1.0
    embedding_dimensions: int = 384
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    keyword: KeywordScanConfig = field(default_factory=KeywordScanConfig)

    def pool_size(self, k: int) -> int:
        return max(k, min(2 * k, self.max_pool))


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def load_settings() -> tuple[OpenAISettings, ChromaSettings, RetrievalConfig]:
    """Load environment-backed settings and return typed config objects.

    Returns:
        Tuple of OpenAI model settings, Chroma location settings and the
        retrieval configuration.
    """
    load_dotenv()
    dimensions = _env_int("EMBEDDING_DIMENSIONS", 384)
    openai_settings = OpenAISettings(
        embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
        chat_model=os.getenv("OPENAI_CHAT_MODEL", "gpt-4.1-mini"),
        embedding_dimensions=dimensions,
    )
    chroma_settings = ChromaSettings(
        collection_name=os.getenv("CHROMA_COLLECTION", "financial_documents"),
        persist_dir=os.getenv("CHROMA_PERSIST_DIR", "artifacts/chroma"),
        host=os.getenv("CHROMA_HOST") or None,
        port=_env_int("CHROMA_PORT", 8000),
    )
    retrieval = RetrievalConfig(
        top_k=_env_int("RAG_TOP_K", 5),
        alpha=_env_float("RAG_ALPHA", 0.6),
        mmr_lambda=_env_float("RAG_MMR_LAMBDA", 0.7),
        embedding_dimensions=dimensions,
        chunking=ChunkingConfig(
            chunk_size=_env_int("RAG_CHUNK_SIZE", 350),
            chunk_overlap=_env_int("RAG_CHUNK_OVERLAP", 60),
        ),
    )
    return openai_settings, chroma_settings, retrieval


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging for scripts; library code only creates loggers."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
