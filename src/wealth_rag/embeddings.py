from __future__ import annotations

import logging
import zlib
from collections import Counter
from typing import Protocol

import numpy as np
from openai import OpenAI

from .errors import Ok, ProviderError, ProviderResult, ProviderUnavailable
from .tokenization import terms

logger = logging.getLogger(__name__)

DEFAULT_DIMENSIONS = 384
MAX_FALLBACK_TERMS = 50
HASH_PROBES = 2


class EmbeddingClient(Protocol):
    """Converts text to a fixed-dimension vector."""

    dimensions: int

    def embed(self, text: str) -> list[float]:
        """Return the embedding of ``text``; raise on provider failure."""


class OpenAIEmbeddingClient:
    """Embedding client backed by the OpenAI embeddings API."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int = DEFAULT_DIMENSIONS,
        client: OpenAI | None = None,
    ):
        self.model = model
        self.dimensions = dimensions
        self._client = client

    def embed(self, text: str) -> list[float]:
        return self.embed_texts([text])[0].tolist()

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        """Generate embedding vectors for input texts.

        Args:
            texts: Input strings to embed.

        Returns:
            A ``float32`` matrix shaped ``(len(texts), dimensions)``.

        Raises:
            ProviderUnavailable: If the API call fails.
        """
        client = self._client or OpenAI()
        try:
            response = client.embeddings.create(model=self.model, input=texts, dimensions=self.dimensions)
        except Exception as exc:
            raise ProviderUnavailable(f"OpenAI embeddings call failed: {exc}") from exc
        vectors = [row.embedding for row in response.data]
        return np.array(vectors, dtype=np.float32)


class SentenceTransformerEmbeddingClient:
    """Local embedding via sentence-transformers.

    Default model: all-MiniLM-L6-v2, whose 384 dimensions match the default
    collection layout.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        from sentence_transformers import SentenceTransformer

        logger.info("Loading embedding model: %s", model_name)
        self.model_name = model_name
        self._model = SentenceTransformer(model_name)
        self.dimensions = int(self._model.get_sentence_embedding_dimension())

    def embed(self, text: str) -> list[float]:
        vector = self._model.encode([text], show_progress_bar=False)[0]
        return [float(value) for value in vector]


class HashingEmbeddingClient:
    """Offline client that always returns :func:`fallback_embedding`."""

    def __init__(self, dimensions: int = DEFAULT_DIMENSIONS):
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        return fallback_embedding(text, self.dimensions)


def _bucket(term: str, probe: int, dimensions: int) -> int:
    return zlib.crc32(f"{term}{probe}".encode("utf-8")) % dimensions


def fallback_embedding(text: str, dimensions: int = DEFAULT_DIMENSIONS) -> list[float]:
    """Deterministic local embedding used when the provider is unavailable.

    The 50 most frequent terms (ties keep first-seen order) are hashed into
    ``dimensions`` buckets, weighted by their frequency share and damped by
    rank, and the vector is L2-normalised. Uses a stable CRC32 hash so the
    result is identical across processes.

    Args:
        text: Input text.
        dimensions: Output vector length.

    Returns:
        A unit-length vector, or all zeros when ``text`` has no terms.
    """
    tokens = terms(text)
    vector = np.zeros(dimensions, dtype=np.float64)
    if not tokens:
        return vector.tolist()

    total = len(tokens)
    ranked = Counter(tokens).most_common(MAX_FALLBACK_TERMS)
    for rank, (term, frequency) in enumerate(ranked):
        weight = (frequency / total) / np.sqrt(rank + 1)
        for probe in range(HASH_PROBES):
            vector[_bucket(term, probe, dimensions)] += weight

    norm = np.linalg.norm(vector)
    if norm > 0:
        vector /= norm
    return vector.tolist()


def try_embed(client: EmbeddingClient, text: str, dimensions: int) -> ProviderResult[list[float]]:
    """Call the provider and report the outcome as ``Ok`` or ``ProviderError``."""
    try:
        vector = list(client.embed(text))
    except Exception as exc:  # noqa: BLE001
        return ProviderError(reason=str(exc) or type(exc).__name__, error=exc)
    if len(vector) != dimensions:
        return ProviderError(reason=f"expected {dimensions} dimensions, got {len(vector)}")
    return Ok(vector)


def embed_with_fallback(client: EmbeddingClient, text: str, dimensions: int) -> list[float]:
    """Embed ``text`` with ``client``, switching to :func:`fallback_embedding` on failure."""
    outcome = try_embed(client, text, dimensions)
    if isinstance(outcome, ProviderError):
        logger.warning("Embedding provider unavailable (%s), using local fallback", outcome.reason)
        return fallback_embedding(text, dimensions)
    return outcome.value


def cosine_similarity(query_vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Compute cosine similarity between one query vector and many vectors.

    Args:
        query_vector: Query embedding vector.
        matrix: Candidate embedding matrix where each row is one vector.

    Returns:
        A 1D array of cosine similarity scores aligned to matrix rows.
    """
    query_norm = np.linalg.norm(query_vector)
    matrix_norm = np.linalg.norm(matrix, axis=1)
    denominator = np.maximum(query_norm * matrix_norm, 1e-12)
    return (matrix @ query_vector) / denominator
