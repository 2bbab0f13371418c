"""Shared pytest fixtures for wealth_rag unit tests."""
from __future__ import annotations

import pytest

from wealth_rag.embeddings import HashingEmbeddingClient
from wealth_rag.pipeline import HybridRetriever
from wealth_rag.schema import UserProfile
from wealth_rag.settings import ChunkingConfig, RetrievalConfig
from wealth_rag.tokenization import WhitespaceTokenizer
from wealth_rag.vector_store import InMemoryVectorStore

DIMENSIONS = 64


@pytest.fixture()
def tokenizer_factory():
    return WhitespaceTokenizer


@pytest.fixture()
def retrieval_config() -> RetrievalConfig:
    return RetrievalConfig(embedding_dimensions=DIMENSIONS, chunking=ChunkingConfig(chunk_size=120, chunk_overlap=20))


@pytest.fixture()
def memory_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture()
def retriever(memory_store, retrieval_config, tokenizer_factory) -> HybridRetriever:
    return HybridRetriever(
        store=memory_store,
        embedder=HashingEmbeddingClient(dimensions=DIMENSIONS),
        tokenizer_factory=tokenizer_factory,
        config=retrieval_config,
    )


@pytest.fixture()
def older_profile() -> UserProfile:
    return UserProfile(
        age=55,
        filing_status="married_filing_jointly",
        residency_state="CA",
        residency_city="Los Angeles",
        goals=["retirement", "tax_optimization"],
        risk_tolerance="medium",
        dependents=2,
        full_name="Alice Johnson",
    )


@pytest.fixture()
def financial_document() -> str:
    return (
        "# Retirement Accounts\n"
        "\n"
        "## IRA Contribution Limits\n"
        "The contribution limit for Traditional and Roth IRAs is $7,000 for 2024.\n"
        "\n"
        "### Catch-up Contributions\n"
        "Individuals age 50 and older can contribute an additional $1,000.\n"
        "\n"
        "| Account | Limit | Catch-up |\n"
        "| --- | --- | --- |\n"
        "| IRA | $7,000 | $1,000 |\n"
        "| 401(k) | $23,000 | $7,500 |\n"
        "\n"
        "## Withdrawal Rules\n"
        "- Early withdrawals before age 59 1/2 incur a penalty\n"
        "- Required minimum distributions begin at age 73\n"
    )
