"""Tests for pipeline.py — ingestion, hybrid retrieval end to end, failure modes.

Everything runs offline: the in-memory store, the hashing embedder and the
whitespace tokenizer stand in for Chroma, OpenAI and tiktoken.
"""
from __future__ import annotations

import asyncio
import json
import threading
from unittest.mock import MagicMock

import pytest

from wealth_rag.embeddings import HashingEmbeddingClient
from wealth_rag.errors import ProviderUnavailable, RetrievalError, StoreUnavailable
from wealth_rag.pipeline import HybridRetriever, document_id_for
from wealth_rag.sample_corpus import load_sample_corpus
from wealth_rag.schema import RetrievalFilters


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

DIMENSIONS = 64
CATCH_UP_QUERY = "What is the catch-up contribution limit?"


def _make_retriever(store, config, tokenizer_factory, embedder=None, generator=None) -> HybridRetriever:
    return HybridRetriever(
        store=store,
        embedder=embedder or HashingEmbeddingClient(dimensions=DIMENSIONS),
        generator=generator,
        tokenizer_factory=tokenizer_factory,
        config=config,
    )


def _long_text(lines: int = 20) -> str:
    return "\n".join(f"line {idx} " + "retirement savings rule " * 6 for idx in range(lines))


# ---------------------------------------------------------------------------
# add_document
# ---------------------------------------------------------------------------

class TestAddDocument:
    def test_passages_are_stored(self, retriever, memory_store, financial_document):
        passages = retriever.add_document(financial_document, {"document_id": "ira-guide", "category": "retirement"})
        assert passages
        assert memory_store.count() == len(passages)
        assert all(p.passage_id.startswith("ira-guide_") for p in passages)
        stored = memory_store.get(limit=10)
        assert all(record.metadata["category"] == "retirement" for record in stored)

    def test_document_id_from_content_hash(self):
        document_id = document_id_for("some text", {})
        assert document_id.startswith("doc_")
        assert len(document_id) == len("doc_") + 16
        assert document_id == document_id_for("some text", {"document_id": None})

    def test_empty_document_stores_nothing(self, retriever, memory_store):
        assert retriever.add_document("   \n  ") == []
        assert memory_store.count() == 0

    def test_replace_removes_stale_passages(self, retriever, memory_store):
        assert len(retriever.add_document(_long_text(), {"document_id": "guide"})) > 1
        retriever.add_document("short replacement about IRA limits", {"document_id": "guide"}, replace=True)
        assert memory_store.count() == 1

    def test_without_replace_stale_passages_remain(self, retriever, memory_store):
        first = retriever.add_document(_long_text(), {"document_id": "guide"})
        retriever.add_document("short replacement about IRA limits", {"document_id": "guide"})
        assert memory_store.count() == len(first)

    def test_failed_replace_keeps_existing_passages(self, retriever, memory_store, monkeypatch):
        retriever.add_document("Roth IRA income limits for single filers", {"document_id": "roth"})
        before = [record.id for record in memory_store.get(limit=10)]
        monkeypatch.setattr(memory_store, "upsert", MagicMock(side_effect=StoreUnavailable("write rejected")))

        with pytest.raises(StoreUnavailable):
            retriever.add_document("updated Roth IRA income limits", {"document_id": "roth"}, replace=True)

        assert [record.id for record in memory_store.get(limit=10)] == before

    def test_replace_keeps_only_new_passage_ids(self, retriever, memory_store):
        retriever.add_document(_long_text(), {"document_id": "guide"})
        passages = retriever.add_document(_long_text(4), {"document_id": "guide"}, replace=True)
        assert {record.id for record in memory_store.get(limit=100)} == {p.passage_id for p in passages}

    def test_embedder_failure_uses_fallback(self, memory_store, retrieval_config, tokenizer_factory):
        embedder = MagicMock()
        embedder.embed.side_effect = ProviderUnavailable("offline")
        retriever = _make_retriever(memory_store, retrieval_config, tokenizer_factory, embedder=embedder)
        assert retriever.add_document("Roth IRA income limits for single filers", {"document_id": "roth"})
        assert memory_store.count() == 1


# ---------------------------------------------------------------------------
# retrieve
# ---------------------------------------------------------------------------

class TestRetrieve:
    def test_empty_corpus_is_a_successful_empty_result(self, retriever):
        response = retriever.retrieve("What is my IRA limit?")
        assert response.candidates == []
        assert response.keyword_scan.exhausted
        assert response.expanded_query.original == "What is my IRA limit?"

    def test_catch_up_question_end_to_end(self, retriever, older_profile):
        load_sample_corpus(retriever)
        response = retriever.retrieve(CATCH_UP_QUERY, profile=older_profile, k=3)

        assert 1 <= len(response.candidates) <= 3
        assert len({c.passage_id for c in response.candidates}) == len(response.candidates)
        assert all(c.channel == "fused" for c in response.candidates)
        assert any("catch-up" in p.text.lower() for p in response.passages)
        assert "Catch-up Contributions" in response.expanded_query.priority_sections

    def test_scores_are_descending_before_diversification(self, retriever):
        load_sample_corpus(retriever)
        response = retriever.retrieve("standard deduction married filing jointly", k=2)
        assert response.candidates[0].score == max(c.score for c in response.candidates)

    def test_profile_mapping_is_accepted(self, retriever):
        load_sample_corpus(retriever)
        response = retriever.retrieve("IRA limit", profile={"age": 55})
        assert "age 50 or older catch-up contributions" in response.expanded_query.profile_terms

    def test_malformed_profile_degrades_to_plain_expansion(self, retriever):
        load_sample_corpus(retriever)
        response = retriever.retrieve("What's my IRA limit?", profile={"age": "not an age"}, k=2)
        assert response.candidates
        assert response.expanded_query.profile_terms == []

    def test_numeric_strings_in_profile_are_accepted(self, retriever):
        load_sample_corpus(retriever)
        response = retriever.retrieve("What's my IRA limit?", profile={"age": "55"}, k=2)
        assert "age 50 or older catch-up contributions" in response.expanded_query.profile_terms

    def test_filters_apply_to_both_channels(self, retriever):
        load_sample_corpus(retriever)
        response = retriever.retrieve(
            "standard deduction and IRA limits", filters=RetrievalFilters(categories=["taxes"]), k=5
        )
        assert response.candidates
        assert all(p.source_metadata["category"] == "taxes" for p in response.passages)

    def test_default_k_comes_from_config(self, retriever, retrieval_config):
        load_sample_corpus(retriever)
        response = retriever.retrieve("retirement contribution limits")
        assert len(response.candidates) <= retrieval_config.top_k

    @pytest.mark.parametrize("k", [0, -3])
    def test_non_positive_k_raises(self, retriever, k):
        with pytest.raises(ValueError, match="k must be positive"):
            retriever.retrieve("IRA limit", k=k)

    def test_preset_cancel_still_returns_vector_results(self, retriever):
        load_sample_corpus(retriever)
        cancel = threading.Event()
        cancel.set()
        response = retriever.retrieve(CATCH_UP_QUERY, k=3, cancel=cancel)
        assert response.keyword_scan.cancelled
        assert response.keyword_scan.candidates == []
        assert response.candidates

    def test_embedder_failure_still_retrieves(self, memory_store, retrieval_config, tokenizer_factory):
        embedder = MagicMock()
        embedder.embed.side_effect = ConnectionError("provider down")
        retriever = _make_retriever(memory_store, retrieval_config, tokenizer_factory, embedder=embedder)
        load_sample_corpus(retriever)
        response = retriever.retrieve(CATCH_UP_QUERY, k=3)
        assert len(response.candidates) == 3

    def test_generator_reply_drives_expansion(self, memory_store, retrieval_config, tokenizer_factory):
        generator = MagicMock()
        generator.complete.return_value = json.dumps(
            {
                "expanded_query": "catch-up contribution limit for savers age 50 or older",
                "expansion_terms": ["catch-up contributions"],
                "profile_terms": [],
                "priority_sections": ["Catch-up Contributions"],
            }
        )
        retriever = _make_retriever(memory_store, retrieval_config, tokenizer_factory, generator=generator)
        load_sample_corpus(retriever)
        response = retriever.retrieve(CATCH_UP_QUERY, k=3)
        assert response.expanded_query.strategy == "provider"
        assert response.expanded_query.expanded.startswith(CATCH_UP_QUERY)
        generator.complete.assert_called_once()

    def test_async_entry_point(self, retriever):
        load_sample_corpus(retriever)
        response = asyncio.run(retriever.aretrieve("HSA rules", k=2))
        assert len(response.candidates) <= 2


class TestStoreFailure:
    def test_store_outage_is_a_retrieval_error(self, retrieval_config, tokenizer_factory):
        store = MagicMock()
        store.query.side_effect = StoreUnavailable("connection refused")
        store.get.side_effect = StoreUnavailable("connection refused")
        retriever = _make_retriever(store, retrieval_config, tokenizer_factory)

        with pytest.raises(RetrievalError, match="connection refused") as exc_info:
            retriever.retrieve("IRA limit")
        assert isinstance(exc_info.value.__cause__, StoreUnavailable)

    def test_unexpected_error_is_a_retrieval_error(self, retrieval_config, tokenizer_factory):
        store = MagicMock()
        store.query.side_effect = KeyError("ids")
        store.get.return_value = []
        retriever = _make_retriever(store, retrieval_config, tokenizer_factory)
        with pytest.raises(RetrievalError, match="retrieval failed"):
            retriever.retrieve("IRA limit")


# ---------------------------------------------------------------------------
# health
# ---------------------------------------------------------------------------

class TestHealth:
    def test_healthy_store(self, retriever, financial_document):
        retriever.add_document(financial_document)
        report = retriever.health()
        assert report.healthy
        assert report.passage_count >= 1

    def test_unreachable_store(self, retrieval_config, tokenizer_factory):
        store = MagicMock()
        store.count.side_effect = StoreUnavailable("timeout")
        report = _make_retriever(store, retrieval_config, tokenizer_factory).health()
        assert not report.healthy
        assert report.detail == "timeout"
