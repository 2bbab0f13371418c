"""Tests for schema.py — passage metadata flattening and filters."""
from __future__ import annotations

from wealth_rag.schema import Passage, RetrievalFilters, ScoredCandidate


def _make_passage(**overrides) -> Passage:
    fields = {
        "passage_id": "ira_2",
        "document_id": "ira",
        "text": "Catch-up contributions are $1,000.",
        "sequence": 2,
        "token_count": 5,
        "section": "IRA Contribution Limits",
        "subsection": "Catch-up Contributions",
        "has_numeric_content": True,
        "source_metadata": {"category": "retirement", "year": 2024},
    }
    fields.update(overrides)
    return Passage(**fields)


class TestPassageMetadata:
    def test_flattened_fields(self):
        metadata = _make_passage().to_metadata()
        assert metadata == {
            "category": "retirement",
            "year": 2024,
            "passage_id": "ira_2",
            "document_id": "ira",
            "sequence": 2,
            "token_count": 5,
            "has_table": False,
            "has_formula": False,
            "has_numeric_content": True,
            "section": "IRA Contribution Limits",
            "subsection": "Catch-up Contributions",
        }

    def test_none_dropped_and_lists_joined(self):
        metadata = _make_passage(source_metadata={"author": None, "tags": ["ira", "limits"]}).to_metadata()
        assert "author" not in metadata
        assert metadata["tags"] == "ira, limits"

    def test_passage_fields_override_caller_metadata(self):
        passage = _make_passage(source_metadata={"document_id": "other", "section": "Caller"}, section=None)
        metadata = passage.to_metadata()
        assert metadata["document_id"] == "ira"
        assert "section" not in metadata

    def test_from_record_round_trip(self):
        passage = _make_passage()
        assert Passage.from_record(passage.text, passage.to_metadata()) == passage

    def test_from_record_with_sparse_metadata(self):
        passage = Passage.from_record("text", {"document_id": "tax", "sequence": 4})
        assert passage.passage_id == "tax_4"
        assert passage.token_count == 1
        assert passage.section is None

    def test_from_record_fallback_id(self):
        assert Passage.from_record("text", None, fallback_id="stored-id").passage_id == "stored-id"


class TestScoredCandidate:
    def test_passage_id_property(self):
        assert ScoredCandidate(passage=_make_passage(), score=0.5, channel="vector").passage_id == "ira_2"


class TestRetrievalFilters:
    def test_is_empty(self):
        assert RetrievalFilters().is_empty()
        assert RetrievalFilters(categories=[]).is_empty()
        assert not RetrievalFilters(has_table=False).is_empty()
        assert not RetrievalFilters(year_to=2024).is_empty()
