"""Tests for diversify.py — MMR selection over fused candidates."""
from __future__ import annotations

import pytest

from wealth_rag.diversify import jaccard, mmr_select
from wealth_rag.schema import Passage, ScoredCandidate


def _make_candidate(passage_id: str, score: float, text: str) -> ScoredCandidate:
    passage = Passage(passage_id=passage_id, document_id="doc", text=text, sequence=0, token_count=len(text.split()))
    return ScoredCandidate(passage=passage, score=score, channel="fused")


def _pool() -> list[ScoredCandidate]:
    return [
        _make_candidate("a", 0.9, "roth ira contribution limit income phase out"),
        _make_candidate("b", 0.85, "roth ira contribution limit income phase out"),
        _make_candidate("c", 0.5, "standard deduction married filing jointly"),
        _make_candidate("d", 0.4, "health savings account triple tax advantage"),
        _make_candidate("e", 0.3, "required minimum distributions begin age seventy three"),
    ]


class TestJaccard:
    def test_empty_sets(self):
        assert jaccard(set(), set()) == 0.0

    def test_overlap(self):
        assert jaccard({"roth", "ira"}, {"ira", "limit"}) == pytest.approx(1 / 3)


class TestMmrSelect:
    @pytest.mark.parametrize("lambda_", [0.0, 0.3, 0.7, 1.0])
    def test_short_input_is_returned_unchanged(self, lambda_):
        candidates = _pool()[:3]
        assert mmr_select(candidates, k=5, lambda_=lambda_) is candidates

    def test_returns_exactly_k_unique(self):
        selected = mmr_select(_pool(), k=3)
        assert len(selected) == 3
        assert len({c.passage_id for c in selected}) == 3

    def test_seed_is_highest_score(self):
        candidates = list(reversed(_pool()))
        assert mmr_select(candidates, k=2)[0].passage_id == "a"

    def test_lambda_one_is_pure_relevance(self):
        assert [c.passage_id for c in mmr_select(_pool(), k=3, lambda_=1.0)] == ["a", "b", "c"]

    def test_redundant_passage_is_skipped(self):
        assert [c.passage_id for c in mmr_select(_pool(), k=2, lambda_=0.5)] == ["a", "c"]

    def test_k_zero_returns_nothing(self):
        assert mmr_select(_pool(), k=0) == []

    @pytest.mark.parametrize("lambda_", [-0.5, 1.01])
    def test_invalid_lambda(self, lambda_):
        with pytest.raises(ValueError, match="lambda_"):
            mmr_select(_pool(), k=2, lambda_=lambda_)
