from __future__ import annotations

from dataclasses import dataclass

from .schema import Passage, ScoredCandidate

PREFIX_KEY_LENGTH = 100


def merge_key(passage: Passage) -> str:
    """Identity used to merge hits across channels."""
    return passage.passage_id or passage.text[:PREFIX_KEY_LENGTH]


@dataclass(slots=True)
class _Entry:
    passage: Passage
    score: float = 0.0


def fuse(
    vector_results: list[ScoredCandidate],
    keyword_results: list[ScoredCandidate],
    alpha: float,
) -> list[ScoredCandidate]:
    """Fuse vector and keyword rankings with a weighted linear combination.

    A passage found by one channel only receives that channel's weighted
    score; there is no penalty for missing from the other channel.

    Args:
        vector_results: Vector-channel candidates, similarity in ``[0, 1]``.
        keyword_results: Keyword-channel candidates.
        alpha: Weight of the vector channel.

    Returns:
        Fused candidates sorted by descending score, first-seen order among ties.

    Raises:
        ValueError: If ``alpha`` is outside ``[0, 1]``.
    """
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"alpha must be in [0, 1], got {alpha}")

    entries: dict[str, _Entry] = {}
    for weight, results in ((alpha, vector_results), (1.0 - alpha, keyword_results)):
        for candidate in results:
            key = merge_key(candidate.passage)
            entry = entries.get(key)
            if entry is None:
                entry = entries[key] = _Entry(passage=candidate.passage)
            entry.score += weight * candidate.score

    fused = [ScoredCandidate(passage=entry.passage, score=entry.score, channel="fused") for entry in entries.values()]
    fused.sort(key=lambda candidate: candidate.score, reverse=True)
    return fused


def _matches_section(passage: Passage, priorities: list[str]) -> bool:
    labels = [label.lower() for label in (passage.section, passage.subsection) if label]
    return any(priority in label for priority in priorities for label in labels)


def apply_section_bias(
    candidates: list[ScoredCandidate],
    priority_sections: list[str],
    boost: float = 0.2,
    cap: float = 1.0,
) -> list[ScoredCandidate]:
    """Boost candidates whose section or subsection contains a priority section.

    Matching is case-insensitive containment. A boosted score is capped at
    ``cap`` but never drops below the candidate's original score. Order is
    preserved; callers re-sort.
    """
    priorities = [section.lower() for section in priority_sections if section and section.strip()]
    if not priorities:
        return candidates

    biased = []
    for candidate in candidates:
        score = candidate.score
        if _matches_section(candidate.passage, priorities):
            score = max(score, min(cap, score + boost))
        biased.append(ScoredCandidate(passage=candidate.passage, score=score, channel=candidate.channel))
    return biased
