from __future__ import annotations

from .schema import ScoredCandidate
from .tokenization import terms


def jaccard(left: set[str], right: set[str]) -> float:
    if not left and not right:
        return 0.0
    return len(left & right) / len(left | right)


def mmr_select(candidates: list[ScoredCandidate], k: int, lambda_: float = 0.7) -> list[ScoredCandidate]:
    """Greedy Maximal Marginal Relevance selection.

    Seeds with the highest-scored candidate, then repeatedly adds the one
    maximising ``lambda_ * score - (1 - lambda_) * max_similarity`` against
    what is already selected. Similarity is Jaccard over keyword-term sets.

    Args:
        candidates: Fused candidates with unique passage ids.
        k: Number of results wanted.
        lambda_: Relevance weight in ``[0, 1]``; 1.0 ignores redundancy.

    Returns:
        ``min(k, len(candidates))`` candidates with no repeated passage id. The
        input is returned unchanged when it already has at most ``k`` entries.
    """
    if not 0.0 <= lambda_ <= 1.0:
        raise ValueError(f"lambda_ must be in [0, 1], got {lambda_}")
    if len(candidates) <= k:
        return candidates
    if k <= 0:
        return []

    term_sets = [set(terms(candidate.passage.text)) for candidate in candidates]
    seed = max(range(len(candidates)), key=lambda idx: candidates[idx].score)
    selected = [seed]
    seen_ids = {candidates[seed].passage_id}
    remaining = [idx for idx in range(len(candidates)) if idx != seed]

    while len(selected) < k and remaining:
        best_idx = None
        best_value = float("-inf")
        for idx in remaining:
            if candidates[idx].passage_id in seen_ids:
                continue
            redundancy = max(jaccard(term_sets[idx], term_sets[chosen]) for chosen in selected)
            value = lambda_ * candidates[idx].score - (1 - lambda_) * redundancy
            if value > best_value:
                best_idx, best_value = idx, value
        if best_idx is None:
            break
        selected.append(best_idx)
        seen_ids.add(candidates[best_idx].passage_id)
        remaining.remove(best_idx)

    return [candidates[idx] for idx in selected]
