"""Hybrid retrieval and ranking for personal-finance question answering."""

from .errors import ProviderUnavailable, RetrievalError, StoreUnavailable
from .pipeline import HybridRetriever, RetrievalResponse
from .schema import ExpandedQuery, Passage, RetrievalFilters, ScoredCandidate, UserProfile
from .settings import RetrievalConfig

__all__ = [
    "ExpandedQuery",
    "HybridRetriever",
    "Passage",
    "ProviderUnavailable",
    "RetrievalConfig",
    "RetrievalError",
    "RetrievalFilters",
    "RetrievalResponse",
    "ScoredCandidate",
    "StoreUnavailable",
    "UserProfile",
]
