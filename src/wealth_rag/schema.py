from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Channel = Literal["vector", "keyword", "fused"]

# Metadata keys owned by the chunker; caller metadata never overrides them.
PASSAGE_KEYS = (
    "passage_id",
    "document_id",
    "sequence",
    "token_count",
    "section",
    "subsection",
    "has_table",
    "has_formula",
    "has_numeric_content",
)


@dataclass(frozen=True, slots=True)
class Passage:
    """Smallest retrievable unit of a knowledge-base document."""

    passage_id: str
    document_id: str
    text: str
    sequence: int
    token_count: int
    section: str | None = None
    subsection: str | None = None
    has_table: bool = False
    has_formula: bool = False
    has_numeric_content: bool = False
    source_metadata: dict[str, Any] = field(default_factory=dict)

    def to_metadata(self) -> dict[str, str | int | float | bool]:
        """Flatten the passage into a vector-store-safe metadata map.

        Caller metadata is written first so the passage-level fields win on
        any key collision. ``None`` values are dropped and lists are joined,
        since vector stores only accept scalar metadata.
        """
        metadata: dict[str, str | int | float | bool] = {}
        for key, value in self.source_metadata.items():
            scalar = _to_scalar(value)
            if scalar is not None:
                metadata[key] = scalar

        metadata.update(
            {
                "passage_id": self.passage_id,
                "document_id": self.document_id,
                "sequence": self.sequence,
                "token_count": self.token_count,
                "has_table": self.has_table,
                "has_formula": self.has_formula,
                "has_numeric_content": self.has_numeric_content,
            }
        )
        for key in ("section", "subsection"):
            value = getattr(self, key)
            if value:
                metadata[key] = value
            else:
                metadata.pop(key, None)
        return metadata

    @classmethod
    def from_record(cls, text: str, metadata: dict[str, Any] | None, fallback_id: str = "") -> Passage:
        """Rebuild a passage from a stored text/metadata pair."""
        metadata = dict(metadata or {})
        document_id = str(metadata.get("document_id", ""))
        sequence = int(metadata.get("sequence", 0))
        passage_id = str(metadata.get("passage_id") or fallback_id or f"{document_id}_{sequence}")
        return cls(
            passage_id=passage_id,
            document_id=document_id,
            text=text,
            sequence=sequence,
            token_count=max(1, int(metadata.get("token_count", 1))),
            section=metadata.get("section") or None,
            subsection=metadata.get("subsection") or None,
            has_table=bool(metadata.get("has_table", False)),
            has_formula=bool(metadata.get("has_formula", False)),
            has_numeric_content=bool(metadata.get("has_numeric_content", False)),
            source_metadata={k: v for k, v in metadata.items() if k not in PASSAGE_KEYS},
        )


@dataclass(slots=True)
class ScoredCandidate:
    """A passage scored by one retrieval channel, or by fusion."""

    passage: Passage
    score: float
    channel: Channel

    @property
    def passage_id(self) -> str:
        return self.passage.passage_id


@dataclass(slots=True)
class ExpandedQuery:
    """Query rewritten for retrieval, with the terms and sections that shaped it."""

    original: str
    expanded: str
    expansion_terms: list[str] = field(default_factory=list)
    profile_terms: list[str] = field(default_factory=list)
    priority_sections: list[str] = field(default_factory=list)
    strategy: Literal["provider", "dictionary"] = "dictionary"


@dataclass(slots=True)
class UserProfile:
    """Read-only view of the user fields that personalise retrieval."""

    age: int | None = None
    filing_status: str | None = None
    residency_state: str | None = None
    residency_city: str | None = None
    goals: list[str] = field(default_factory=list)
    risk_tolerance: str | None = None
    dependents: int | None = None
    annual_income: float | None = None
    full_name: str | None = None


@dataclass(slots=True)
class Account:
    name: str
    type: str
    balance: float


@dataclass(slots=True)
class Position:
    ticker: str
    asset_type: str
    value: float


@dataclass(slots=True)
class RetrievalFilters:
    """Metadata constraints for both retrieval channels; all conditions AND together."""

    sources: list[str] | None = None
    categories: list[str] | None = None
    sections: list[str] | None = None
    has_table: bool | None = None
    has_formula: bool | None = None
    year_from: int | None = None
    year_to: int | None = None

    def is_empty(self) -> bool:
        return not any(
            [
                self.sources,
                self.categories,
                self.sections,
                self.has_table is not None,
                self.has_formula is not None,
                self.year_from is not None,
                self.year_to is not None,
            ]
        )


def _to_scalar(value: Any) -> str | int | float | bool | None:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(item) for item in value)
    return str(value)
