"""Structure-aware chunking of financial documents into passages.

Lines are accumulated against a token budget, and a fixed token overlap is
carried from the tail of one chunk into the head of the next. Tables, lists,
formula blocks and headers (with their first line of body text) are extended
to their natural end and never split, unless the unit alone exceeds the
budget, in which case it becomes its own oversized chunk.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Any

from .boundaries import DIGIT, content_flags, extract_unit
from .errors import ChunkingFailure
from .schema import PASSAGE_KEYS, Passage
from .settings import ChunkingConfig
from .tokenization import Tokenizer, TokenizerFactory, acquire_tokenizer

logger = logging.getLogger(__name__)

_INLINE_SPACE = re.compile(r"[ \t\f\v\xa0]+")
_BLANK_RUNS = re.compile(r"\n{3,}")


def normalize_text(text: str) -> str:
    """Normalise line endings and whitespace while keeping paragraph breaks."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _INLINE_SPACE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    return _BLANK_RUNS.sub("\n\n", text).strip()


@dataclass(frozen=True, slots=True)
class Segment:
    """Raw line layout of one chunk: carried-over ``overlap`` then its own ``lines``."""

    overlap: tuple[str, ...]
    lines: tuple[str, ...]
    section: str | None = None
    subsection: str | None = None
    oversized: bool = False

    @property
    def text(self) -> str:
        return "\n".join(self.overlap + self.lines).strip()


class StructuralChunker:
    """Split documents into overlapping, metadata-tagged passages."""

    def __init__(self, tokenizer_factory: TokenizerFactory, config: ChunkingConfig | None = None):
        self.tokenizer_factory = tokenizer_factory
        self.config = config or ChunkingConfig()
        if self.config.chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.config.chunk_overlap < self.config.chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")

    def chunk(self, text: str, document_id: str, metadata: dict[str, Any] | None = None) -> list[Passage]:
        """Split ``text`` into passages tagged with ``document_id`` and ``metadata``.

        Args:
            text: Raw document text.
            document_id: Stable identifier of the source document.
            metadata: Caller metadata copied onto every passage.

        Returns:
            Passages in document order; empty for blank input.
        """
        metadata = dict(metadata or {})
        normalized = normalize_text(text)
        if not normalized:
            return []

        try:
            passages = self._structural_passages(normalized, document_id, metadata)
        except ChunkingFailure:
            logger.warning("Structural chunking failed for %s, using fixed-size fallback", document_id, exc_info=True)
            return fallback_chunks(normalized, document_id, metadata, self.config.chunk_size)

        logger.info("Chunked %s into %d passages", document_id, len(passages))
        return passages

    def segment(self, text: str) -> list[Segment]:
        """Return the line segmentation ``chunk`` would use for ``text``."""
        normalized = normalize_text(text)
        if not normalized:
            return []
        with acquire_tokenizer(self.tokenizer_factory) as tokenizer:
            return self._walk(normalized.split("\n"), tokenizer)

    def _structural_passages(self, normalized: str, document_id: str, metadata: dict[str, Any]) -> list[Passage]:
        try:
            with acquire_tokenizer(self.tokenizer_factory) as tokenizer:
                segments = self._walk(normalized.split("\n"), tokenizer)
                return [
                    _make_passage(
                        segment.text,
                        document_id,
                        sequence,
                        max(1, tokenizer.count(segment.text)),
                        segment.section,
                        segment.subsection,
                        metadata,
                    )
                    for sequence, segment in enumerate(segments)
                ]
        except Exception as exc:
            raise ChunkingFailure(f"structural traversal failed for {document_id}") from exc

    def _walk(self, lines: list[str], tokenizer: Tokenizer) -> list[Segment]:
        budget = self.config.chunk_size
        segments: list[Segment] = []
        overlap: list[str] = []
        current: list[str] = []
        cost = 0
        section: str | None = None
        subsection: str | None = None
        chunk_section: str | None = None
        chunk_subsection: str | None = None

        i = 0
        while i < len(lines):
            if not lines[i]:
                # Blank lines never open or close a chunk.
                if current:
                    current.append("")
                    cost += 1
                elif segments:
                    segments[-1] = replace(segments[-1], lines=segments[-1].lines + ("",))
                i += 1
                continue

            unit = extract_unit(lines, i)
            if unit.header is not None:
                if unit.header.is_section:
                    section, subsection = unit.header.title, None
                else:
                    subsection = unit.header.title
            unit_cost = _measure(unit.lines, tokenizer)

            if current and cost + 1 + unit_cost > budget:
                segments.append(Segment(tuple(overlap), tuple(current), chunk_section, chunk_subsection))
                overlap = _tail(overlap + current, self.config.chunk_overlap, tokenizer)
                current = []

            if not current:
                overlap = _tail(overlap, min(self.config.chunk_overlap, budget - unit_cost - 1), tokenizer)
                cost = _measure(overlap, tokenizer) + (1 if overlap else 0)
                chunk_section, chunk_subsection = section, subsection
            else:
                cost += 1

            current.extend(unit.lines)
            cost += unit_cost
            i = unit.end

            if unit_cost > budget:
                segments.append(Segment((), tuple(current), chunk_section, chunk_subsection, oversized=True))
                overlap = _tail(current, self.config.chunk_overlap, tokenizer)
                current = []
                cost = 0

        if current:
            segments.append(Segment(tuple(overlap), tuple(current), chunk_section, chunk_subsection))
        return segments


def _measure(lines: list[str] | tuple[str, ...], tokenizer: Tokenizer) -> int:
    if not lines:
        return 0
    return sum(tokenizer.count(line) for line in lines) + len(lines) - 1


def _tail(lines: list[str], limit: int, tokenizer: Tokenizer) -> list[str]:
    """Return the trailing lines of ``lines`` whose joined cost fits ``limit``."""
    if limit <= 0:
        return []
    end = len(lines)
    while end and not lines[end - 1]:
        end -= 1

    start = end
    used = 0
    while start > 0:
        line_cost = tokenizer.count(lines[start - 1]) + (1 if start < end else 0)
        if used + line_cost > limit:
            break
        used += line_cost
        start -= 1

    while start < end and not lines[start]:
        start += 1
    return lines[start:end]


def _make_passage(
    text: str,
    document_id: str,
    sequence: int,
    token_count: int,
    section: str | None,
    subsection: str | None,
    metadata: dict[str, Any],
    structural: bool = True,
) -> Passage:
    if structural:
        has_table, has_formula, has_numeric = content_flags(text)
    else:
        has_table, has_formula, has_numeric = False, False, bool(DIGIT.search(text))
    return Passage(
        passage_id=f"{document_id}_{sequence}",
        document_id=document_id,
        text=text,
        sequence=sequence,
        token_count=token_count,
        section=section or _optional_str(metadata.get("section")),
        subsection=subsection or _optional_str(metadata.get("subsection")),
        has_table=has_table,
        has_formula=has_formula,
        has_numeric_content=has_numeric,
        source_metadata={key: value for key, value in metadata.items() if key not in PASSAGE_KEYS},
    )


def _optional_str(value: Any) -> str | None:
    return str(value) if value else None


def fallback_chunks(text: str, document_id: str, metadata: dict[str, Any], chunk_size: int) -> list[Passage]:
    """Fixed-size whitespace-word chunking with no overlap and no structure flags."""
    words = text.split()
    passages: list[Passage] = []
    for sequence, start in enumerate(range(0, len(words), chunk_size)):
        window = words[start : start + chunk_size]
        passages.append(
            _make_passage(
                " ".join(window),
                document_id,
                sequence,
                len(window),
                None,
                None,
                metadata,
                structural=False,
            )
        )
    return passages
