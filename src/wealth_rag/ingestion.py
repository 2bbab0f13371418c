"""Loading financial documents from disk into the retriever.

PDFs are read with ``pypdf``; ``.txt`` and ``.md`` files are read as UTF-8.
Document ids, categories, sources and years are derived from file names.
"""
from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from pypdf import PdfReader

from .schema import Passage
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

MIN_RAW_CHARS = 50
MIN_CLEAN_CHARS = 100
TEXT_SUFFIXES = (".txt", ".md")
SUPPORTED_SUFFIXES = (".pdf", *TEXT_SUFFIXES)

_YEAR = re.compile(r"20\d{2}")
_PAGE_LINE = re.compile(r"^Page \d+.*$", re.MULTILINE)
_NUMBER_LINE = re.compile(r"^\d+\s*$", re.MULTILINE)
_FORM_LINE = re.compile(r"^Form \d+.*$", re.MULTILINE)


class DocumentSink(Protocol):
    def add_document(self, text: str, metadata: dict[str, Any] | None = None, replace: bool = False) -> list[Passage]: ...


@dataclass(slots=True)
class DocumentCategory:
    category: str
    source: str
    year: int | None = None


@dataclass(slots=True)
class IngestionReport:
    """Per-directory outcome; ``failed`` maps file names to error messages."""

    succeeded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    passages: int = 0


def generate_document_id(filename: str) -> str:
    """Slug of the file name without its extension, e.g. ``irs-pub-590a-2024``."""
    base = Path(filename).stem.lower()
    slug = re.sub(r"[^a-z0-9-]", "-", base)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def categorize_document(filename: str) -> DocumentCategory:
    """Classify a document from its file name."""
    lowered = filename.lower()
    match = _YEAR.search(filename)
    year = int(match.group(0)) if match else None

    if "irs" in lowered or "publication" in lowered:
        return DocumentCategory("tax_regulation", "IRS", year)
    if "nys" in lowered or "nyc" in lowered or "ny-" in lowered:
        return DocumentCategory("state_tax", "New York State", year)
    if "tax" in lowered and ("planning" in lowered or "cheatsheet" in lowered):
        return DocumentCategory("tax_planning", "Financial Institution", year)
    if "planning" in lowered or "playbook" in lowered:
        return DocumentCategory("financial_planning", "Financial Institution", year)
    if "wealth" in lowered or "merrill" in lowered:
        return DocumentCategory("wealth_management", "Financial Institution", year)
    return DocumentCategory("general_financial", "Unknown", year)


def clean_pdf_text(text: str) -> str:
    """Strip page numbers and form headers, normalise spacing, keep paragraph breaks."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _PAGE_LINE.sub("", text)
    text = _NUMBER_LINE.sub("", text)
    text = _FORM_LINE.sub("", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def read_pdf(path: Path) -> tuple[str, int]:
    """Return the extracted text and page count of a PDF."""
    reader = PdfReader(str(path))
    pages = []
    for page_number, page in enumerate(reader.pages, start=1):
        try:
            pages.append(page.extract_text() or "")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to extract text from page %d of %s: %s", page_number, path.name, exc)
    return "\n".join(pages), len(reader.pages)


class DocumentIngestor:
    """Feeds files to a retriever's ``add_document``.

    Args:
        sink: Usually a :class:`~wealth_rag.pipeline.HybridRetriever`.
        replace: Re-ingesting a file replaces its stored passages.
    """

    def __init__(self, sink: DocumentSink, replace: bool = True):
        self.sink = sink
        self.replace = replace

    def ingest_file(self, path: str | Path, metadata: dict[str, Any] | None = None) -> list[Passage] | None:
        """Ingest one file.

        Returns:
            The stored passages, or ``None`` when the file had too little text.

        Raises:
            ValueError: Unsupported file type.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix not in SUPPORTED_SUFFIXES:
            raise ValueError(f"Unsupported document type: {path.name}")

        if suffix == ".pdf":
            raw, pages = read_pdf(path)
        else:
            raw, pages = path.read_text(encoding="utf-8"), None

        if len(raw.strip()) < MIN_RAW_CHARS:
            logger.warning("%s has very little text content, skipping", path.name)
            return None
        text = clean_pdf_text(raw) if suffix == ".pdf" else raw
        if len(text) < MIN_CLEAN_CHARS:
            logger.warning("%s has very little clean text (%d chars), skipping", path.name, len(text))
            return None

        category = categorize_document(path.name)
        document_metadata: dict[str, Any] = {
            "document_id": generate_document_id(path.name),
            "filename": path.name,
            "source": category.source,
            "category": category.category,
            "year": category.year,
            "file_size": path.stat().st_size,
        }
        if pages is not None:
            document_metadata["pages"] = pages
        document_metadata.update(metadata or {})

        passages = self.sink.add_document(text, document_metadata, replace=self.replace)
        logger.info(
            "Ingested %s as %s (%s/%s, %d passages)",
            path.name,
            document_metadata["document_id"],
            category.category,
            category.source,
            len(passages),
        )
        return passages

    def ingest_directory(self, directory: str | Path) -> IngestionReport:
        """Ingest every supported file in ``directory``; one failure does not stop the rest.

        Raises:
            FileNotFoundError: If ``directory`` does not exist.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Directory not found: {directory}")

        report = IngestionReport()
        files = sorted(p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES)
        logger.info("Found %d documents in %s", len(files), directory)
        for path in files:
            try:
                passages = self.ingest_file(path)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to ingest %s: %s", path.name, exc)
                report.failed[path.name] = str(exc)
                continue
            if passages is None:
                report.skipped.append(path.name)
            else:
                report.succeeded.append(path.name)
                report.passages += len(passages)

        logger.info(
            "Directory ingestion finished: %d succeeded, %d skipped, %d failed",
            len(report.succeeded),
            len(report.skipped),
            len(report.failed),
        )
        return report


def ingestion_stats(store: VectorStore, page_size: int = 500) -> dict[str, Any]:
    """Count stored documents by category and source."""
    documents: dict[str, dict[str, Any]] = {}
    offset = 0
    while True:
        records = store.get(limit=page_size, offset=offset)
        for record in records:
            document_id = record.metadata.get("document_id")
            if document_id and document_id not in documents:
                documents[document_id] = record.metadata
        if len(records) < page_size:
            break
        offset += len(records)

    return {
        "total_documents": len(documents),
        "categories": dict(Counter(meta.get("category", "unknown") for meta in documents.values())),
        "sources": dict(Counter(meta.get("source", "unknown") for meta in documents.values())),
    }
