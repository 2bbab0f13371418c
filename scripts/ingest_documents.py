"""Ingest a directory of financial documents into the Chroma collection.

Examples:
    python scripts/ingest_documents.py data/documents
    python scripts/ingest_documents.py --write-samples data/documents --embedder hashing
"""
from __future__ import annotations

import argparse
import sys

from wealth_rag.embeddings import HashingEmbeddingClient, OpenAIEmbeddingClient, SentenceTransformerEmbeddingClient
from wealth_rag.ingestion import DocumentIngestor, ingestion_stats
from wealth_rag.pipeline import HybridRetriever
from wealth_rag.sample_corpus import save_sample_corpus
from wealth_rag.settings import configure_logging, load_settings
from wealth_rag.vector_store import build_vector_store


def build_embedder(name: str, model: str, dimensions: int):
    if name == "openai":
        return OpenAIEmbeddingClient(model=model, dimensions=dimensions)
    if name == "sentence-transformers":
        return SentenceTransformerEmbeddingClient()
    return HashingEmbeddingClient(dimensions=dimensions)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("directory", help="Directory of .pdf, .txt and .md files")
    parser.add_argument(
        "--embedder",
        choices=["openai", "sentence-transformers", "hashing"],
        default="openai",
        help="Embedding provider (default: openai)",
    )
    parser.add_argument("--write-samples", action="store_true", help="Write the sample corpus into the directory first")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    configure_logging(args.log_level)
    openai_settings, chroma_settings, retrieval_config = load_settings()

    if args.write_samples:
        save_sample_corpus(args.directory)

    store = build_vector_store(
        "chroma",
        collection_name=chroma_settings.collection_name,
        persist_dir=chroma_settings.persist_dir,
        host=chroma_settings.host,
        port=chroma_settings.port,
    )
    embedder = build_embedder(args.embedder, openai_settings.embedding_model, openai_settings.embedding_dimensions)
    retriever = HybridRetriever(store=store, embedder=embedder, config=retrieval_config)

    report = DocumentIngestor(retriever).ingest_directory(args.directory)
    print(f"Succeeded: {len(report.succeeded)}  Skipped: {len(report.skipped)}  Failed: {len(report.failed)}")
    print(f"Passages written: {report.passages}")
    for name, error in report.failed.items():
        print(f"  {name}: {error}")
    print(ingestion_stats(store))
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
