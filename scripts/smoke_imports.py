from wealth_rag.embeddings import HashingEmbeddingClient
from wealth_rag.pipeline import HybridRetriever
from wealth_rag.sample_corpus import load_sample_corpus
from wealth_rag.schema import UserProfile
from wealth_rag.tokenization import WhitespaceTokenizer
from wealth_rag.vector_store import InMemoryVectorStore


if __name__ == "__main__":
    retriever = HybridRetriever(
        store=InMemoryVectorStore(),
        embedder=HashingEmbeddingClient(),
        tokenizer_factory=WhitespaceTokenizer,
    )
    passages = load_sample_corpus(retriever)
    response = retriever.retrieve("What's my IRA limit?", profile=UserProfile(age=55), k=3)
    print(
        {
            "passages": passages,
            "expanded": response.expanded_query.expanded,
            "results": [candidate.passage_id for candidate in response.candidates],
            "scanned": response.keyword_scan.scanned,
        }
    )
