"""
Retrieval module.

Components:
- EmbeddingService: Cache-first embeddings (OpenAI, Nebius or local hashing)
- VectorStore: Store and search embeddings (in-memory or ChromaDB)
- BM25Index: Sparse keyword search over chunks
- Retriever: Vector, BM25 and weighted hybrid search
- Reranker: Keyword-overlap or cross-encoder reranking
"""

from .embedding_cache import EmbeddingCache
from .embedding_service import (
    EMBEDDING_MODELS,
    Embedding,
    EmbeddingClient,
    EmbeddingConfig,
    EmbeddingModel,
    EmbeddingService,
    HashingEmbeddingClient,
    OpenAIEmbeddingClient,
)
from .vector_store import (
    ChromaVectorStore,
    InMemoryVectorStore,
    VectorStore,
    VectorStoreConfig,
    cosine_similarity,
    create_vector_store,
)
from .bm25_index import BM25Config, BM25Index
from .search_result import RetrievalMethod, SearchResult
from .reranker import CrossEncoderConfig, CrossEncoderReranker, KeywordReranker, Reranker
from .retriever import IndexResult, Retriever

__all__ = [
    "EmbeddingCache",
    "EMBEDDING_MODELS",
    "Embedding",
    "EmbeddingClient",
    "EmbeddingConfig",
    "EmbeddingModel",
    "EmbeddingService",
    "HashingEmbeddingClient",
    "OpenAIEmbeddingClient",
    "ChromaVectorStore",
    "InMemoryVectorStore",
    "VectorStore",
    "VectorStoreConfig",
    "cosine_similarity",
    "create_vector_store",
    "BM25Config",
    "BM25Index",
    "RetrievalMethod",
    "SearchResult",
    "CrossEncoderConfig",
    "CrossEncoderReranker",
    "KeywordReranker",
    "Reranker",
    "IndexResult",
    "Retriever",
]
