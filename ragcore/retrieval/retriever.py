"""
Retriever - Vector, BM25 and hybrid search over indexed chunks.

Hybrid search fuses the two signals with a weighted sum:
    final = vector_score * w + bm25_score * (1 - w)
summing both terms when a chunk appears in both candidate lists.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Optional

from ..exceptions import NotFoundError
from ..processing.chunker import Chunk
from .bm25_index import BM25Config, BM25Index
from .embedding_service import EmbeddingService
from .reranker import KeywordReranker, Reranker
from .search_result import RetrievalMethod, SearchResult, assign_ranks
from .vector_store import InMemoryVectorStore, VectorStore, cosine_similarity

logger = logging.getLogger(__name__)


def embedding_id_for(chunk_id: str) -> str:
    """Embedding id used for a chunk, stable across re-indexing."""
    return f"emb-{chunk_id}"


@dataclass
class IndexResult:
    """Outcome of an indexing call."""
    chunk_ids: list[str] = field(default_factory=list)
    embedding_ids: list[str] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def count(self) -> int:
        return len(self.chunk_ids)


def _sorted(results: list[SearchResult]) -> list[SearchResult]:
    return sorted(results, key=lambda r: (-r.score, r.chunk_id))


class Retriever:
    """
    Search over chunks kept in lock-step in a VectorStore and a BM25 index.

    Usage:
        retriever = Retriever(embedding_service, InMemoryVectorStore())
        await retriever.index_chunks(chunks)
        results = await retriever.hybrid_search("vehicle theft", top_k=5, vector_weight=0.7)
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: Optional[VectorStore] = None,
        bm25_config: Optional[BM25Config] = None,
        reranker: Optional[Reranker] = None,
    ):
        self.embedding_service = embedding_service
        self.vector_store = vector_store or InMemoryVectorStore()
        self.bm25_index = BM25Index(bm25_config)
        self.reranker = reranker or KeywordReranker()

        self._stats_lock = threading.Lock()
        self.total_searches = 0
        self.total_vector_ops = 0

    # Indexing

    async def index_chunk(self, chunk: Chunk, timeout: Optional[float] = None) -> IndexResult:
        return await self.index_chunks([chunk], timeout=timeout)

    async def index_chunks(self, chunks: list[Chunk], timeout: Optional[float] = None) -> IndexResult:
        """
        Embed chunks and store them in both indexes.

        Re-indexing a chunk id overwrites its previous embedding and content.

        Args:
            chunks: Chunks to index
            timeout: Seconds before asyncio.TimeoutError (None = no limit)

        Returns:
            IndexResult with the chunk and embedding ids written
        """
        return await asyncio.wait_for(self._index_chunks(chunks), timeout)

    async def _index_chunks(self, chunks: list[Chunk]) -> IndexResult:
        if not chunks:
            return IndexResult()

        embeddings = await self.embedding_service.embed_batch([c.content for c in chunks])
        # Cached embeddings are shared, so each chunk gets its own copy
        records = [
            replace(e, id=embedding_id_for(c.id), chunk_id=c.id)
            for c, e in zip(chunks, embeddings)
        ]

        await self.vector_store.save_embeddings(records)
        self.bm25_index.add_chunks(chunks)
        with self._stats_lock:
            self.total_vector_ops += len(records)

        result = IndexResult(
            chunk_ids=[c.id for c in chunks],
            embedding_ids=[r.id for r in records],
            tokens_used=sum(r.tokens_used for r in records),
        )
        logger.info(f"Indexed {result.count} chunks ({result.tokens_used} tokens)")
        return result

    async def delete_chunk(self, chunk_id: str) -> bool:
        """Remove a chunk from both indexes. Returns False if it was not indexed."""
        removed = self.bm25_index.remove_chunk(chunk_id)
        await self.vector_store.delete_by_chunk_id(chunk_id)
        if removed:
            logger.debug(f"Deleted chunk {chunk_id}")
        return removed

    async def delete_document(self, document_id: str) -> int:
        """Remove every chunk of a document. Returns the number removed."""
        removed = 0
        for chunk_id in self.bm25_index.chunk_ids_for_document(document_id):
            if await self.delete_chunk(chunk_id):
                removed += 1
        logger.info(f"Deleted document {document_id}: {removed} chunks")
        return removed

    def get_chunk(self, chunk_id: str) -> Chunk:
        chunk = self.bm25_index.get(chunk_id)
        if chunk is None:
            raise NotFoundError("chunk", chunk_id)
        return chunk

    # Search

    async def search(
        self,
        query: str,
        method: RetrievalMethod = RetrievalMethod.HYBRID,
        top_k: int = 5,
        vector_weight: float = 0.7,
        timeout: Optional[float] = None,
    ) -> list[SearchResult]:
        """Dispatch to the search named by method."""
        method = RetrievalMethod.parse(method)
        if method is RetrievalMethod.VECTOR:
            coro = self._vector_search(query, top_k)
        elif method is RetrievalMethod.BM25:
            coro = self._bm25_search(query, top_k)
        else:
            coro = self._hybrid_search(query, top_k, vector_weight)
        return await asyncio.wait_for(coro, timeout)

    async def vector_search(
        self, query: str, top_k: int = 5, timeout: Optional[float] = None
    ) -> list[SearchResult]:
        """
        Semantic search.

        Hits whose chunk is no longer indexed are skipped, so fewer than
        top_k results may come back.
        """
        return await asyncio.wait_for(self._vector_search(query, top_k), timeout)

    async def _vector_search(self, query: str, top_k: int) -> list[SearchResult]:
        if top_k <= 0:
            return []
        start = time.perf_counter()

        query_embedding = await self.embedding_service.embed(query)
        hits = await self.vector_store.search(query_embedding.vector, top_k)
        self._count_search()

        results = {}
        for embedding in hits:
            chunk = self.bm25_index.get(embedding.chunk_id) if embedding.chunk_id else None
            if chunk is None:
                logger.debug(f"Skipping stale embedding {embedding.id} (chunk {embedding.chunk_id})")
                continue
            if chunk.id in results:
                continue
            results[chunk.id] = SearchResult(
                chunk_id=chunk.id,
                content=chunk.content,
                score=cosine_similarity(query_embedding.vector, embedding.vector),
                method=RetrievalMethod.VECTOR,
                metadata=dict(chunk.metadata),
            )

        ranked = assign_ranks(_sorted(list(results.values())))
        logger.debug(f"Vector search: {len(ranked)} results in {(time.perf_counter() - start) * 1000:.1f}ms")
        return ranked

    async def bm25_search(
        self, query: str, top_k: int = 5, timeout: Optional[float] = None
    ) -> list[SearchResult]:
        """Keyword search; only chunks with a positive BM25 score are returned."""
        return await asyncio.wait_for(self._bm25_search(query, top_k), timeout)

    async def _bm25_search(self, query: str, top_k: int) -> list[SearchResult]:
        hits = self.bm25_index.search(query, top_k)
        self._count_search()
        results = [
            SearchResult(
                chunk_id=chunk.id,
                content=chunk.content,
                score=score,
                method=RetrievalMethod.BM25,
                metadata=dict(chunk.metadata),
            )
            for chunk, score in hits
        ]
        return assign_ranks(results)

    async def hybrid_search(
        self,
        query: str,
        top_k: int = 5,
        vector_weight: float = 0.7,
        timeout: Optional[float] = None,
    ) -> list[SearchResult]:
        """
        Weighted fusion of vector and BM25 search.

        Args:
            query: Search query
            top_k: Number of fused results
            vector_weight: Weight of the vector score, clamped to [0, 1]
            timeout: Seconds before asyncio.TimeoutError (None = no limit)

        Returns:
            Up to top_k results tagged hybrid, ties broken by chunk id
        """
        return await asyncio.wait_for(self._hybrid_search(query, top_k, vector_weight), timeout)

    async def _hybrid_search(self, query: str, top_k: int, vector_weight: float) -> list[SearchResult]:
        if top_k <= 0:
            return []
        weight = min(max(vector_weight, 0.0), 1.0)
        candidates = top_k * 2

        vector_results, bm25_results = await asyncio.gather(
            self._vector_search(query, candidates),
            self._bm25_search(query, candidates),
        )

        fused: dict[str, SearchResult] = {}
        for results, w in ((vector_results, weight), (bm25_results, 1.0 - weight)):
            for result in results:
                existing = fused.get(result.chunk_id)
                if existing is None:
                    fused[result.chunk_id] = SearchResult(
                        chunk_id=result.chunk_id,
                        content=result.content,
                        score=result.score * w,
                        method=RetrievalMethod.HYBRID,
                        metadata=result.metadata,
                    )
                else:
                    fused[result.chunk_id] = replace(existing, score=existing.score + result.score * w)

        return assign_ranks(_sorted(list(fused.values()))[:top_k])

    def rerank(self, query: str, results: list[SearchResult], top_k: int) -> list[SearchResult]:
        """Rerank with the configured reranker (no-op when len(results) <= top_k)."""
        return self.reranker.rerank(query, results, top_k)

    def _count_search(self):
        with self._stats_lock:
            self.total_searches += 1

    async def get_statistics(self) -> dict:
        """
        Index snapshot plus lifetime counters.

        total_searches counts each vector or BM25 pass (a hybrid search is two);
        total_vector_ops counts embeddings written. Neither drops on delete.
        """
        stats = self.bm25_index.get_stats()
        stats["embedding_count"] = await self.vector_store.count()
        with self._stats_lock:
            stats["total_searches"] = self.total_searches
            stats["total_vector_ops"] = self.total_vector_ops
        stats["reranker"] = type(self.reranker).__name__
        stats["embedding"] = self.embedding_service.get_statistics()
        return stats
