"""
Document Indexer - Chunk, embed and store parsed documents.

Pipeline:
1. Chunking -> bounded chunks with document metadata
2. Embedding + storage -> Retriever.index_chunks (vector store and BM25 index)
3. Cleanup -> chunks left over from a previous, longer version are removed

Parsers live outside this package; they hand over (title, content, metadata).
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from ..processing.chunker import Chunk, Chunker
from ..retrieval.retriever import Retriever

logger = logging.getLogger(__name__)


@dataclass
class IndexingResult:
    """Result of indexing a document."""
    document_id: str
    title: str
    success: bool
    chunks: list[Chunk] = field(default_factory=list)
    chunk_count: int = 0
    total_chars: int = 0
    tokens_used: int = 0
    removed_chunks: int = 0
    error: Optional[str] = None
    processing_time_ms: float = 0

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "title": self.title,
            "success": self.success,
            "chunk_ids": [c.id for c in self.chunks],
            "chunk_count": self.chunk_count,
            "total_chars": self.total_chars,
            "tokens_used": self.tokens_used,
            "removed_chunks": self.removed_chunks,
            "error": self.error,
            "processing_time_ms": self.processing_time_ms,
        }


class DocumentIndexer:
    """
    Index documents into a Retriever.

    Usage:
        indexer = DocumentIndexer(Chunker(), retriever)
        result = await indexer.index_document("doc-1", "Handbook", text)
        task = indexer.submit("doc-2", "FAQ", faq_text)
        result = await task
    """

    def __init__(self, chunker: Chunker, retriever: Retriever):
        self.chunker = chunker
        self.retriever = retriever
        self._tasks: set[asyncio.Task] = set()

    async def index_document(
        self,
        document_id: str,
        title: str,
        content: str,
        metadata: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> IndexingResult:
        """
        Index a single document.

        Re-indexing the same document_id replaces its chunks.

        Args:
            document_id: Identifier owned by the caller's metadata store
            title: Document title (cited as the source name)
            content: Plain text from a parser
            metadata: Extra metadata copied onto every chunk
            timeout: Seconds before asyncio.TimeoutError (None = no limit)

        Returns:
            IndexingResult with the chunks written

        Raises:
            ProviderError: Embedding failed; nothing from this call is searchable
        """
        start_time = time.perf_counter()

        previous_ids = set(self.retriever.bm25_index.chunk_ids_for_document(document_id))
        chunks = self.chunker.chunk_document(document_id, title, content, metadata)

        indexed = await self.retriever.index_chunks(chunks, timeout=timeout)

        removed = 0
        for chunk_id in sorted(previous_ids - set(indexed.chunk_ids)):
            if await self.retriever.delete_chunk(chunk_id):
                removed += 1

        processing_time = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Indexed {document_id} ({title}): {len(chunks)} chunks, "
            f"{len(content)} chars, {processing_time:.0f}ms"
        )

        return IndexingResult(
            document_id=document_id,
            title=title,
            success=True,
            chunks=chunks,
            chunk_count=len(chunks),
            total_chars=len(content),
            tokens_used=indexed.tokens_used,
            removed_chunks=removed,
            processing_time_ms=processing_time,
        )

    async def index_documents(self, documents: list[tuple]) -> list[IndexingResult]:
        """
        Index several (document_id, title, content[, metadata]) tuples in order.

        A failing document is reported in its IndexingResult and does not
        stop the others.
        """
        results = []
        for i, document in enumerate(documents):
            document_id, title = document[0], document[1]
            logger.info(f"[{i + 1}/{len(documents)}] Indexing {document_id}")
            try:
                results.append(await self.index_document(*document))
            except Exception as e:
                logger.error(f"Failed to index {document_id}: {e}")
                results.append(IndexingResult(
                    document_id=document_id,
                    title=title,
                    success=False,
                    error=str(e),
                ))

        successful = sum(1 for r in results if r.success)
        total_chunks = sum(r.chunk_count for r in results)
        logger.info(f"Indexing complete: {successful}/{len(results)} documents, {total_chunks} chunks")
        return results

    def submit(
        self,
        document_id: str,
        title: str,
        content: str,
        metadata: Optional[dict] = None,
    ) -> "asyncio.Task[IndexingResult]":
        """
        Index in the background on the running event loop.

        The returned task carries the IndexingResult or the exception;
        awaiting or cancelling it is up to the caller.
        """
        task = asyncio.create_task(
            self.index_document(document_id, title, content, metadata),
            name=f"index-{document_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        """Background indexing tasks not yet finished."""
        return len(self._tasks)

    async def delete_document(self, document_id: str) -> int:
        """Remove a document's chunks from every index. Returns chunks removed."""
        return await self.retriever.delete_document(document_id)
