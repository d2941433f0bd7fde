"""Document ingestion: chunk, embed and store parsed documents."""

from .document_indexer import DocumentIndexer, IndexingResult

__all__ = ["DocumentIndexer", "IndexingResult"]
