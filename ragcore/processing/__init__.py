"""Text processing: token estimation and chunking."""

from .tokens import TokenCounter, estimate_tokens
from .chunker import Chunk, ChunkConfig, Chunker, ChunkingStrategy, StructureAwareChunker

__all__ = [
    "TokenCounter",
    "estimate_tokens",
    "Chunk",
    "ChunkConfig",
    "Chunker",
    "ChunkingStrategy",
    "StructureAwareChunker",
]
