"""
ragcore - retrieval core for retrieval-augmented generation.

Chunk documents, embed and index them, search by keyword, vector or both,
and turn the results into a prompt with citations.
"""

from .exceptions import (
    InvalidConfigError,
    NotFoundError,
    ProviderError,
    RAGError,
    UnsupportedStrategyError,
)

__version__ = "0.1.0"

__all__ = [
    "InvalidConfigError",
    "NotFoundError",
    "ProviderError",
    "RAGError",
    "UnsupportedStrategyError",
]
