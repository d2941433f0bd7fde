"""
RAG (Retrieval-Augmented Generation) module.

Components:
- RAGService: Decide when to retrieve and build the grounded prompt
- RAGQualityVerifier: Gate prompts on their quality score
- RAGEnabledChat: Prepare chat queries with optional retrieval
"""

from .prompt_builder import Citation
from .rag_service import EnhancedPrompt, RAGConfig, RAGService
from .quality import RAGQualityVerifier
from .chat import QueryResult, RAGEnabledChat

__all__ = [
    "Citation",
    "EnhancedPrompt",
    "RAGConfig",
    "RAGService",
    "RAGQualityVerifier",
    "QueryResult",
    "RAGEnabledChat",
]
