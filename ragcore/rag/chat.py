"""Chat-facing wrapper that routes queries through the RAG service."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .rag_service import EnhancedPrompt, RAGService

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """A query prepared for the completion call."""
    query: str
    prompt: str  # What to send to the model
    enhanced_prompt: Optional[EnhancedPrompt] = None
    used_rag: bool = False
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "prompt": self.prompt,
            "enhanced_prompt": self.enhanced_prompt.to_dict() if self.enhanced_prompt else None,
            "used_rag": self.used_rag,
            "completed_at": self.completed_at.isoformat(),
        }


class RAGEnabledChat:
    """
    Usage:
        chat = RAGEnabledChat(rag_service)
        result = await chat.process_query("What does the warranty cover?")
        completion = llm(result.prompt)
    """

    def __init__(self, rag_service: RAGService):
        self.rag_service = rag_service

    async def process_query(
        self,
        query: str,
        use_rag: bool = True,
        timeout: Optional[float] = None,
    ) -> QueryResult:
        """
        Prepare a query, retrieving evidence when use_rag is set.

        Retrieval failures propagate; a skipped retrieval (disabled, query
        too short) returns the query unchanged with used_rag False.
        """
        if not use_rag:
            return QueryResult(query=query, prompt=query)

        enhanced = await self.rag_service.enhance_prompt(query, timeout=timeout)
        if enhanced.used_rag:
            logger.debug(f"Query enhanced with RAG: {len(enhanced.search_results)} results")

        return QueryResult(
            query=query,
            prompt=enhanced.enhanced_prompt,
            enhanced_prompt=enhanced,
            used_rag=enhanced.used_rag,
        )

    async def get_enhanced_prompt_for_ai(self, query: str, timeout: Optional[float] = None) -> str:
        enhanced = await self.rag_service.enhance_prompt(query, timeout=timeout)
        return enhanced.enhanced_prompt
