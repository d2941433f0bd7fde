"""
RAG Service - Decide when to retrieve and turn results into a grounded prompt.

Pipeline:
1. Trigger check (enabled, query length)
2. Retrieval (vector, BM25 or hybrid)
3. Relevance filter
4. Optional reranking
5. Citations, evidence block and prompt template
6. Quality score and statistics
"""

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from ..config import get_section, pick_fields
from ..exceptions import InvalidConfigError
from ..processing.tokens import estimate_tokens
from ..retrieval.retriever import Retriever
from ..retrieval.search_result import RetrievalMethod, SearchResult
from .prompt_builder import (
    DEFAULT_NO_CONTEXT_TEMPLATE,
    DEFAULT_PROMPT_TEMPLATE,
    Citation,
    build_citations,
    build_context,
    render_prompt,
)

logger = logging.getLogger(__name__)

QUALITY_WINDOW = 1000


@dataclass
class RAGConfig:
    """Configuration for the RAG service."""
    enabled: bool = True
    retrieval_method: RetrievalMethod = RetrievalMethod.HYBRID
    top_k: int = 5
    vector_weight: float = 0.7  # BM25 weight is 1 - vector_weight
    min_relevance: float = 0.3
    auto_trigger: bool = True  # Only retrieve for queries of min_query_length or more
    min_query_length: int = 10
    enable_reranking: bool = True
    max_context_length: int = 4000  # Characters of evidence in the prompt
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE
    no_context_template: str = DEFAULT_NO_CONTEXT_TEMPLATE
    excerpt_length: int = 100  # Citation excerpt characters
    timeout: Optional[float] = None  # Seconds per enhance_prompt call

    def __post_init__(self):
        self.retrieval_method = RetrievalMethod.parse(self.retrieval_method)

        if self.top_k <= 0:
            raise InvalidConfigError(f"top_k must be positive, got {self.top_k}")
        if not 0.0 <= self.vector_weight <= 1.0:
            raise InvalidConfigError(f"vector_weight must be in [0, 1], got {self.vector_weight}")
        if not 0.0 <= self.min_relevance <= 1.0:
            raise InvalidConfigError(f"min_relevance must be in [0, 1], got {self.min_relevance}")
        if self.min_query_length < 0:
            raise InvalidConfigError(f"min_query_length must be >= 0, got {self.min_query_length}")
        if self.max_context_length <= 0:
            raise InvalidConfigError(
                f"max_context_length must be positive, got {self.max_context_length}"
            )
        if self.excerpt_length <= 0:
            raise InvalidConfigError(f"excerpt_length must be positive, got {self.excerpt_length}")
        if self.timeout is not None and self.timeout <= 0:
            raise InvalidConfigError(f"timeout must be positive, got {self.timeout}")

        for name in ("prompt_template", "no_context_template"):
            try:
                render_prompt(getattr(self, name), question="", context="")
            except (KeyError, IndexError, ValueError) as e:
                raise InvalidConfigError(
                    f"{name} may only use {{context}} and {{question}} placeholders: {e}"
                ) from e

    @classmethod
    def from_dict(cls, data: dict) -> "RAGConfig":
        return cls(**pick_fields(cls, data))

    @classmethod
    def from_config(cls, path: Optional[Path] = None) -> "RAGConfig":
        """Build from the `rag` section of config.yaml."""
        return cls.from_dict(get_section("rag", path))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["retrieval_method"] = self.retrieval_method.value
        return data


@dataclass
class EnhancedPrompt:
    """Prompt ready for the completion call, with its evidence."""
    original_query: str
    enhanced_prompt: str
    search_results: list[SearchResult] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    quality_score: float = 0.0
    retrieval_method: Optional[RetrievalMethod] = None
    tokens_used: int = 0
    used_rag: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "original_query": self.original_query,
            "enhanced_prompt": self.enhanced_prompt,
            "search_results": [r.to_dict() for r in self.search_results],
            "citations": [c.to_dict() for c in self.citations],
            "quality_score": self.quality_score,
            "retrieval_method": self.retrieval_method.value if self.retrieval_method else None,
            "tokens_used": self.tokens_used,
            "used_rag": self.used_rag,
            "created_at": self.created_at.isoformat(),
        }


class RAGService:
    """
    Orchestrates retrieval for a query and builds the augmented prompt.

    Usage:
        service = RAGService(retriever, RAGConfig(top_k=5))
        enhanced = await service.enhance_prompt("How do I reset my password?")
        if enhanced.used_rag:
            send_to_llm(enhanced.enhanced_prompt)
    """

    def __init__(
        self,
        retriever: Retriever,
        config: Optional[RAGConfig] = None,
        token_counter: Callable[[str], int] = estimate_tokens,
    ):
        self.retriever = retriever
        self.config = config or RAGConfig()
        self.count_tokens = token_counter

        self._stats_lock = threading.Lock()
        self._total_rags = 0
        self._total_retrievals = 0
        self._passthrough_count = 0
        self._quality_scores: deque[float] = deque(maxlen=QUALITY_WINDOW)

        logger.info(
            f"RAGService initialized: method={self.config.retrieval_method.value}, "
            f"top_k={self.config.top_k}"
        )

    def should_use_rag(self, query: str, config: Optional[RAGConfig] = None) -> bool:
        """Retrieve only when enabled and (auto-trigger off or query long enough)."""
        config = config or self.config
        if not config.enabled:
            return False
        if not config.auto_trigger:
            return True
        return len(query) >= config.min_query_length

    async def enhance_prompt(
        self,
        query: str,
        config: Optional[RAGConfig] = None,
        timeout: Optional[float] = None,
    ) -> EnhancedPrompt:
        """
        Build an evidence-grounded prompt for query.

        Args:
            query: User query
            config: Per-call override of the service config
            timeout: Seconds before asyncio.TimeoutError (default: config.timeout)

        Returns:
            EnhancedPrompt; used_rag is False when retrieval was skipped

        Raises:
            ProviderError: Query embedding failed (never degraded to a partial prompt)
        """
        config = config or self.config
        if not self.should_use_rag(query, config):
            with self._stats_lock:
                self._passthrough_count += 1
            logger.debug("RAG not triggered: disabled or query too short")
            return EnhancedPrompt(
                original_query=query,
                enhanced_prompt=query,
                tokens_used=self.count_tokens(query),
            )

        timeout = timeout if timeout is not None else config.timeout
        return await asyncio.wait_for(self._enhance(query, config), timeout)

    async def _enhance(self, query: str, config: RAGConfig) -> EnhancedPrompt:
        start_time = time.perf_counter()

        results = await self.retriever.search(
            query,
            method=config.retrieval_method,
            top_k=config.top_k,
            vector_weight=config.vector_weight,
        )

        results = self.filter_results(results, config.min_relevance)
        # Only reorders when retrieval hands back more than top_k results
        # (e.g. a retriever that over-fetches); the built-in searches cap at top_k.
        if config.enable_reranking and results:
            results = self.retriever.rerank(query, results, config.top_k)

        citations = self.build_citations(results, config)
        if results:
            context = build_context(results, config.max_context_length)
            prompt = render_prompt(config.prompt_template, question=query, context=context)
        else:
            prompt = render_prompt(config.no_context_template, question=query)

        quality = self.calculate_quality_score(results)
        with self._stats_lock:
            self._total_rags += 1
            self._total_retrievals += len(results)
            self._quality_scores.append(quality)

        enhanced = EnhancedPrompt(
            original_query=query,
            enhanced_prompt=prompt,
            search_results=results,
            citations=citations,
            quality_score=quality,
            retrieval_method=config.retrieval_method,
            tokens_used=self.count_tokens(prompt),
            used_rag=True,
        )

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            f"Enhanced prompt in {elapsed_ms:.1f}ms with {len(results)} results "
            f"(quality={quality:.2f})"
        )
        return enhanced

    def filter_results(
        self, results: list[SearchResult], min_relevance: Optional[float] = None
    ) -> list[SearchResult]:
        """Keep results scoring at least min_relevance (default: config value)."""
        threshold = self.config.min_relevance if min_relevance is None else min_relevance
        return [r for r in results if r.score >= threshold]

    def build_citations(
        self, results: list[SearchResult], config: Optional[RAGConfig] = None
    ) -> list[Citation]:
        config = config or self.config
        return build_citations(results, config.excerpt_length)

    @staticmethod
    def calculate_quality_score(results: list[SearchResult]) -> float:
        """Mean result score clamped to [0, 1]; 0 for no results."""
        if not results:
            return 0.0
        mean = sum(r.score for r in results) / len(results)
        return min(max(mean, 0.0), 1.0)

    def set_config(self, config: RAGConfig):
        self.config = config
        logger.info(
            f"RAG config updated: method={config.retrieval_method.value}, top_k={config.top_k}, "
            f"enabled={config.enabled}"
        )

    def get_config(self) -> RAGConfig:
        return self.config

    def get_statistics(self) -> dict:
        with self._stats_lock:
            scores = list(self._quality_scores)
            total_rags = self._total_rags
            total_retrievals = self._total_retrievals
            passthrough = self._passthrough_count

        return {
            "total_rags": total_rags,
            "total_retrievals": total_retrievals,
            "passthrough_count": passthrough,
            "avg_quality_score": sum(scores) / len(scores) if scores else 0.0,
            "avg_results_per_rag": total_retrievals / total_rags if total_rags else 0.0,
            "enabled": self.config.enabled,
            "retrieval_method": self.config.retrieval_method.value,
        }
