"""
Rerankers - Reorder retrieved chunks with a second relevance signal.

- KeywordReranker: blends the retrieval score with query/content word overlap
- CrossEncoderReranker: sentence-transformers CrossEncoder scoring

Both keep each result's retrieval `score` and record the new ordering
signal in `rerank_score`.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Optional

from .search_result import SearchResult, assign_ranks

logger = logging.getLogger(__name__)


class Reranker(ABC):
    """
    Usage:
        reranker = KeywordReranker()
        reranked = reranker.rerank(query, results, top_k=5)
    """

    def rerank(self, query: str, results: list[SearchResult], top_k: int) -> list[SearchResult]:
        """
        Rerank and truncate to top_k.

        Lists already within top_k are returned unchanged.
        """
        if len(results) <= top_k:
            return results

        scores = self.score(query, results)
        scored = [replace(r, rerank_score=float(s)) for r, s in zip(results, scores)]
        scored.sort(key=lambda r: (-r.rerank_score, r.chunk_id))

        reranked = assign_ranks(scored[:top_k])
        logger.debug(f"Reranked {len(results)} results -> {len(reranked)}")
        return reranked

    @abstractmethod
    def score(self, query: str, results: list[SearchResult]) -> list[float]:
        ...


class KeywordReranker(Reranker):
    """
    rerank_score = score * 0.7 + overlap * 0.3

    overlap counts the content's whitespace-separated words (lower-cased)
    that are also query words.
    """

    def __init__(self, score_weight: float = 0.7, overlap_weight: float = 0.3):
        self.score_weight = score_weight
        self.overlap_weight = overlap_weight

    def score(self, query: str, results: list[SearchResult]) -> list[float]:
        query_terms = set(query.lower().split())
        scores = []
        for result in results:
            overlap = sum(1 for term in result.content.lower().split() if term in query_terms)
            scores.append(result.score * self.score_weight + overlap * self.overlap_weight)
        return scores


@dataclass
class CrossEncoderConfig:
    """Configuration for cross-encoder reranker."""
    # Multilingual cross-encoder trained on MS MARCO
    model_name: str = "cross-encoder/mmarco-mMiniLMv2-L12-H384-v1"
    # Maximum sequence length (query + document)
    max_length: int = 512
    # Device for inference (None = auto-detect)
    device: Optional[str] = None
    batch_size: int = 32


class CrossEncoderReranker(Reranker):
    """
    Cross-encoder reranker.

    Cross-encoders jointly encode query and chunk, giving more accurate
    relevance than embedding similarity at a higher cost per pair.
    """

    def __init__(self, config: Optional[CrossEncoderConfig] = None, model=None):
        self.config = config or CrossEncoderConfig()
        self._model = model or self._load_model()

    def _load_model(self):
        try:
            from sentence_transformers import CrossEncoder
        except ImportError:
            logger.error("sentence-transformers not installed. Run: pip install 'ragcore[rerank]'")
            raise

        logger.info(f"Loading cross-encoder: {self.config.model_name}")
        model = CrossEncoder(
            self.config.model_name,
            max_length=self.config.max_length,
            device=self.config.device,
        )
        logger.info("Cross-encoder loaded successfully")
        return model

    def score(self, query: str, results: list[SearchResult]) -> list[float]:
        pairs = [(query, r.content) for r in results]
        scores = self._model.predict(
            pairs,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
        )
        return [float(s) for s in scores]
