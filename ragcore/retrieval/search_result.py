"""Result records shared by the retriever, rerankers and the RAG layer."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from ..exceptions import UnsupportedStrategyError


class RetrievalMethod(str, Enum):
    VECTOR = "vector"
    BM25 = "bm25"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, value) -> "RetrievalMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedStrategyError(f"Unsupported retrieval method: {value!r}") from None


@dataclass(frozen=True)
class SearchResult:
    """A scored chunk. `rank` is 1-based and dense within one result list."""
    chunk_id: str
    content: str
    score: float
    method: RetrievalMethod
    rank: int = 0
    metadata: dict = field(default_factory=dict)
    rerank_score: Optional[float] = None

    def to_dict(self) -> dict:
        data = {
            "chunk_id": self.chunk_id,
            "content": self.content,
            "score": self.score,
            "method": self.method.value,
            "rank": self.rank,
            "metadata": dict(self.metadata),
        }
        if self.rerank_score is not None:
            data["rerank_score"] = self.rerank_score
        return data


def assign_ranks(results: list[SearchResult]) -> list[SearchResult]:
    """Copy of results with ranks 1..N in list order."""
    return [replace(r, rank=i) for i, r in enumerate(results, 1)]
