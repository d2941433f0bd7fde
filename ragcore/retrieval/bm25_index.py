"""
BM25 Index - Sparse keyword search over the indexed chunks.

Uses rank_bm25 for scoring. The index doubles as the retriever's chunk
store (chunk id -> Chunk), so lexical search and vector search always see
the same corpus.
"""

import logging
import math
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rank_bm25 import BM25Okapi

from ..concurrency import ReadWriteLock
from ..config import get_section, pick_fields
from ..exceptions import InvalidConfigError
from ..processing.chunker import Chunk

logger = logging.getLogger(__name__)


@dataclass
class BM25Config:
    """Configuration for BM25 index."""
    k1: float = 1.5  # Term frequency saturation
    b: float = 0.75  # Length normalization

    def __post_init__(self):
        if self.k1 < 0:
            raise InvalidConfigError(f"k1 must be >= 0, got {self.k1}")
        if not 0.0 <= self.b <= 1.0:
            raise InvalidConfigError(f"b must be in [0, 1], got {self.b}")

    @classmethod
    def from_dict(cls, data: dict) -> "BM25Config":
        return cls(**pick_fields(cls, data))

    @classmethod
    def from_config(cls, path: Optional[Path] = None) -> "BM25Config":
        """Build from the `bm25` section of config.yaml."""
        return cls.from_dict(get_section("bm25", path))


class NonNegativeBM25(BM25Okapi):
    """
    BM25Okapi with the smoothed IDF log(1 + (N - n + 0.5) / (n + 0.5)).

    Terms present in most documents keep a small positive weight instead of
    going negative, so a document matching every query term can never
    score below one matching none.
    """

    def _calc_idf(self, nd):
        for word, freq in nd.items():
            self.idf[word] = math.log(1 + (self.corpus_size - freq + 0.5) / (freq + 0.5))


def tokenize(text: str) -> list[str]:
    """Lower-cased word tokens with punctuation removed."""
    text = re.sub(r"[^\w\s]", " ", text)
    return text.lower().split()


class BM25Index:
    """
    BM25 sparse keyword index over Chunks.

    The scoring model is rebuilt lazily on the first search after a change,
    so IDF and average document length always reflect the current corpus.

    Usage:
        index = BM25Index()
        index.add_chunks(chunks)
        hits = index.search("vehicle theft coverage", top_k=10)
    """

    def __init__(self, config: Optional[BM25Config] = None):
        self.config = config or BM25Config()
        self._chunks: dict[str, Chunk] = {}
        self._tokens: dict[str, list[str]] = {}
        self._lock = ReadWriteLock()
        self._version = 0

        self._build_lock = threading.Lock()
        self._model: Optional[tuple[int, list[str], Optional[BM25Okapi]]] = None

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._chunks)

    def __contains__(self, chunk_id: str) -> bool:
        with self._lock.read():
            return chunk_id in self._chunks

    def add_chunk(self, chunk: Chunk):
        self.add_chunks([chunk])

    def add_chunks(self, chunks: list[Chunk]):
        """Add or replace chunks by id."""
        if not chunks:
            return
        with self._lock.write():
            for chunk in chunks:
                self._chunks[chunk.id] = chunk
                self._tokens[chunk.id] = tokenize(chunk.content)
            self._version += 1

    def remove_chunk(self, chunk_id: str) -> bool:
        """Remove a chunk. Returns False if it was not indexed."""
        with self._lock.write():
            if self._chunks.pop(chunk_id, None) is None:
                return False
            del self._tokens[chunk_id]
            self._version += 1
            return True

    def get(self, chunk_id: str) -> Optional[Chunk]:
        with self._lock.read():
            return self._chunks.get(chunk_id)

    def chunk_ids_for_document(self, document_id: str) -> list[str]:
        with self._lock.read():
            return [cid for cid, chunk in self._chunks.items() if chunk.document_id == document_id]

    def _current_model(self) -> tuple[list[str], Optional[BM25Okapi]]:
        with self._build_lock:
            with self._lock.read():
                version = self._version
                if self._model is not None and self._model[0] == version:
                    return self._model[1], self._model[2]
                ids = list(self._chunks)
                corpus = [self._tokens[cid] for cid in ids]

            # rank_bm25 divides by the corpus size and the average length
            model = None
            if corpus and any(corpus):
                model = NonNegativeBM25(corpus, k1=self.config.k1, b=self.config.b)
                logger.debug(f"BM25 model rebuilt: {len(ids)} chunks, avgdl={model.avgdl:.1f}")

            self._model = (version, ids, model)
            return ids, model

    def search(self, query: str, top_k: int = 10) -> list[tuple[Chunk, float]]:
        """
        Search using BM25.

        Args:
            query: Search query
            top_k: Number of results

        Returns:
            (chunk, score) pairs with score > 0, best first, ties by chunk id
        """
        if top_k <= 0:
            return []
        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        ids, model = self._current_model()
        if model is None:
            return []

        scores = model.get_scores(query_tokens)
        hits = []
        with self._lock.read():
            for chunk_id, score in zip(ids, scores):
                chunk = self._chunks.get(chunk_id)
                # Chunk may have been removed since the model was built
                if chunk is not None and score > 0:
                    hits.append((chunk, float(score)))

        hits.sort(key=lambda hit: (-hit[1], hit[0].id))
        return hits[:top_k]

    def get_stats(self) -> dict:
        """Get index statistics."""
        with self._lock.read():
            total_tokens = sum(len(t) for t in self._tokens.values())
            count = len(self._chunks)
        return {
            "chunk_count": count,
            "avg_chunk_length": total_tokens / count if count else 0.0,
            "k1": self.config.k1,
            "b": self.config.b,
        }
