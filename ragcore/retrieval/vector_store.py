"""
Vector Store - Store and search embeddings by cosine similarity.

Backends:
- InMemoryVectorStore: exact brute-force search, the correctness baseline
- ChromaVectorStore: persistent ChromaDB collection (cosine HNSW space)

Both implement the async VectorStore contract; Embedding ids are the
primary key, so saving an existing id replaces it.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from ..concurrency import ReadWriteLock
from ..config import get_section, pick_fields
from ..exceptions import InvalidConfigError, NotFoundError
from .embedding_service import Embedding

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors, in [-1, 1].

    Returns 0.0 when lengths differ or either vector is all zeros.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


@dataclass
class VectorStoreConfig:
    """Configuration for vector store."""
    backend: str = "memory"  # "memory" or "chroma"
    collection_name: str = "ragcore_kb"
    persist_directory: str = "data/vectordb"

    @classmethod
    def from_dict(cls, data: dict) -> "VectorStoreConfig":
        return cls(**pick_fields(cls, data))

    @classmethod
    def from_config(cls, path: Optional[Path] = None) -> "VectorStoreConfig":
        """Build from the `vector_store` section of config.yaml."""
        return cls.from_dict(get_section("vector_store", path))


class VectorStore(ABC):
    """
    Async storage contract for embeddings.

    Usage:
        store = InMemoryVectorStore()
        await store.save_embeddings(embeddings)
        nearest = await store.search(query_vector, top_k=5)
    """

    @abstractmethod
    async def save_embedding(self, embedding: Embedding):
        ...

    @abstractmethod
    async def save_embeddings(self, embeddings: list[Embedding]):
        ...

    @abstractmethod
    async def get_embedding(self, embedding_id: str) -> Embedding:
        """Raises NotFoundError if the id is not stored."""

    @abstractmethod
    async def search(self, query_vector: Sequence[float], top_k: int = 5) -> list[Embedding]:
        """Up to top_k embeddings, most similar first."""

    @abstractmethod
    async def delete_embedding(self, embedding_id: str):
        ...

    @abstractmethod
    async def delete_by_chunk_id(self, chunk_id: str):
        ...

    @abstractmethod
    async def count(self) -> int:
        ...


class InMemoryVectorStore(VectorStore):
    """
    Brute-force cosine search over a dict of embeddings.

    Safe for concurrent use from several threads and tasks: lookups take
    the shared side of a reader/writer lock, mutations the exclusive side.
    """

    def __init__(self):
        self._embeddings: dict[str, Embedding] = {}
        self._by_chunk: dict[str, set[str]] = {}
        self._lock = ReadWriteLock()

    def _put(self, embedding: Embedding):
        # Caller holds the write lock
        previous = self._embeddings.get(embedding.id)
        if previous is not None and previous.chunk_id and previous.chunk_id != embedding.chunk_id:
            self._unlink(previous)
        self._embeddings[embedding.id] = embedding
        if embedding.chunk_id:
            self._by_chunk.setdefault(embedding.chunk_id, set()).add(embedding.id)

    def _unlink(self, embedding: Embedding):
        ids = self._by_chunk.get(embedding.chunk_id)
        if ids is not None:
            ids.discard(embedding.id)
            if not ids:
                del self._by_chunk[embedding.chunk_id]

    async def save_embedding(self, embedding: Embedding):
        with self._lock.write():
            self._put(embedding)

    async def save_embeddings(self, embeddings: list[Embedding]):
        with self._lock.write():
            for embedding in embeddings:
                self._put(embedding)

    async def get_embedding(self, embedding_id: str) -> Embedding:
        with self._lock.read():
            embedding = self._embeddings.get(embedding_id)
        if embedding is None:
            raise NotFoundError("embedding", embedding_id)
        return embedding

    async def search(self, query_vector: Sequence[float], top_k: int = 5) -> list[Embedding]:
        if top_k <= 0:
            return []
        with self._lock.read():
            candidates = list(self._embeddings.values())

        scored = [(cosine_similarity(query_vector, e.vector), e) for e in candidates]
        scored.sort(key=lambda pair: (-pair[0], pair[1].id))
        return [e for _, e in scored[:top_k]]

    async def delete_embedding(self, embedding_id: str):
        with self._lock.write():
            embedding = self._embeddings.pop(embedding_id, None)
            if embedding is not None and embedding.chunk_id:
                self._unlink(embedding)

    async def delete_by_chunk_id(self, chunk_id: str):
        with self._lock.write():
            for embedding_id in self._by_chunk.pop(chunk_id, set()):
                self._embeddings.pop(embedding_id, None)

    async def count(self) -> int:
        with self._lock.read():
            return len(self._embeddings)


class ChromaVectorStore(VectorStore):
    """
    Persistent vector store on a ChromaDB collection.

    Chroma calls block, so each one runs in a worker thread. Vectors are
    stored as-is; the Embedding model and token count travel in metadata.

    Usage:
        store = ChromaVectorStore(VectorStoreConfig(backend="chroma"))
        await store.save_embeddings(embeddings)
    """

    def __init__(self, config: Optional[VectorStoreConfig] = None, client=None):
        self.config = config or VectorStoreConfig(backend="chroma")
        self._client = client
        self._collection = None
        self._init_store()

    def _init_store(self):
        """Initialize ChromaDB."""
        try:
            import chromadb
            from chromadb.config import Settings

            if self._client is None:
                persist_dir = Path(self.config.persist_directory)
                persist_dir.mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(
                    path=str(persist_dir),
                    settings=Settings(anonymized_telemetry=False),
                )

            self._collection = self._client.get_or_create_collection(
                name=self.config.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
            logger.info(
                f"ChromaVectorStore initialized: collection={self.config.collection_name}, "
                f"embeddings={self._collection.count()}"
            )
        except ImportError:
            logger.error("chromadb not installed. Run: pip install 'ragcore[chroma]'")
            raise
        except Exception as e:
            logger.error(f"Failed to initialize ChromaVectorStore: {e}")
            raise

    @staticmethod
    def _to_metadata(embedding: Embedding) -> dict:
        # Chroma rejects None metadata values
        metadata = {
            "model": embedding.model,
            "tokens_used": embedding.tokens_used,
            "created_at": embedding.created_at.isoformat(),
        }
        if embedding.chunk_id:
            metadata["chunk_id"] = embedding.chunk_id
        return metadata

    @staticmethod
    def _from_record(embedding_id: str, vector, metadata: Optional[dict]) -> Embedding:
        metadata = metadata or {}
        created_at = metadata.get("created_at")
        kwargs = {"created_at": datetime.fromisoformat(created_at)} if created_at else {}
        return Embedding(
            id=embedding_id,
            vector=tuple(float(x) for x in vector),
            model=metadata.get("model", ""),
            tokens_used=int(metadata.get("tokens_used", 0)),
            chunk_id=metadata.get("chunk_id"),
            **kwargs,
        )

    async def save_embedding(self, embedding: Embedding):
        await self.save_embeddings([embedding])

    async def save_embeddings(self, embeddings: list[Embedding]):
        if not embeddings:
            return
        await asyncio.to_thread(
            self._collection.upsert,
            ids=[e.id for e in embeddings],
            embeddings=[list(e.vector) for e in embeddings],
            metadatas=[self._to_metadata(e) for e in embeddings],
        )
        logger.debug(f"Upserted {len(embeddings)} embeddings into {self.config.collection_name}")

    async def get_embedding(self, embedding_id: str) -> Embedding:
        result = await asyncio.to_thread(
            self._collection.get,
            ids=[embedding_id],
            include=["embeddings", "metadatas"],
        )
        if not result["ids"]:
            raise NotFoundError("embedding", embedding_id)
        return self._from_record(
            result["ids"][0],
            result["embeddings"][0],
            result["metadatas"][0] if result["metadatas"] else None,
        )

    async def search(self, query_vector: Sequence[float], top_k: int = 5) -> list[Embedding]:
        if top_k <= 0:
            return []
        total = await self.count()
        if total == 0:
            return []

        results = await asyncio.to_thread(
            self._collection.query,
            query_embeddings=[list(query_vector)],
            n_results=min(top_k, total),
            include=["embeddings", "metadatas", "distances"],
        )

        found = []
        if results["ids"] and results["ids"][0]:
            metadatas = results["metadatas"][0] if results["metadatas"] else [None] * len(results["ids"][0])
            for embedding_id, vector, metadata in zip(
                results["ids"][0], results["embeddings"][0], metadatas
            ):
                found.append(self._from_record(embedding_id, vector, metadata))
        return found

    async def delete_embedding(self, embedding_id: str):
        await asyncio.to_thread(self._collection.delete, ids=[embedding_id])

    async def delete_by_chunk_id(self, chunk_id: str):
        await asyncio.to_thread(self._collection.delete, where={"chunk_id": chunk_id})

    async def count(self) -> int:
        return await asyncio.to_thread(self._collection.count)


def create_vector_store(config: Optional[VectorStoreConfig] = None) -> VectorStore:
    """Build the backend named by config.backend."""
    config = config or VectorStoreConfig()
    if config.backend == "memory":
        return InMemoryVectorStore()
    if config.backend == "chroma":
        return ChromaVectorStore(config)
    raise InvalidConfigError(f"Unknown vector store backend: {config.backend!r}")
