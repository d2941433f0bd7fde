"""
Embedding Service - Generate embeddings for text with caching and usage tracking.

Supports:
- OpenAI text-embedding-3-large (3072 dims) - best quality
- OpenAI text-embedding-3-small (1536 dims) - faster/cheaper
- OpenAI text-embedding-ada-002 (1536 dims) - legacy
- Nebius BAAI/bge-multilingual-gemma2 (3584 dims) - multilingual
- Hashing client - deterministic offline vectors for development and tests
"""

import asyncio
import hashlib
import logging
import os
import re
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import numpy as np

from ..config import get_section, load_env, pick_fields
from ..exceptions import InvalidConfigError, ProviderError
from ..processing.tokens import estimate_tokens
from .embedding_cache import EmbeddingCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingModel:
    """Static description of an embedding model."""
    name: str
    dimension: int
    max_tokens: int
    price_per_million: float  # USD per 1M input tokens
    supports_dimensions: bool = False  # Accepts the `dimensions` request parameter


EMBEDDING_MODELS: dict[str, EmbeddingModel] = {
    "text-embedding-ada-002": EmbeddingModel("text-embedding-ada-002", 1536, 8191, 0.10),
    "text-embedding-3-small": EmbeddingModel("text-embedding-3-small", 1536, 8191, 0.02, supports_dimensions=True),
    "text-embedding-3-large": EmbeddingModel("text-embedding-3-large", 3072, 8191, 0.13, supports_dimensions=True),
    "BAAI/bge-multilingual-gemma2": EmbeddingModel("BAAI/bge-multilingual-gemma2", 3584, 8192, 0.01),
}


@dataclass(frozen=True)
class Embedding:
    """A vector for one piece of text. Immutable; cached copies are shared."""
    id: str
    vector: tuple[float, ...]
    model: str
    tokens_used: int = 0
    chunk_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dimension(self) -> int:
        return len(self.vector)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "chunk_id": self.chunk_id,
            "vector": list(self.vector),
            "model": self.model,
            "tokens_used": self.tokens_used,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "openai"  # "openai", "nebius" or "hashing"
    model: str = "text-embedding-3-small"
    dimension: Optional[int] = None  # Defaults to the model preset
    batch_size: int = 100
    cache_size: int = 10000
    price_per_million: Optional[float] = None  # Defaults to the model preset
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    def __post_init__(self):
        preset = EMBEDDING_MODELS.get(self.model)
        if self.dimension is None:
            if preset is None:
                raise InvalidConfigError(
                    f"Unknown embedding model {self.model!r}: set dimension explicitly"
                )
            self.dimension = preset.dimension
        if self.price_per_million is None:
            self.price_per_million = preset.price_per_million if preset else 0.0

        if self.dimension <= 0:
            raise InvalidConfigError(f"dimension must be positive, got {self.dimension}")
        if self.batch_size <= 0:
            raise InvalidConfigError(f"batch_size must be positive, got {self.batch_size}")
        if self.cache_size <= 0:
            raise InvalidConfigError(f"cache_size must be positive, got {self.cache_size}")

    @classmethod
    def from_dict(cls, data: dict) -> "EmbeddingConfig":
        return cls(**pick_fields(cls, data))

    @classmethod
    def from_config(cls, path: Optional[Path] = None) -> "EmbeddingConfig":
        """Build from the `embedding` section of config.yaml."""
        return cls.from_dict(get_section("embedding", path))


class EmbeddingClient(ABC):
    """Provider contract: vectors plus the tokens the provider billed."""

    @abstractmethod
    async def embed(self, text: str) -> tuple[list[float], int]:
        ...

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> tuple[list[list[float]], int]:
        ...


class OpenAIEmbeddingClient(EmbeddingClient):
    """
    OpenAI-compatible embeddings endpoint (OpenAI itself, or Nebius).

    Usage:
        client = OpenAIEmbeddingClient(EmbeddingConfig(provider="openai"))
        vector, tokens = await client.embed("hello")
    """

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self._client = None
        self._init_client()

    def _init_client(self):
        """Initialize async OpenAI-compatible client (works with Nebius too)."""
        from openai import AsyncOpenAI

        load_env()
        if self.config.provider == "nebius":
            api_key = self.config.api_key or os.getenv("LLM_API_KEY")
            base_url = self.config.base_url or os.getenv("LLM_BASE_URL", "https://api.studio.nebius.ai/v1")
            if not api_key:
                raise InvalidConfigError("LLM_API_KEY not set - embedding provider unavailable")
            self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        else:
            api_key = self.config.api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise InvalidConfigError("OPENAI_API_KEY not set - embedding provider unavailable")
            self._client = AsyncOpenAI(api_key=api_key, base_url=self.config.base_url)

        logger.info(
            f"Embedding client initialized ({self.config.provider}): "
            f"model={self.config.model}, dim={self.config.dimension}"
        )

    def _sends_dimensions(self) -> bool:
        # Nebius models and ada-002 reject the dimensions parameter
        if self.config.provider == "nebius":
            return False
        preset = EMBEDDING_MODELS.get(self.config.model)
        return preset is not None and preset.supports_dimensions

    async def _create(self, inputs):
        if not self._sends_dimensions():
            return await self._client.embeddings.create(model=self.config.model, input=inputs)
        return await self._client.embeddings.create(
            model=self.config.model,
            input=inputs,
            dimensions=self.config.dimension,
        )

    async def embed(self, text: str) -> tuple[list[float], int]:
        response = await self._create(text.replace("\n", " ").strip() or " ")
        return response.data[0].embedding, response.usage.total_tokens

    async def embed_batch(self, texts: list[str]) -> tuple[list[list[float]], int]:
        cleaned = [t.replace("\n", " ").strip() or " " for t in texts]
        response = await self._create(cleaned)
        data = sorted(response.data, key=lambda d: d.index)
        return [d.embedding for d in data], response.usage.total_tokens


class HashingEmbeddingClient(EmbeddingClient):
    """
    Deterministic feature-hashing embeddings, no network.

    Each lower-cased word is hashed to a signed bucket; the vector is
    L2-normalised. Texts sharing words get positive cosine similarity.
    """

    WORD_PATTERN = re.compile(r"\w+")

    def __init__(self, dimension: int = 256):
        self.dimension = dimension

    def vectorize(self, text: str) -> list[float]:
        vector = np.zeros(self.dimension, dtype=np.float64)
        for word in self.WORD_PATTERN.findall(text.lower()):
            digest = hashlib.blake2b(word.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "little")
            sign = 1.0 if value & 1 else -1.0
            vector[(value >> 1) % self.dimension] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()

    async def embed(self, text: str) -> tuple[list[float], int]:
        return self.vectorize(text), estimate_tokens(text)

    async def embed_batch(self, texts: list[str]) -> tuple[list[list[float]], int]:
        return [self.vectorize(t) for t in texts], sum(estimate_tokens(t) for t in texts)


def create_client(config: EmbeddingConfig) -> EmbeddingClient:
    """Build the provider client named by config.provider."""
    if config.provider in ("openai", "nebius"):
        return OpenAIEmbeddingClient(config)
    if config.provider == "hashing":
        return HashingEmbeddingClient(config.dimension)
    raise InvalidConfigError(f"Unknown embedding provider: {config.provider!r}")


class EmbeddingService:
    """
    Generate embeddings for text chunks, cache-first.

    Usage:
        service = EmbeddingService(EmbeddingConfig(provider="hashing", model="local", dimension=256))
        embedding = await service.embed("what does the policy cover?")
        embeddings = await service.embed_batch(["text1", "text2", ...])
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        client: Optional[EmbeddingClient] = None,
        cache: Optional[EmbeddingCache] = None,
    ):
        self.config = config or EmbeddingConfig()
        self.client = client or create_client(self.config)
        self.cache = cache or EmbeddingCache(self.config.cache_size)

        self._usage_lock = threading.Lock()
        self._total_embeddings = 0
        self._total_tokens = 0
        self._total_cost = 0.0

    @property
    def model(self) -> str:
        return self.config.model

    def get_dimension(self) -> int:
        """Get embedding dimension."""
        return self.config.dimension

    async def _call_provider(self, coro):
        try:
            return await coro
        except (ProviderError, asyncio.TimeoutError):
            raise
        except Exception as e:
            logger.error(f"Embedding provider call failed: {e}")
            raise ProviderError(f"Embedding provider call failed: {e}") from e

    def _make_embedding(self, vector, tokens: int) -> Embedding:
        if len(vector) != self.config.dimension:
            raise ProviderError(
                f"Provider returned {len(vector)}-dim vector, "
                f"expected {self.config.dimension} for {self.model}"
            )
        return Embedding(
            id=f"emb-{uuid.uuid4().hex[:12]}",
            vector=tuple(float(x) for x in vector),
            model=self.model,
            tokens_used=tokens,
        )

    def _record_usage(self, count: int, tokens: int):
        with self._usage_lock:
            self._total_embeddings += count
            self._total_tokens += tokens
            self._total_cost += tokens * self.config.price_per_million / 1_000_000

    async def embed(self, text: str, timeout: Optional[float] = None) -> Embedding:
        """
        Embed a single text.

        Args:
            text: Text to embed
            timeout: Seconds before asyncio.TimeoutError (None = no limit)

        Returns:
            Embedding (possibly shared with the cache)

        Raises:
            ProviderError: Provider failed or returned a wrong-sized vector
        """
        return await asyncio.wait_for(self._embed(text), timeout)

    async def _embed(self, text: str) -> Embedding:
        cached = self.cache.get(text, self.model)
        if cached is not None:
            return cached

        vector, tokens = await self._call_provider(self.client.embed(text))
        embedding = self._make_embedding(vector, tokens)
        self.cache.set(text, self.model, embedding)
        self._record_usage(1, tokens)
        return embedding

    async def embed_batch(self, texts: list[str], timeout: Optional[float] = None) -> list[Embedding]:
        """
        Embed many texts, sending only cache misses to the provider.

        Misses are sent in batches of config.batch_size; each batch is cached
        as soon as it returns, so a timeout or failure part-way keeps the
        batches already embedded.

        Args:
            texts: Texts to embed
            timeout: Seconds before asyncio.TimeoutError (None = no limit)

        Returns:
            Embeddings in the same order as texts
        """
        return await asyncio.wait_for(self._embed_batch(texts), timeout)

    async def _embed_batch(self, texts: list[str]) -> list[Embedding]:
        results: list[Optional[Embedding]] = [None] * len(texts)
        misses: dict[str, list[int]] = {}  # text -> positions, first-seen order

        for i, text in enumerate(texts):
            cached = self.cache.get(text, self.model)
            if cached is not None:
                results[i] = cached
            else:
                misses.setdefault(text, []).append(i)

        pending = list(misses)
        batch_size = self.config.batch_size
        total_batches = (len(pending) + batch_size - 1) // batch_size

        for start in range(0, len(pending), batch_size):
            batch = pending[start:start + batch_size]
            vectors, tokens = await self._call_provider(self.client.embed_batch(batch))
            if len(vectors) != len(batch):
                raise ProviderError(
                    f"Provider returned {len(vectors)} vectors for {len(batch)} texts"
                )

            per_text = tokens // len(batch)
            embeddings = [self._make_embedding(v, per_text) for v in vectors]
            for text, embedding in zip(batch, embeddings):
                self.cache.set(text, self.model, embedding)
                for i in misses[text]:
                    results[i] = embedding
            self._record_usage(len(batch), tokens)

            logger.debug(
                f"Embedded batch {start // batch_size + 1}/{total_batches} "
                f"({len(batch)} texts, {tokens} tokens)"
            )

        return results

    def get_statistics(self) -> dict:
        """Usage totals plus cache counters."""
        with self._usage_lock:
            stats = {
                "model": self.model,
                "dimension": self.config.dimension,
                "total_embeddings": self._total_embeddings,
                "total_tokens": self._total_tokens,
                "total_cost": self._total_cost,
            }
        stats["cache"] = self.cache.get_statistics()
        return stats
