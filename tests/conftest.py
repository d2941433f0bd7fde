"""Shared fixtures: an offline embedding stack and a small indexed corpus."""

import asyncio
import sys
from pathlib import Path

import pytest

# Resolve repository root (one level above the tests directory)
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from ragcore.processing.chunker import Chunk
from ragcore.retrieval.embedding_service import (
    EmbeddingClient,
    EmbeddingConfig,
    EmbeddingService,
    HashingEmbeddingClient,
)
from ragcore.retrieval.retriever import Retriever
from ragcore.retrieval.vector_store import InMemoryVectorStore

DIMENSION = 64


class RecordingClient(EmbeddingClient):
    """Hashing client that records every provider call."""

    def __init__(self, dimension: int = DIMENSION):
        self.inner = HashingEmbeddingClient(dimension)
        self.single_calls: list[str] = []
        self.batch_calls: list[list[str]] = []

    async def embed(self, text):
        self.single_calls.append(text)
        return await self.inner.embed(text)

    async def embed_batch(self, texts):
        self.batch_calls.append(list(texts))
        return await self.inner.embed_batch(texts)


def make_chunk(chunk_id: str, content: str, document_id: str = "doc", **metadata) -> Chunk:
    return Chunk(
        id=chunk_id,
        document_id=document_id,
        chunk_index=0,
        content=content,
        token_count=len(content.split()),
        end_position=len(content),
        metadata=metadata,
    )


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def embedding_config():
    return EmbeddingConfig(
        provider="hashing",
        model="local-hashing",
        dimension=DIMENSION,
        batch_size=100,
        cache_size=1000,
        price_per_million=1.0,
    )


@pytest.fixture
def recording_client():
    return RecordingClient()


@pytest.fixture
def embedding_service(embedding_config, recording_client):
    return EmbeddingService(embedding_config, client=recording_client)


@pytest.fixture
def retriever(embedding_service):
    return Retriever(embedding_service, InMemoryVectorStore())


@pytest.fixture
def corpus():
    return [
        make_chunk("c1", "The cat sat on the warm mat near the fireplace", title="Cats"),
        make_chunk("c2", "Dogs love long walks in the park every morning", title="Dogs"),
        make_chunk("c3", "Quarterly revenue grew because cloud sales doubled", title="Finance", page=3),
    ]


@pytest.fixture
def indexed_retriever(retriever, corpus):
    run(retriever.index_chunks(corpus))
    return retriever
