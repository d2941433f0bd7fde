"""Tests for the RAG service, prompt building and quality gate."""

import asyncio

import pytest

from conftest import make_chunk, run
from ragcore.exceptions import InvalidConfigError, ProviderError, UnsupportedStrategyError
from ragcore.rag.chat import RAGEnabledChat
from ragcore.rag.prompt_builder import build_citations, build_context
from ragcore.rag.quality import RAGQualityVerifier
from ragcore.rag.rag_service import EnhancedPrompt, RAGConfig, RAGService
from ragcore.retrieval.embedding_service import EmbeddingClient, EmbeddingService
from ragcore.retrieval.retriever import Retriever
from ragcore.retrieval.search_result import RetrievalMethod, SearchResult


def _result(chunk_id, score, content="content", **metadata):
    return SearchResult(
        chunk_id=chunk_id, content=content, score=score,
        method=RetrievalMethod.BM25, metadata=metadata,
    )


@pytest.fixture
def service(indexed_retriever):
    return RAGService(indexed_retriever, RAGConfig(min_relevance=0.0))


class TestShouldUseRAG:
    def test_query_length(self, retriever):
        service = RAGService(retriever, RAGConfig(min_query_length=10))
        assert service.should_use_rag("hi") is False
        assert service.should_use_rag("what is the refund policy?") is True

    def test_disabled(self, retriever):
        service = RAGService(retriever, RAGConfig(enabled=False))
        assert service.should_use_rag("what is the refund policy?") is False

    def test_auto_trigger_off_always_retrieves(self, retriever):
        service = RAGService(retriever, RAGConfig(auto_trigger=False))
        assert service.should_use_rag("hi") is True


class TestEnhancePrompt:
    def test_passthrough_for_short_query(self, service):
        enhanced = run(service.enhance_prompt("hi"))
        assert enhanced.used_rag is False
        assert enhanced.enhanced_prompt == "hi"
        assert enhanced.citations == []
        assert service.get_statistics()["passthrough_count"] == 1
        assert service.get_statistics()["total_rags"] == 0

    def test_grounded_prompt(self, service):
        enhanced = run(service.enhance_prompt("Where did the cat sit on the mat?"))
        assert enhanced.used_rag is True
        assert enhanced.retrieval_method is RetrievalMethod.HYBRID
        assert enhanced.search_results[0].chunk_id == "c1"
        assert "Where did the cat sit on the mat?" in enhanced.enhanced_prompt
        assert "[1] The cat sat" in enhanced.enhanced_prompt
        assert "Source: Cats" in enhanced.enhanced_prompt
        assert len(enhanced.citations) <= len(enhanced.search_results)
        assert 0.0 <= enhanced.quality_score <= 1.0
        assert enhanced.tokens_used > 0

    def test_empty_corpus_uses_no_context_template(self, retriever):
        service = RAGService(retriever)
        enhanced = run(service.enhance_prompt("anything at all here?"))
        assert enhanced.used_rag is True
        assert enhanced.search_results == []
        assert enhanced.citations == []
        assert enhanced.quality_score == 0.0
        assert "No reference information" in enhanced.enhanced_prompt

    def test_min_relevance_filters(self, indexed_retriever):
        service = RAGService(indexed_retriever, RAGConfig(min_relevance=1.0, retrieval_method="vector"))
        enhanced = run(service.enhance_prompt("Where did the cat sit on the mat?"))
        assert all(r.score >= 1.0 for r in enhanced.search_results)

    def test_per_call_config(self, service):
        config = RAGConfig(retrieval_method="bm25", top_k=1, min_relevance=0.0)
        enhanced = run(service.enhance_prompt("warm mat fireplace", config=config))
        assert enhanced.retrieval_method is RetrievalMethod.BM25
        assert [r.chunk_id for r in enhanced.search_results] == ["c1"]

    def test_statistics(self, service):
        run(service.enhance_prompt("Where did the cat sit on the mat?"))
        run(service.enhance_prompt("Tell me about the quarterly revenue"))
        stats = service.get_statistics()
        assert stats["total_rags"] == 2
        assert stats["total_retrievals"] >= 2
        assert stats["avg_results_per_rag"] == stats["total_retrievals"] / 2
        assert 0.0 <= stats["avg_quality_score"] <= 1.0

    def test_retrieval_errors_propagate(self, embedding_config):
        class Broken(EmbeddingClient):
            async def embed(self, text):
                raise RuntimeError("down")

            async def embed_batch(self, texts):
                raise RuntimeError("down")

        service = RAGService(Retriever(EmbeddingService(embedding_config, client=Broken())))
        with pytest.raises(ProviderError):
            run(service.enhance_prompt("a query long enough to trigger"))
        assert service.get_statistics()["total_rags"] == 0

    def test_timeout(self, retriever):
        class Stalled(EmbeddingClient):
            async def embed(self, text):
                await asyncio.sleep(5)

            async def embed_batch(self, texts):
                await asyncio.sleep(5)

        retriever.embedding_service.client = Stalled()
        service = RAGService(retriever, RAGConfig(timeout=0.01))
        with pytest.raises(asyncio.TimeoutError):
            run(service.enhance_prompt("a query long enough to trigger"))

    @pytest.mark.parametrize("enable_reranking, expected", [
        (True, ["b", "c"]),
        (False, ["a", "c", "b"]),
    ])
    def test_reranking_applies_to_over_fetched_results(self, retriever, enable_reranking, expected):
        async def over_fetch(query, **kwargs):
            return [
                _result("a", 0.9, "nothing relevant"),
                _result("c", 0.6, "password policy"),
                _result("b", 0.5, "reset password steps"),
            ]

        retriever.search = over_fetch
        config = RAGConfig(top_k=2, min_relevance=0.0, enable_reranking=enable_reranking)
        enhanced = run(RAGService(retriever, config).enhance_prompt("How to reset password"))
        assert [r.chunk_id for r in enhanced.search_results] == expected

    def test_to_dict(self, service):
        data = run(service.enhance_prompt("Where did the cat sit on the mat?")).to_dict()
        assert data["retrieval_method"] == "hybrid"
        assert data["used_rag"] is True
        assert isinstance(data["citations"], list)


class TestHelpers:
    def test_filter_results(self, retriever):
        service = RAGService(retriever, RAGConfig(min_relevance=0.5))
        filtered = service.filter_results([_result("a", 0.8), _result("b", 0.3), _result("c", 0.6)])
        assert [r.chunk_id for r in filtered] == ["a", "c"]

    def test_quality_score(self):
        assert RAGService.calculate_quality_score([]) == 0.0
        assert RAGService.calculate_quality_score([_result("a", 0.2), _result("b", 0.6)]) == pytest.approx(0.4)
        assert RAGService.calculate_quality_score([_result("a", 7.5)]) == 1.0
        assert RAGService.calculate_quality_score([_result("a", -0.5)]) == 0.0

    def test_citations(self):
        long_text = "x" * 150
        citations = build_citations([
            _result("a", 0.9, long_text, title="Guide", page=4),
            _result("b", 0.4, "short"),
        ])
        assert citations[0].id == "citation-1"
        assert citations[0].source_name == "Guide"
        assert citations[0].page == 4
        assert citations[0].content == "x" * 100 + "..."
        assert citations[0].relevance == 0.9
        assert citations[1].source_name == "Source 2"
        assert citations[1].page is None
        assert citations[1].content == "short"

    def test_context_budget_split_evenly(self):
        context = build_context([_result("a", 0.9, "a" * 50), _result("b", 0.8, "b" * 50)], 40)
        assert "[1] " + "a" * 20 + "..." in context
        assert "[2] " + "b" * 20 + "..." in context
        assert build_context([], 100) == ""

    def test_set_config(self, retriever):
        service = RAGService(retriever)
        service.set_config(RAGConfig(top_k=9))
        assert service.get_config().top_k == 9


class TestRAGConfig:
    def test_defaults(self):
        config = RAGConfig()
        assert config.retrieval_method is RetrievalMethod.HYBRID
        assert (config.top_k, config.vector_weight, config.min_relevance) == (5, 0.7, 0.3)
        assert config.min_query_length == 10
        assert config.max_context_length == 4000

    @pytest.mark.parametrize("kwargs", [
        {"vector_weight": 1.5},
        {"min_relevance": -0.1},
        {"top_k": 0},
        {"max_context_length": 0},
        {"prompt_template": "Use {evidence} to answer {question}"},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(InvalidConfigError):
            RAGConfig(**kwargs)

    def test_unknown_method(self):
        with pytest.raises(UnsupportedStrategyError):
            RAGConfig(retrieval_method="psychic")

    def test_from_config_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("rag:\n  top_k: 3\n  retrieval_method: vector\n", encoding="utf-8")
        config = RAGConfig.from_config(path)
        assert config.top_k == 3
        assert config.retrieval_method is RetrievalMethod.VECTOR


class TestQualityVerifier:
    def test_pass_and_fail(self):
        verifier = RAGQualityVerifier(min_quality_score=0.5)
        assert verifier.verify(EnhancedPrompt("q", "p", quality_score=0.7)) is True
        assert verifier.verify(EnhancedPrompt("q", "p", quality_score=0.2)) is False
        stats = verifier.get_stats()
        assert stats["passed_count"] == 1
        assert stats["failed_count"] == 1
        assert stats["pass_rate"] == 0.5
        assert stats["last_verified"] is not None

    def test_invalid_threshold(self):
        with pytest.raises(InvalidConfigError):
            RAGQualityVerifier(min_quality_score=2.0)


class TestRAGEnabledChat:
    def test_with_rag(self, service):
        result = run(RAGEnabledChat(service).process_query("Where did the cat sit on the mat?"))
        assert result.used_rag is True
        assert result.prompt == result.enhanced_prompt.enhanced_prompt

    def test_without_rag(self, service):
        result = run(RAGEnabledChat(service).process_query("Where did the cat sit?", use_rag=False))
        assert result.used_rag is False
        assert result.prompt == "Where did the cat sit?"
        assert result.enhanced_prompt is None

    def test_short_query_passes_through(self, service):
        assert run(RAGEnabledChat(service).get_enhanced_prompt_for_ai("hi")) == "hi"
