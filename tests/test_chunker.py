"""Tests for the chunker."""

import pytest

from ragcore.exceptions import InvalidConfigError, UnsupportedStrategyError
from ragcore.processing.chunker import (
    ChunkConfig,
    Chunker,
    ChunkingStrategy,
    StructureAwareChunker,
    split_paragraphs,
    split_sentences,
)
from ragcore.processing.tokens import estimate_tokens


class TestSplitting:
    def test_paragraphs_trimmed_with_offsets(self):
        text = "  Alpha.\n\n\nBeta gamma.  "
        units = split_paragraphs(text)
        assert [u.text for u in units] == ["Alpha.", "Beta gamma."]
        for unit in units:
            assert text[unit.start:unit.end] == unit.text

    def test_sentences_close_on_cjk_and_latin_terminators(self):
        units = split_sentences("你好。Fine! Really?\nyes")
        assert [u.text for u in units] == ["你好。", "Fine!", "Really?", "yes"]

    def test_sentence_offsets(self):
        text = "One. Two."
        units = split_sentences(text, offset=100)
        assert [(u.start, u.end) for u in units] == [(100, 104), (105, 109)]


class TestChunker:
    def test_empty_input(self):
        chunker = Chunker()
        assert chunker.chunk_text("") == []
        assert chunker.chunk_text("  \n\n  ") == []

    def test_three_paragraphs_give_three_chunks(self):
        text = "First paragraph here.\n\nSecond paragraph here.\n\nThird paragraph here."
        chunks = Chunker().chunk_text(text)
        assert len(chunks) == 3
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert chunks[1].content == "Second paragraph here."

    def test_merge_paragraphs_packs_small_units(self):
        text = "First paragraph here.\n\nSecond paragraph here.\n\nThird paragraph here."
        config = ChunkConfig(strategy="paragraph", merge_paragraphs=True)
        chunks = Chunker(config).chunk_text(text)
        assert len(chunks) == 1
        assert chunks[0].content == (
            "First paragraph here.\nSecond paragraph here.\nThird paragraph here."
        )

    def test_hybrid_splits_oversized_paragraph_into_sentences(self):
        text = "Alpha beta. Gamma delta. Epsilon zeta."
        chunks = Chunker(ChunkConfig(chunk_size=5)).chunk_text(text)
        assert [c.content for c in chunks] == ["Alpha beta.", "Gamma delta.", "Epsilon zeta."]
        assert (chunks[0].start_position, chunks[0].end_position) == (0, 11)
        assert text[chunks[2].start_position:chunks[2].end_position] == "Epsilon zeta."

    def test_sentence_strategy_respects_budget(self):
        text = "One two three. Four five six. Seven eight nine. Ten."
        chunks = Chunker(ChunkConfig(chunk_size=8, strategy="sentence")).chunk_text(text)
        assert [c.content for c in chunks] == [
            "One two three.\nFour five six.",
            "Seven eight nine.\nTen.",
        ]
        for chunk in chunks:
            assert chunk.token_count <= 8
            assert chunk.token_count == estimate_tokens(chunk.content)

    def test_oversized_single_unit_is_kept_whole(self):
        text = "word " * 50
        chunks = Chunker(ChunkConfig(chunk_size=10, strategy="sentence")).chunk_text(text)
        assert len(chunks) == 1
        assert chunks[0].token_count == 50

    def test_fixed_windows(self):
        text = "abcdefghij" * 3
        chunks = Chunker(ChunkConfig(strategy="fixed", fixed_chunk_chars=10)).chunk_text(text)
        assert [c.content for c in chunks] == ["abcdefghij"] * 3
        assert [c.start_position for c in chunks] == [0, 10, 20]

    def test_overlap_borrows_from_next_chunk(self):
        text = "First para.\n\nSecond para."
        chunks = Chunker(ChunkConfig(strategy="paragraph", chunk_overlap=5)).chunk_text(text)
        assert chunks[0].content == "First para.\nSecon"
        assert chunks[1].content == "Second para."

    def test_chunk_text_round_trip(self):
        text = "Intro line one.\n\nBody sentence one. Body sentence two.\n\nOutro."
        chunks = Chunker(ChunkConfig(chunk_size=4)).chunk_text(text)
        for chunk in chunks:
            span = text[chunk.start_position:chunk.end_position]
            assert span.replace(" ", "\n").split() == chunk.content.split()

    def test_chunk_text_ids_are_unique(self):
        chunks = Chunker().chunk_text("A.\n\nB.\n\nC.")
        assert len({c.id for c in chunks}) == 3
        assert all(c.document_id is None for c in chunks)

    def test_chunk_document_metadata_and_ids(self):
        chunker = Chunker()
        chunks = chunker.chunk_document("doc-7", "Manual", "Part one.\n\nPart two.", {"source": "kb"})
        assert [c.id for c in chunks] == ["doc-7-0", "doc-7-1"]
        for chunk in chunks:
            assert chunk.document_id == "doc-7"
            assert chunk.metadata["title"] == "Manual"
            assert chunk.metadata["source"] == "kb"
            assert chunk.metadata["strategy"] == "hybrid"
            assert chunk.metadata["tokens"] == chunk.token_count

    def test_caller_metadata_wins(self):
        chunks = Chunker().chunk_document("d", "Title", "Text.", {"title": "Override"})
        assert chunks[0].metadata["title"] == "Override"

    def test_rechunking_is_idempotent(self):
        chunker = Chunker()
        first = chunker.chunk_document("d", "T", "A b c.\n\nD e f.")
        second = chunker.chunk_document("d", "T", "A b c.\n\nD e f.")
        assert [(c.id, c.content) for c in first] == [(c.id, c.content) for c in second]

    def test_statistics(self):
        chunker = Chunker()
        chunker.chunk_text("One two.\n\nThree four.")
        stats = chunker.get_statistics()
        assert stats["total_chunked"] == 2
        assert stats["total_tokens"] == 6
        assert stats["strategy"] == "hybrid"

    def test_chunk_to_dict(self):
        chunk = Chunker().chunk_document("d", "T", "Hello.")[0]
        data = chunk.to_dict()
        assert data["id"] == "d-0"
        assert data["metadata"]["title"] == "T"
        assert "created_at" in data


class TestChunkConfig:
    def test_unknown_strategy(self):
        with pytest.raises(UnsupportedStrategyError):
            ChunkConfig(strategy="semantic")

    def test_strategy_parsed_from_string(self):
        assert ChunkConfig(strategy="FIXED").strategy is ChunkingStrategy.FIXED

    @pytest.mark.parametrize("kwargs", [
        {"chunk_size": 0},
        {"chunk_overlap": -1},
        {"fixed_chunk_chars": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(InvalidConfigError):
            ChunkConfig(**kwargs)

    def test_from_dict_ignores_unknown_keys(self):
        config = ChunkConfig.from_dict({"chunk_size": 42, "colour": "blue"})
        assert config.chunk_size == 42

    def test_from_config_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("chunking:\n  chunk_size: 128\n  strategy: sentence\n", encoding="utf-8")
        config = ChunkConfig.from_config(path)
        assert config.chunk_size == 128
        assert config.strategy is ChunkingStrategy.SENTENCE


class TestStructureAwareChunker:
    def test_flags(self):
        text = "# Getting started\n\nColumns | Values\n\n```\nprint('hi')\n```"
        chunks = StructureAwareChunker().chunk_with_structure(text)
        assert len(chunks) == 3
        assert chunks[0].metadata.get("is_title") is True
        assert chunks[1].metadata.get("is_table") is True
        assert chunks[2].metadata.get("is_code") is True
        assert [c.metadata["index"] for c in chunks] == [0, 1, 2]
        assert "is_title" not in chunks[1].metadata

    def test_boundaries_match_hybrid(self):
        text = "# Title\n\nBody text. More body.\n\nEnd."
        plain = Chunker(ChunkConfig(chunk_size=500)).chunk_text(text)
        structured = StructureAwareChunker(chunk_size=500).chunk_with_structure(text)
        assert [c.content for c in plain] == [c.content for c in structured]

    def test_detection_can_be_disabled(self):
        chunker = StructureAwareChunker(detect_tables=False)
        assert chunker.detect_structure("a | b") == {}
