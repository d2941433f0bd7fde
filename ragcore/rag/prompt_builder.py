"""
Prompt and citation assembly for retrieved evidence.
"""

from dataclasses import dataclass
from typing import Optional

from ..retrieval.search_result import SearchResult

DEFAULT_PROMPT_TEMPLATE = """Answer the user's question using the reference information below. If the references do not contain the answer, say that you cannot answer from the provided information.

=== References ===
{context}

=== Question ===
{question}

Answer from the references and cite the sources you use (for example: [1])."""

DEFAULT_NO_CONTEXT_TEMPLATE = """No reference information was found for this question. Answer from general knowledge and say that no sources were available.

=== Question ===
{question}"""


@dataclass
class Citation:
    """A citation to a source chunk."""
    id: str
    source_name: str
    content: str  # Excerpt
    relevance: float
    page: Optional[int] = None
    chunk_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_name": self.source_name,
            "page": self.page,
            "content": self.content,
            "relevance": self.relevance,
            "chunk_id": self.chunk_id,
        }


def source_name(result: SearchResult, position: int) -> str:
    """Document title if the chunk carries one, else "Source {position}"."""
    title = result.metadata.get("title")
    return title if isinstance(title, str) and title else f"Source {position}"


def _page(metadata: dict) -> Optional[int]:
    page = metadata.get("page", metadata.get("page_num"))
    return page if isinstance(page, int) and not isinstance(page, bool) else None


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_citations(results: list[SearchResult], excerpt_length: int = 100) -> list[Citation]:
    """One citation per result, in result order."""
    return [
        Citation(
            id=f"citation-{i}",
            source_name=source_name(result, i),
            page=_page(result.metadata),
            content=truncate(result.content, excerpt_length),
            relevance=result.score,
            chunk_id=result.chunk_id,
        )
        for i, result in enumerate(results, 1)
    ]


def build_context(results: list[SearchResult], max_context_length: int) -> str:
    """
    Numbered evidence blocks separated by blank lines.

    The character budget is split evenly, so each block's content is cut
    to max_context_length // len(results) characters.
    """
    if not results:
        return ""
    per_result = max(max_context_length // len(results), 1)

    blocks = []
    for i, result in enumerate(results, 1):
        blocks.append(
            f"[{i}] {truncate(result.content, per_result)}\n"
            f"Source: {source_name(result, i)}, relevance: {result.score:.2f}"
        )
    return "\n\n".join(blocks)


def render_prompt(template: str, question: str, context: str = "") -> str:
    return template.format(context=context, question=question)
