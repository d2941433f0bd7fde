"""
Language-aware token estimation.

No tokenizer dependency: the estimate only has to be deterministic and
consistent with the chunker, which uses the same function to decide when
to close a chunk.

- Latin text: words + punctuation marks
- Text with CJK: the largest of the Latin estimate, one token per three
  characters, and 0.6 tokens per CJK character plus the Latin estimate of
  the remainder

Taking the maximum keeps the estimate monotone under concatenation:
estimate_tokens(a + b) >= estimate_tokens(a) for any a, b.
"""

import math
import re

# Han ideographs (incl. extension A and compatibility block), kana, hangul syllables
CJK_PATTERN = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff]")

PUNCTUATION = ".,;:!?"
CHARS_PER_TOKEN = 3
MIXED_CJK_WEIGHT = 0.6


def count_cjk(text: str) -> int:
    """Number of CJK characters in text."""
    return len(CJK_PATTERN.findall(text))


def _latin_tokens(text: str) -> int:
    punctuation = sum(text.count(p) for p in PUNCTUATION)
    return len(text.split()) + punctuation


def estimate_tokens(text: str) -> int:
    """
    Estimate the number of LLM tokens in text.

    Args:
        text: Any string (empty returns 0)

    Returns:
        Non-negative token estimate
    """
    if not text:
        return 0

    latin = _latin_tokens(text)
    cjk = count_cjk(text)
    if not cjk:
        return latin

    by_chars = (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN
    remainder = CJK_PATTERN.sub(" ", text)
    mixed = math.ceil(cjk * MIXED_CJK_WEIGHT) + _latin_tokens(remainder)

    return max(latin, by_chars, mixed)


class TokenCounter:
    """Callable wrapper around estimate_tokens, injectable where a counter is expected."""

    def count(self, text: str) -> int:
        return estimate_tokens(text)

    __call__ = count
