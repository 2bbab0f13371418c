"""Token counting and keyword term extraction.

Two unrelated notions of "token" live here:

- :class:`Tokenizer` implementations count model-agnostic token units and are
  used by the chunker for size budgeting. They are acquired per chunking call
  through :func:`acquire_tokenizer` and released on every exit path.
- :func:`terms` is the lexical tokenizer shared by the keyword scorer, the MMR
  similarity and the fallback embedding. It is a pure function.
"""
from __future__ import annotations

import re
import zlib
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Protocol

_TERM_PATTERN = re.compile(r"[a-z0-9]+")
MIN_TERM_LENGTH = 3


class Tokenizer(Protocol):
    """Minimal interface for token-based sizing."""

    def encode(self, text: str) -> list[int]:
        """Return token ids for ``text``."""

    def count(self, text: str) -> int:
        """Return the number of tokens in ``text``."""

    def close(self) -> None:
        """Release any encoder handle held by the tokenizer."""


TokenizerFactory = Callable[[], Tokenizer]


class WhitespaceTokenizer:
    """Dependency-free tokenizer that treats whitespace-separated words as tokens."""

    def encode(self, text: str) -> list[int]:
        return [zlib.crc32(word.encode("utf-8")) for word in text.split()]

    def count(self, text: str) -> int:
        return len(text.split())

    def close(self) -> None:
        return None


class TiktokenTokenizer:
    """Exact token counts backed by a ``tiktoken`` encoding."""

    def __init__(self, encoding: Any, encoding_name: str = "cl100k_base"):
        self.encoding_name = encoding_name
        self._enc = encoding

    @classmethod
    def from_encoding_name(cls, encoding_name: str = "cl100k_base") -> TiktokenTokenizer:
        import tiktoken

        return cls(tiktoken.get_encoding(encoding_name), encoding_name=encoding_name)

    def encode(self, text: str) -> list[int]:
        if self._enc is None:
            raise RuntimeError("tokenizer has been closed")
        if not text:
            return []
        return self._enc.encode(text)

    def count(self, text: str) -> int:
        return len(self.encode(text))

    def close(self) -> None:
        self._enc = None


def build_tokenizer_factory(name: str = "tiktoken", encoding_name: str = "cl100k_base") -> TokenizerFactory:
    """Return a factory producing a fresh tokenizer of the named kind.

    Raises:
        ValueError: If ``name`` is not a known tokenizer kind.
    """
    if name == "tiktoken":
        return lambda: TiktokenTokenizer.from_encoding_name(encoding_name)
    if name == "whitespace":
        return WhitespaceTokenizer
    raise ValueError(f"Unknown tokenizer {name!r}. Supported: 'tiktoken', 'whitespace'")


@contextmanager
def acquire_tokenizer(factory: TokenizerFactory) -> Iterator[Tokenizer]:
    """Yield a tokenizer from ``factory`` and always close it afterwards."""
    tokenizer = factory()
    try:
        yield tokenizer
    finally:
        tokenizer.close()


def terms(text: str) -> list[str]:
    """Lowercase, strip punctuation and drop tokens shorter than three characters."""
    return [token for token in _TERM_PATTERN.findall(text.lower()) if len(token) >= MIN_TERM_LENGTH]


def unique_terms(text: str) -> list[str]:
    """Distinct :func:`terms` of ``text`` in first-seen order."""
    return list(dict.fromkeys(terms(text)))
