"""Tokenizer capability used for all token budgeting.

The default is tiktoken's ``cl100k_base`` encoding (GPT-4 family). Any
object with ``encode``/``decode`` can be passed in its place.
"""

from __future__ import annotations

import functools
import logging
from typing import Protocol

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "cl100k_base"

# Rough chars-per-token ratio, used only when decoding fails
_CHARS_PER_TOKEN = 4


class Tokenizer(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


class TiktokenTokenizer:
    """Lazily loads a tiktoken encoding on first use."""

    def __init__(self, encoding_name: str = DEFAULT_ENCODING) -> None:
        self.encoding_name = encoding_name

    @functools.cached_property
    def _encoding(self) -> tiktoken.Encoding:
        return tiktoken.get_encoding(self.encoding_name)

    def encode(self, text: str) -> list[int]:
        # Special-token text in user content is encoded as plain text
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, tokens: list[int]) -> str:
        return self._encoding.decode(tokens)


@functools.lru_cache(maxsize=1)
def default_tokenizer() -> TiktokenTokenizer:
    return TiktokenTokenizer()


def count_tokens(text: str, tokenizer: Tokenizer | None = None) -> int:
    """Return the number of tokens in *text*."""
    if not text:
        return 0
    return len((tokenizer or default_tokenizer()).encode(text))


def truncate_to_token_limit(text: str, max_tokens: int, tokenizer: Tokenizer | None = None) -> str:
    """Return the longest token-boundary prefix of *text* within *max_tokens*.

    Falls back to a character cut (~4 chars per token) if decoding fails.
    """
    if max_tokens <= 0:
        return ""
    tok = tokenizer or default_tokenizer()
    tokens = tok.encode(text)
    if len(tokens) <= max_tokens:
        return text
    try:
        return tok.decode(tokens[:max_tokens])
    except (ValueError, KeyError) as exc:
        logger.debug("Token decode failed (%s); truncating by characters", exc)
        return text[: max_tokens * _CHARS_PER_TOKEN]
