"""
Word-Window Chunker
--------------------
Splits a document into overlapping windows of whitespace-delimited words.

  - Documents at or below `chunk_size` words are kept whole: the original
    text (whitespace untouched) becomes the single chunk.
  - Longer documents are cut into windows of `chunk_size` words that advance
    by `chunk_size - overlap` words.  The last window may be shorter but
    always ends on the final word of the document.

The stride is clamped to at least one word, so `overlap >= chunk_size`
degrades to a one-word slide instead of looping forever.
"""
from __future__ import annotations

import math

from loguru import logger

from docqa.errors import InputError


# ── Constants ─────────────────────────────────────────────────────────────────

DEFAULT_CHUNK_SIZE = 500   # words per chunk
DEFAULT_OVERLAP = 50       # words shared by consecutive chunks


def split_words(text: str) -> list[str]:
    """Whitespace tokenisation; runs of spaces/newlines never yield empty words."""
    return text.split()


def window_stride(chunk_size: int, overlap: int) -> int:
    return max(1, chunk_size - overlap)


def max_windows(word_count: int, chunk_size: int, overlap: int) -> int:
    """Upper bound on the number of windows chunk_text() can emit."""
    return math.ceil(word_count / window_stride(chunk_size, overlap))


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[str]:
    """
    Split `text` into overlapping word windows.

    Args:
        text: Raw document text.
        chunk_size: Words per window (must be >= 1).
        overlap: Words repeated at the start of the next window (>= 0).

    Returns:
        Ordered list of chunk strings; empty when the text has no words.
    """
    if chunk_size < 1:
        raise InputError(f"chunk_size must be >= 1, got {chunk_size}")
    if overlap < 0:
        raise InputError(f"overlap must be >= 0, got {overlap}")

    words = split_words(text)
    if not words:
        return []
    if len(words) <= chunk_size:
        return [text]

    stride = window_stride(chunk_size, overlap)
    chunks: list[str] = []
    start = 0

    while True:
        chunks.append(" ".join(words[start: start + chunk_size]))
        if start + chunk_size >= len(words):
            break
        start += stride

    logger.debug(
        f"[Chunker] {len(words)} words | size={chunk_size} overlap={overlap} "
        f"-> {len(chunks)} chunk(s)"
    )
    return chunks
