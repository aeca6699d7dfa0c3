"""Split AI replies into chat-sized outbound messages."""

from __future__ import annotations

import re

CHUNK_SEPARATOR = "-----"

# Terminal punctuation followed by whitespace and a capital letter, or end of text
_SENTENCE_END = re.compile(r"[.!?](?:\s+(?=[A-Z])|$)")


def count_words(text: str) -> int:
    """Number of whitespace-separated words."""
    return len(text.split())


def chunk_message(text: str, max_length: int, max_chunks: int | None = None) -> list[str]:
    """Split `text` into chunks no longer than `max_length` characters.

    The model marks intended breaks with CHUNK_SEPARATOR. Pieces that are still
    too long are split at sentence boundaries, then at word boundaries. A word
    longer than `max_length` becomes its own chunk, cut at `max_length`.

    Args:
        text: Reply text.
        max_length: Maximum characters per chunk (must be positive).
        max_chunks: Optional cap on the number of chunks returned.

    Returns:
        Ordered list of non-empty chunks. Empty when `text` has no content.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")

    chunks: list[str] = []
    for piece in text.split(CHUNK_SEPARATOR):
        piece = piece.strip()
        if not piece:
            continue
        if len(piece) <= max_length:
            chunks.append(piece)
        else:
            chunks.extend(_split_long(piece, max_length))

    if max_chunks is not None and max_chunks > 0:
        chunks = chunks[:max_chunks]
    return chunks


def split_sentences(text: str) -> list[str]:
    sentences = []
    last_end = 0
    for match in _SENTENCE_END.finditer(text):
        sentence = text[last_end:match.end()].strip()
        if sentence:
            sentences.append(sentence)
        last_end = match.end()
    remaining = text[last_end:].strip()
    if remaining:
        sentences.append(remaining)
    return sentences


def _accumulate(parts: list[str], max_length: int, overflow) -> list[str]:
    """Greedily join `parts` with spaces; parts over the limit go to `overflow`."""
    chunks: list[str] = []
    current = ""
    for part in parts:
        candidate = f"{current} {part}" if current else part
        if len(candidate) <= max_length:
            current = candidate
            continue
        if current:
            chunks.append(current)
            current = ""
        if len(part) > max_length:
            chunks.extend(overflow(part, max_length))
        else:
            current = part
    if current:
        chunks.append(current)
    return chunks


def _split_long(text: str, max_length: int) -> list[str]:
    return _accumulate(split_sentences(text), max_length, _split_words)


def _split_words(text: str, max_length: int) -> list[str]:
    return _accumulate(text.split(), max_length, _split_word)


def _split_word(word: str, max_length: int) -> list[str]:
    return [word[i:i + max_length] for i in range(0, len(word), max_length)]
