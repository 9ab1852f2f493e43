"""Sentence chunking for speech synthesis."""

import re
from typing import List

# Shorter chunks sound choppy when played back to back
MIN_CHUNK_LENGTH = 20
DEFAULT_MAX_CHUNK_LENGTH = 500

_SENTENCE = re.compile(r"[^.!?]+[.!?]+\s*")


def split_long_sentence(sentence: str, max_length: int = DEFAULT_MAX_CHUNK_LENGTH) -> List[str]:
    """
    Split a sentence that is too long for one synthesis request.

    Break points, in order of preference: the last comma, semicolon or " - "
    past 70% of the limit, then the last space, then a hard cut at the limit.

    Args:
        sentence: Sentence to split
        max_length: Maximum characters per chunk

    Returns:
        Chunks of at most max_length characters
    """
    if len(sentence) <= max_length:
        return [sentence]

    chunks: List[str] = []
    remaining = sentence

    while len(remaining) > max_length:
        window = remaining[:max_length]
        split_at = max(window.rfind(","), window.rfind(";"), window.rfind(" - "))

        if split_at == -1 or split_at < max_length * 0.7:
            split_at = window.rfind(" ")

        if split_at <= 0:
            chunk, remaining = window, remaining[max_length:]
        else:
            chunk, remaining = remaining[:split_at + 1], remaining[split_at + 1:]

        chunk = chunk.strip()
        if chunk:
            chunks.append(chunk)
        remaining = remaining.strip()

    if remaining:
        chunks.append(remaining)

    return chunks


def split_into_sentences(text: str) -> List[str]:
    """
    Split text at terminal punctuation for batch synthesis.

    Fragments shorter than MIN_CHUNK_LENGTH are merged with the following
    sentence; a short trailing fragment joins the last chunk.

    Args:
        text: Full audio text of a response

    Returns:
        Sentence chunks in reading order
    """
    if not text or not text.strip():
        return []

    sentences = [s.strip() for s in _SENTENCE.findall(text)]
    tail = _SENTENCE.sub("", text).strip()
    if tail:
        sentences.append(tail)
    sentences = [s for s in sentences if s]

    if not sentences:
        return [text.strip()]

    merged: List[str] = []
    buffer = ""
    for sentence in sentences:
        buffer = f"{buffer} {sentence}" if buffer else sentence
        if len(buffer) >= MIN_CHUNK_LENGTH:
            merged.append(buffer)
            buffer = ""

    if buffer:
        if merged:
            merged[-1] = f"{merged[-1]} {buffer}"
        else:
            merged.append(buffer)

    return merged
