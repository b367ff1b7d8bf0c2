"""Word-boundary text chunking for retrieval indexing."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List

from . import config

# Roughly ten characters per word when converting a character overlap into
# a count of trailing words.
CHARS_PER_OVERLAP_WORD = 10


@dataclass(frozen=True)
class Chunk:
    index: int
    content: str

    @property
    def content_length(self) -> int:
        return len(self.content)


def _seed_buffer(previous: str, word: str, overlap_words: int, size: int) -> str:
    """Return the trailing overlap of ``previous`` followed by ``word``.

    Leading overlap words are dropped until the seed leaves room for ``word``
    so a seeded buffer never starts out over ``size``.
    """

    tail = previous.split()[-overlap_words:] if overlap_words > 0 else []
    while tail and len(" ".join(tail + [word])) > size:
        tail.pop(0)
    return " ".join(tail + [word])


def split_text(
    text: str,
    size: int = config.CHUNK_SIZE,
    overlap: int = config.CHUNK_OVERLAP,
) -> List[Chunk]:
    """Split ``text`` into overlapping chunks of at most ``size`` characters.

    Whole words are accumulated until the next word would overflow ``size``.
    The buffer is then emitted and a new one is seeded with the last
    ``overlap // 10`` words of the emitted chunk plus the word that triggered
    the split. A single word longer than ``size`` is emitted unsplit.
    """

    if size <= 0:
        raise ValueError("chunk size must be positive")

    overlap_words = max(0, overlap) // CHARS_PER_OVERLAP_WORD
    contents: list[str] = []
    buffer = ""

    for word in text.split():
        candidate = f"{buffer} {word}" if buffer else word
        if len(candidate) > size and buffer:
            contents.append(buffer)
            buffer = _seed_buffer(buffer, word, overlap_words, size)
        else:
            buffer = candidate

    if buffer.strip():
        contents.append(buffer)

    return [Chunk(index=i, content=content) for i, content in enumerate(contents)]


__all__ = ["Chunk", "split_text"]
