"""Text chunking for note embeddings.

Splits note text into bounded, overlapping character windows whose right edge
prefers to land on a line break. All chunking is deterministic: same input +
config -> same chunks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

# A window only snaps back to a line break if it keeps at least this share of chunk_size
MIN_SNAP_FRACTION = 0.6

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for text chunking.

    Attributes:
        chunk_size: Window size in characters
        overlap: Characters shared by consecutive windows (clamped below chunk_size)
        max_chunks: Hard cap on chunks produced for one text
    """

    chunk_size: int = 1200
    overlap: int = 200
    max_chunks: int = 60

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.overlap < 0:
            raise ValueError(f"overlap must be non-negative, got {self.overlap}")
        if self.max_chunks <= 0:
            raise ValueError(f"max_chunks must be positive, got {self.max_chunks}")


class Chunker(Protocol):
    """Protocol for text chunking implementations."""

    def chunk(self, text: str) -> list[str]:
        """Split text into ordered, non-empty segments."""
        ...


class LineAwareChunker:
    """Character-window chunker that snaps boundaries to line breaks."""

    def __init__(self, config: ChunkingConfig):
        self.config = config

    def chunk(self, text: str) -> list[str]:
        """Split text into overlapping chunks.

        Args:
            text: Input text to chunk

        Returns:
            Ordered list of trimmed, non-empty segments (empty for blank input)
        """
        return chunk_text(
            text,
            chunk_size=self.config.chunk_size,
            overlap=self.config.overlap,
            max_chunks=self.config.max_chunks,
        )


def chunk_text(text: str, chunk_size: int, overlap: int, max_chunks: int) -> list[str]:
    """Split ``text`` into at most ``max_chunks`` overlapping windows.

    Windows are ``chunk_size`` characters. When a window ends before the text
    does, its right edge moves back to the nearest newline, unless that would
    leave the window at 60% of ``chunk_size`` or less. The next window starts
    ``overlap`` characters before the previous edge, and always at least one
    character further on.

    Example:
        >>> chunk_text("Eggs\\nMilk\\nFlour", chunk_size=1200, overlap=200, max_chunks=60)
        ['Eggs\\nMilk\\nFlour']
    """
    normalized = text.replace("\r\n", "\n").strip()
    if not normalized:
        return []

    effective_overlap = min(max(0, overlap), max(0, chunk_size - 1))
    length = len(normalized)
    min_break = int(chunk_size * MIN_SNAP_FRACTION)
    chunks: list[str] = []

    start = 0
    while start < length and len(chunks) < max_chunks:
        end = min(length, start + chunk_size)
        if end < length:
            # rfind's end bound is exclusive; include the character at ``end``
            break_at = normalized.rfind("\n", 0, end + 1)
            if break_at > start + min_break:
                end = break_at

        segment = normalized[start:end].strip()
        if segment:
            chunks.append(segment)

        if end >= length:
            break
        start = max(start + 1, end - effective_overlap)

    return chunks


def build_preview(text: str, max_chars: int) -> str:
    """Collapse whitespace and truncate to ``max_chars`` with an ellipsis."""
    collapsed = _WHITESPACE.sub(" ", text).strip()
    if len(collapsed) <= max_chars:
        return collapsed
    return f"{collapsed[: max(0, max_chars - 1)]}…"
