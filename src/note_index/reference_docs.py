"""Read-only search over the bundled, int8-quantized reference documentation.

The bundle is a gzipped SQLite database with a single ``chunks`` table:

    id TEXT, note_id TEXT, note_title TEXT, chunk_index INTEGER,
    content TEXT, embedding BLOB, embedding_scale REAL

Each embedding byte ``b`` decodes to ``((b - 128) / 127) * embedding_scale``.
The bundle is decompressed once to a cache file, refreshed whenever the
bundle is newer, and opened read-only.
"""

from __future__ import annotations

import gzip
import os
import shutil
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from filelock import FileLock
from loguru import logger

from note_index.errors import ReferenceDocsUnavailableError
from note_index.models import ReferenceDocChunk, ReferenceDocMatch
from note_index.similarity import cosine_similarity

PREVIEW_MAX_CHARS = 300
SCORE_DECIMALS = 4
LOCK_TIMEOUT_SECONDS = 30

CHUNKS_SCHEMA = """
CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    note_id TEXT NOT NULL,
    note_title TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    content TEXT NOT NULL,
    embedding BLOB NOT NULL,
    embedding_scale REAL NOT NULL
)
"""


def dequantize_int8(blob: bytes, scale: float) -> np.ndarray:
    """Decode an offset-128 int8 blob into float32 values.

    Example:
        >>> dequantize_int8(bytes([128, 255, 1]), 2.0).tolist()
        [0.0, 2.0, -2.0]
    """
    raw = np.frombuffer(bytes(blob), dtype=np.uint8).astype(np.float32)
    return ((raw - 128.0) / 127.0) * np.float32(scale)


def quantize_int8(vector: Sequence[float]) -> tuple[bytes, float]:
    """Encode a vector as offset-128 bytes plus its scale (max absolute value).

    Bytes fall in 1..255, so ``dequantize_int8`` recovers each component to
    within ``scale / 254``.
    """
    values = np.asarray(vector, dtype=np.float64)
    scale = float(np.max(np.abs(values))) if values.size else 0.0
    if scale == 0.0:
        return bytes([128] * values.size), 0.0
    quantized = np.clip(np.rint(values / scale * 127.0) + 128.0, 1, 255).astype(np.uint8)
    return quantized.tobytes(), scale


@dataclass(frozen=True)
class ReferenceChunk:
    note_title: str
    chunk_index: int
    content: str
    vector: np.ndarray


@dataclass(frozen=True)
class BundleEntry:
    """One chunk to be written into a reference bundle."""

    note_id: str
    note_title: str
    chunk_index: int
    content: str
    vector: Sequence[float]


def write_bundle(entries: Sequence[BundleEntry], bundle_path: Path) -> int:
    """Quantize ``entries`` into a fresh SQLite database and gzip it to ``bundle_path``.

    Returns:
        Number of chunks written
    """
    bundle_path = Path(bundle_path)
    bundle_path.parent.mkdir(parents=True, exist_ok=True)
    db_path = bundle_path.with_name(f"{bundle_path.name}.build.db")
    db_path.unlink(missing_ok=True)

    conn = sqlite3.connect(str(db_path))
    try:
        with conn:
            conn.execute(CHUNKS_SCHEMA)
            for entry in entries:
                blob, scale = quantize_int8(entry.vector)
                conn.execute(
                    "INSERT INTO chunks VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        f"{entry.note_id}:{entry.chunk_index}",
                        entry.note_id,
                        entry.note_title,
                        entry.chunk_index,
                        entry.content,
                        blob,
                        scale,
                    ),
                )
    finally:
        conn.close()

    with open(db_path, "rb") as src, gzip.open(bundle_path, "wb") as dst:
        shutil.copyfileobj(src, dst)
    db_path.unlink()
    logger.info(f"Wrote {len(entries)} reference chunks to {bundle_path}")
    return len(entries)


def _preview(content: str) -> str:
    if len(content) <= PREVIEW_MAX_CHARS:
        return content
    return f"{content[: PREVIEW_MAX_CHARS - 3]}..."


def _to_match(chunk: ReferenceChunk, score: float, include_content: bool) -> ReferenceDocMatch:
    return ReferenceDocMatch(
        score=round(score, SCORE_DECIMALS),
        document_title=chunk.note_title,
        chunk_index=chunk.chunk_index,
        preview=_preview(chunk.content),
        content=chunk.content if include_content else None,
    )


class ReferenceDocsIndex:
    """Lazily decompressed, cached reference doc index."""

    def __init__(self, bundle_path: Path, cache_path: Path):
        """
        Args:
            bundle_path: Gzipped SQLite bundle shipped with the package
            cache_path: Where the decompressed database is kept
        """
        self.bundle_path = Path(bundle_path)
        self.cache_path = Path(cache_path)
        self._conn: sqlite3.Connection | None = None
        self._chunks: list[ReferenceChunk] | None = None

    def _ensure_cache(self) -> None:
        if not self.bundle_path.exists():
            raise ReferenceDocsUnavailableError(
                f"Reference docs database not found at {self.bundle_path}. "
                "The bundled docs may be missing from the installation."
            )

        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = self.cache_path.with_name(f".{self.cache_path.name}.lock")
        with FileLock(lock_path, timeout=LOCK_TIMEOUT_SECONDS):
            if self.cache_path.exists() and (
                self.cache_path.stat().st_mtime >= self.bundle_path.stat().st_mtime
            ):
                return
            tmp_path = self.cache_path.with_name(f"{self.cache_path.name}.tmp")
            with gzip.open(self.bundle_path, "rb") as src, open(tmp_path, "wb") as dst:
                shutil.copyfileobj(src, dst)
            os.replace(tmp_path, self.cache_path)
            logger.info(f"Decompressed reference docs to {self.cache_path}")

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self._ensure_cache()
            conn = sqlite3.connect(f"{self.cache_path.as_uri()}?mode=ro", uri=True)
            conn.row_factory = sqlite3.Row
            self._conn = conn
        return self._conn

    def chunks(self) -> list[ReferenceChunk]:
        """All chunks with dequantized vectors, loaded once per instance."""
        if self._chunks is None:
            rows = self._connect().execute(
                "SELECT note_title, chunk_index, content, embedding, embedding_scale FROM chunks"
            ).fetchall()
            self._chunks = [
                ReferenceChunk(
                    note_title=row["note_title"],
                    chunk_index=row["chunk_index"],
                    content=row["content"],
                    vector=dequantize_int8(row["embedding"], row["embedding_scale"]),
                )
                for row in rows
            ]
            logger.debug(f"Loaded {len(self._chunks)} reference doc chunks")
        return self._chunks

    def search(
        self, query_vector: Sequence[float], limit: int = 5, include_content: bool = False
    ) -> list[ReferenceDocMatch]:
        """Rank chunks by cosine similarity, keeping positive scores only."""
        scored = [(chunk, cosine_similarity(query_vector, chunk.vector)) for chunk in self.chunks()]
        ranked = sorted(
            ((chunk, score) for chunk, score in scored if score > 0),
            key=lambda item: item[1],
            reverse=True,
        )
        return [_to_match(chunk, score, include_content) for chunk, score in ranked[:limit]]

    def text_search(
        self, query: str, limit: int = 5, include_content: bool = False
    ) -> list[ReferenceDocMatch]:
        """Lexical fallback: each query term found scores 1, plus 0.5 in the title.

        Scores are normalized by ``terms * 1.5`` so a query fully matched in
        titles scores 1.0.
        """
        terms = query.lower().split()
        if not terms:
            return []

        scored: list[tuple[ReferenceChunk, float]] = []
        for chunk in self.chunks():
            title = chunk.note_title.lower()
            haystack = f"{title} {chunk.content.lower()}"
            score = 0.0
            for term in terms:
                if term in haystack:
                    score += 1.0
                    if term in title:
                        score += 0.5
            score /= len(terms) * 1.5
            if score > 0:
                scored.append((chunk, score))

        ranked = sorted(scored, key=lambda item: item[1], reverse=True)
        return [_to_match(chunk, score, include_content) for chunk, score in ranked[:limit]]

    def get_chunk(self, title: str, index: int) -> ReferenceDocChunk | None:
        """Exact lookup by document title and chunk index."""
        same_title = [chunk for chunk in self.chunks() if chunk.note_title == title]
        for chunk in same_title:
            if chunk.chunk_index == index:
                return ReferenceDocChunk(
                    document_title=chunk.note_title,
                    chunk_index=chunk.chunk_index,
                    content=chunk.content,
                    total_chunks=len(same_title),
                )
        return None

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._chunks = None
