"""SQLite-backed content-addressed store for note embeddings.

Three tables:

- ``notes``: one row per indexed note, keyed by note key, carrying the
  content hash that decides whether a note needs re-embedding
- ``chunks``: embedded chunks, unique on (note_key, chunk_index), cascade
  deleted with their note
- ``metadata``: informational key/value pairs (last sync time, provider, model)

The file is owned exclusively by this process. Every multi-statement change
runs inside one transaction, so a crash can never leave a note whose chunks
disagree with its content hash.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from note_index.models import ChunkRecord, NoteRecord, ResetPreview, ResetResult
from note_index.similarity import encode_vector

SCHEMA = """
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notes (
    note_key TEXT PRIMARY KEY,
    note_id TEXT NOT NULL,
    filename TEXT NOT NULL,
    title TEXT NOT NULL,
    source TEXT NOT NULL,
    space_id TEXT,
    folder TEXT,
    type TEXT NOT NULL,
    modified_at TEXT,
    content_hash TEXT NOT NULL,
    chunk_count INTEGER NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    note_key TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    chunk_preview TEXT NOT NULL,
    chunk_hash TEXT NOT NULL,
    embedding_json TEXT NOT NULL,
    dim INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE(note_key, chunk_index),
    FOREIGN KEY(note_key) REFERENCES notes(note_key) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_chunks_note_key ON chunks(note_key);
CREATE INDEX IF NOT EXISTS idx_notes_space_id ON notes(space_id);
CREATE INDEX IF NOT EXISTS idx_notes_source ON notes(source);
CREATE INDEX IF NOT EXISTS idx_notes_type ON notes(type);
CREATE INDEX IF NOT EXISTS idx_notes_updated_at ON notes(updated_at);
"""

META_LAST_SYNC_AT = "lastSyncAt"
META_LAST_SYNC_PROVIDER = "lastSyncProvider"
META_LAST_SYNC_MODEL = "lastSyncModel"


@dataclass(frozen=True)
class StoredChunk:
    """A chunk row joined with its parent note, as scanned for retrieval."""

    note_key: str
    chunk_index: int
    chunk_text: str
    chunk_preview: str
    embedding_json: str
    note_id: str
    filename: str
    title: str
    source: str
    space_id: str | None
    folder: str | None
    type: str
    modified_at: str | None


class EmbeddingsStore:
    """Persistent note/chunk tables with atomic per-note replacement."""

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to the SQLite database file (parents are created)
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")
        with conn:
            conn.executescript(SCHEMA)
        self._conn = conn
        logger.debug(f"Opened embeddings store at {self.db_path}")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"Embeddings store {self.db_path} is closed")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on any exception."""
        with self.conn as conn:
            yield conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> EmbeddingsStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    def set_metadata(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO metadata (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    def get_metadata(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def content_hashes(self) -> dict[str, str]:
        """Map every stored note key to its content hash."""
        rows = self.conn.execute("SELECT note_key, content_hash FROM notes").fetchall()
        return {row["note_key"]: row["content_hash"] for row in rows}

    def note_keys(self, space: str | None = None) -> list[str]:
        """Stored note keys, optionally restricted to one space."""
        where, params = _scope_where(space)
        rows = self.conn.execute(f"SELECT note_key FROM notes {where}", params).fetchall()
        return [row["note_key"] for row in rows]

    def get_note(self, note_key: str) -> NoteRecord | None:
        row = self.conn.execute("SELECT * FROM notes WHERE note_key = ?", (note_key,)).fetchone()
        return NoteRecord.model_validate(dict(row)) if row else None

    def get_chunks(self, note_key: str) -> list[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM chunks WHERE note_key = ? ORDER BY chunk_index", (note_key,)
        ).fetchall()

    def counts(self, space: str | None = None) -> ResetPreview:
        """Note and chunk counts for a scope."""
        where, params = _scope_where(space)
        note_count = self.conn.execute(
            f"SELECT COUNT(*) AS count FROM notes {where}", params
        ).fetchone()["count"]
        chunk_where, chunk_params = _scope_where(space, column="n.space_id")
        chunk_count = self.conn.execute(
            f"""
            SELECT COUNT(*) AS count
            FROM chunks c
            JOIN notes n ON n.note_key = c.note_key
            {chunk_where}
            """,
            chunk_params,
        ).fetchone()["count"]
        return ResetPreview(note_count=note_count, chunk_count=chunk_count)

    def last_indexed_at(self, space: str | None = None) -> str | None:
        where, params = _scope_where(space)
        row = self.conn.execute(
            f"SELECT MAX(updated_at) AS last_updated FROM notes {where}", params
        ).fetchone()
        return row["last_updated"]

    def scan_chunks(
        self,
        *,
        space: str | None = None,
        source: str | None = None,
        types: Sequence[str] | None = None,
        limit: int,
    ) -> list[StoredChunk]:
        """Load up to ``limit`` chunks, freshest notes first.

        Ordering is ``notes.updated_at DESC, note_key, chunk_index`` so ties
        in score later resolve deterministically toward recent content.
        """
        space = normalize_space(space)
        clauses: list[str] = []
        params: list[object] = []
        if space:
            clauses.append("n.space_id = ?")
            params.append(space)
        if source:
            clauses.append("n.source = ?")
            params.append(source)
        if types:
            placeholders = ",".join("?" for _ in types)
            clauses.append(f"n.type IN ({placeholders})")
            params.extend(types)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        rows = self.conn.execute(
            f"""
            SELECT
                c.note_key, c.chunk_index, c.chunk_text, c.chunk_preview, c.embedding_json,
                n.note_id, n.filename, n.title, n.source, n.space_id, n.folder, n.type,
                n.modified_at
            FROM chunks c
            JOIN notes n ON n.note_key = c.note_key
            {where}
            ORDER BY n.updated_at DESC, c.note_key ASC, c.chunk_index ASC
            LIMIT ?
            """,
            [*params, limit],
        ).fetchall()
        return [StoredChunk(**dict(row)) for row in rows]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def replace_note(self, note: NoteRecord, chunks: Sequence[ChunkRecord]) -> None:
        """Atomically swap a note's chunks and upsert its record.

        Old chunks are deleted, the note row is upserted, then the new chunks
        are inserted, all in one transaction.
        """
        with self.transaction() as conn:
            conn.execute("DELETE FROM chunks WHERE note_key = ?", (note.note_key,))
            conn.execute(
                """
                INSERT INTO notes (
                    note_key, note_id, filename, title, source, space_id, folder, type,
                    modified_at, content_hash, chunk_count, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(note_key) DO UPDATE SET
                    note_id = excluded.note_id,
                    filename = excluded.filename,
                    title = excluded.title,
                    source = excluded.source,
                    space_id = excluded.space_id,
                    folder = excluded.folder,
                    type = excluded.type,
                    modified_at = excluded.modified_at,
                    content_hash = excluded.content_hash,
                    chunk_count = excluded.chunk_count,
                    updated_at = excluded.updated_at
                """,
                (
                    note.note_key,
                    note.note_id,
                    note.filename,
                    note.title,
                    note.source,
                    note.space_id,
                    note.folder,
                    note.type,
                    note.modified_at,
                    note.content_hash,
                    note.chunk_count,
                    note.updated_at,
                ),
            )
            conn.executemany(
                """
                INSERT INTO chunks (
                    note_key, chunk_index, chunk_text, chunk_preview, chunk_hash,
                    embedding_json, dim, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.note_key,
                        chunk.chunk_index,
                        chunk.chunk_text,
                        chunk.chunk_preview,
                        chunk.chunk_hash,
                        encode_vector(chunk.vector),
                        chunk.dim,
                        chunk.created_at,
                    )
                    for chunk in chunks
                ],
            )

    def delete_notes(self, note_keys: Iterable[str]) -> tuple[int, int]:
        """Delete notes and their chunks in one transaction.

        Returns:
            (deleted note count, deleted chunk count)
        """
        deleted_notes = 0
        deleted_chunks = 0
        with self.transaction() as conn:
            for key in note_keys:
                chunk_count = conn.execute(
                    "SELECT COUNT(*) AS count FROM chunks WHERE note_key = ?", (key,)
                ).fetchone()["count"]
                conn.execute("DELETE FROM chunks WHERE note_key = ?", (key,))
                cursor = conn.execute("DELETE FROM notes WHERE note_key = ?", (key,))
                if cursor.rowcount > 0:
                    deleted_notes += 1
                    deleted_chunks += chunk_count
        return deleted_notes, deleted_chunks

    def reset(self, space: str | None = None) -> ResetResult:
        """Remove every note (and chunk) in scope; a blank space id means every space."""
        space = normalize_space(space)
        preview = self.counts(space)
        with self.transaction() as conn:
            if space is None:
                conn.execute("DELETE FROM chunks")
                conn.execute("DELETE FROM notes")
            else:
                conn.execute(
                    "DELETE FROM chunks WHERE note_key IN "
                    "(SELECT note_key FROM notes WHERE space_id = ?)",
                    (space,),
                )
                conn.execute("DELETE FROM notes WHERE space_id = ?", (space,))
        if space is None:
            self.set_metadata(META_LAST_SYNC_AT, "")
        logger.info(
            f"Reset embeddings index ({space or 'all'}): "
            f"{preview.note_count} notes, {preview.chunk_count} chunks"
        )
        return ResetResult(
            removed_notes=preview.note_count, removed_chunks=preview.chunk_count, space=space
        )


def normalize_space(space: str | None) -> str | None:
    """Strip a space id; blank means every space."""
    if space is None:
        return None
    return space.strip() or None


def _scope_where(space: str | None, column: str = "space_id") -> tuple[str, list[object]]:
    space = normalize_space(space)
    if space:
        return f"WHERE {column} = ?", [space]
    return "", []
