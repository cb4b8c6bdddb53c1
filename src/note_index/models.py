"""Pydantic models for note embeddings data structures.

Everything crossing the backend boundary (note snapshots coming in, records
going to the store, requests from tool handlers, reports going back) is
validated against these schemas. Tool handlers serialize responses with
``model_dump(exclude_none=True)``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class NoteSource(str, Enum):
    """Where a note lives."""

    LOCAL = "local"
    SPACE = "space"


class NoteSnapshot(BaseModel):
    """A note as supplied by the external note repository (read-only).

    Attributes:
        id: Stable identity (space notes) or empty for local notes
        title: Display title
        filename: Relative filename; identity for local notes
        content: Full note text
        type: Classification ("note", "calendar", "trash", ...)
        source: Local file system or a shared space
        space_id: Space/collection the note belongs to
        folder: Containing folder
        modified_at: Last modification time
    """

    id: str = ""
    title: str = ""
    filename: str
    content: str = ""
    type: str = "note"
    source: NoteSource = NoteSource.LOCAL
    space_id: str | None = None
    folder: str | None = None
    modified_at: datetime | None = None


class NoteRecord(BaseModel):
    """Indexed note row; the parent of its chunk records.

    Attributes:
        note_key: Primary key derived from source + identity
        content_hash: SHA-256 of the full note text at last index time
        chunk_count: Number of chunk records stored for the note
        updated_at: When the note was last (re)indexed, ISO 8601
    """

    note_key: str
    note_id: str
    filename: str
    title: str
    source: str
    space_id: str | None = None
    folder: str | None = None
    type: str
    modified_at: str | None = None
    content_hash: str
    chunk_count: int = Field(ge=0)
    updated_at: str


class ChunkRecord(BaseModel):
    """A single embedded chunk of a note.

    Attributes:
        note_key: Parent note key
        chunk_index: Zero-based position within the note
        chunk_text: Full chunk text
        chunk_preview: Whitespace-collapsed, truncated text
        chunk_hash: SHA-256 of ``chunk_text``
        vector: Embedding vector
        created_at: ISO 8601 creation time
    """

    note_key: str
    chunk_index: int = Field(ge=0)
    chunk_text: str = Field(min_length=1)
    chunk_preview: str
    chunk_hash: str
    vector: list[float]
    created_at: str

    @property
    def dim(self) -> int:
        return len(self.vector)


class OperationFailure(BaseModel):
    """Structured failure returned instead of raising (not configured, bad input, ...)."""

    success: Literal[False] = False
    error: str


# -----------------------------------------------------------------------------
# Sync
# -----------------------------------------------------------------------------


class SyncRequest(BaseModel):
    """Parameters for one sync pass.

    Attributes:
        space: Restrict to one space id
        types: Note type allow-list (trash is excluded when unset)
        note_query: Case-insensitive substring filter on title/filename/folder
        limit: Maximum notes scanned in this pass
        offset: Pagination offset into the candidate list
        force_reembed: Re-embed even when the content hash is unchanged
        prune_missing: Delete stored notes missing from a full-scope pass
        batch_size: Texts per embedding request (config default when unset)
        max_chunks_per_note: Chunk cap per note (config default when unset)
    """

    space: str | None = None
    types: list[str] | None = None
    note_query: str | None = None
    limit: int = Field(default=500, ge=1, le=5000)
    offset: int = Field(default=0, ge=0)
    force_reembed: bool = False
    prune_missing: bool = False
    batch_size: int | None = Field(default=None, ge=1, le=64)
    max_chunks_per_note: int | None = Field(default=None, ge=1, le=400)

    @field_validator("space", "note_query")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class SyncReport(BaseModel):
    """Outcome of a sync pass."""

    success: Literal[True] = True
    provider: str
    model: str
    space: str | None = None
    total_candidates: int
    scanned_notes: int
    indexed_notes: int
    unchanged_notes: int
    added_notes: int
    updated_notes: int
    indexed_chunks: int
    pruned_notes: int
    pruned_chunks: int
    offset: int
    limit: int
    has_more: bool
    next_cursor: str | None = None
    warnings: list[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Search
# -----------------------------------------------------------------------------


class SearchRequest(BaseModel):
    """A semantic search query against the live note index.

    Attributes:
        query: Natural language search query (blank is reported as a failure)
        space: Restrict to one space id
        source: Restrict to local or space notes
        types: Note type allow-list
        limit: Maximum number of matches to return
        min_score: Minimum cosine similarity
        include_text: Return full chunk text in addition to the preview
        preview_chars: Preview length (config default when unset)
        max_chunks: Maximum stored chunks scanned before ranking
    """

    query: str
    space: str | None = None
    source: NoteSource | None = None
    types: list[str] | None = None
    limit: int = Field(default=10, ge=1, le=100)
    min_score: float = Field(default=0.2, ge=0.0, le=1.0)
    include_text: bool = False
    preview_chars: int | None = Field(default=None, ge=60, le=1000)
    max_chunks: int = Field(default=8000, ge=1, le=50000)

    @field_validator("space")
    @classmethod
    def _blank_space_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class MatchedNote(BaseModel):
    id: str
    filename: str
    title: str
    source: str
    space_id: str | None = None
    folder: str | None = None
    type: str
    modified_at: str | None = None


class MatchedChunk(BaseModel):
    index: int
    preview: str
    text: str | None = None


class SearchMatch(BaseModel):
    """One ranked search hit."""

    score: float
    note: MatchedNote
    chunk: MatchedChunk


class SearchResponse(BaseModel):
    """Ranked page of matches."""

    success: Literal[True] = True
    query: str
    provider: str
    model: str
    include_text: bool
    min_score: float
    scanned_chunks: int
    count: int
    matches: list[SearchMatch]


# -----------------------------------------------------------------------------
# Status / reset
# -----------------------------------------------------------------------------


class StatusReport(BaseModel):
    """Index status for one scope."""

    success: Literal[True] = True
    enabled: bool
    configured: bool
    provider: str
    model: str
    base_url: str
    db_path: str
    has_api_key: bool = False
    chunk_chars: int | None = None
    chunk_overlap: int | None = None
    preview_chars: int | None = None
    note_count: int = 0
    chunk_count: int = 0
    last_sync_at: str | None = None
    last_indexed_update_at: str | None = None
    warning: str | None = None


class ResetPreview(BaseModel):
    note_count: int
    chunk_count: int


class ResetResult(BaseModel):
    success: Literal[True] = True
    removed_notes: int
    removed_chunks: int
    space: str | None = None


# -----------------------------------------------------------------------------
# Reference docs
# -----------------------------------------------------------------------------


class ReferenceDocMatch(BaseModel):
    """A ranked chunk from the bundled reference documentation."""

    score: float
    document_title: str
    chunk_index: int
    preview: str
    content: str | None = None


class ReferenceSearchResponse(BaseModel):
    """Result of a reference doc search.

    Attributes:
        embedding_source: "vector" (caller supplied), "host", "api", or "text"
    """

    success: Literal[True] = True
    query: str | None = None
    count: int
    embedding_source: Literal["vector", "host", "api", "text"]
    matches: list[ReferenceDocMatch]


class ReferenceDocChunk(BaseModel):
    """Direct lookup result for one reference doc chunk."""

    success: Literal[True] = True
    document_title: str
    chunk_index: int
    content: str
    total_chunks: int
