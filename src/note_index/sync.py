"""Incremental sync of note snapshots into the embeddings store.

A pass lists candidate notes, skips those whose content hash is unchanged,
re-chunks and re-embeds the rest, and swaps each note's chunks atomically.
Stored notes missing from the repository are pruned only on a full-scope
pass; anything narrower could mistake filtered-out notes for deleted ones.
"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime

from loguru import logger

from note_index.chunking import Chunker, ChunkingConfig, LineAwareChunker, build_preview
from note_index.config import EmbeddingsConfig
from note_index.embedding import EmbeddingClient, embed_in_batches
from note_index.errors import EmbeddingProviderError
from note_index.models import (
    ChunkRecord,
    NoteRecord,
    NoteSnapshot,
    NoteSource,
    OperationFailure,
    SyncReport,
    SyncRequest,
)
from note_index.repository import NoteRepository, filter_by_query, filter_by_type
from note_index.store import (
    META_LAST_SYNC_AT,
    META_LAST_SYNC_MODEL,
    META_LAST_SYNC_PROVIDER,
    EmbeddingsStore,
)

PRUNE_SKIPPED_WARNING = (
    "prune_missing was ignored because prune is only safe for full-scope sync "
    "(offset=0, full result set, no type/query filters)."
)


def content_hash(text: str) -> str:
    """SHA-256 hex digest of ``text``."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def note_key(note: NoteSnapshot) -> str:
    """Stable store key for a note.

    Space notes are keyed by id (falling back to filename), local notes by
    filename.

    Example:
        >>> note_key(NoteSnapshot(filename="Notes/a.md"))
        'local:Notes/a.md'
    """
    if note.source == NoteSource.SPACE:
        identity = note.id.strip() or note.filename
        return f"space:{identity}"
    return f"local:{note.filename}"


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


class NoteSynchronizer:
    """Brings the embeddings store in line with the note repository."""

    def __init__(
        self,
        config: EmbeddingsConfig,
        store: EmbeddingsStore,
        client: EmbeddingClient,
        repository: NoteRepository,
    ):
        self.config = config
        self.store = store
        self.client = client
        self.repository = repository

    def _chunker(self, max_chunks: int) -> Chunker:
        return LineAwareChunker(
            ChunkingConfig(
                chunk_size=self.config.chunk_chars,
                overlap=self.config.chunk_overlap,
                max_chunks=max_chunks,
            )
        )

    async def sync(self, request: SyncRequest) -> SyncReport | OperationFailure:
        """Run one sync pass.

        Returns:
            SyncReport, or OperationFailure when embeddings are not configured

        Raises:
            EmbeddingProviderError: When the provider fails mid-pass. Notes
                written before the failure stay committed; metadata is not
                recorded.
        """
        reason = self.config.not_configured_reason()
        if reason:
            return OperationFailure(error=reason)

        batch_size = request.batch_size or self.config.default_batch_size
        max_chunks = request.max_chunks_per_note or self.config.default_max_chunks_per_note
        chunker = self._chunker(max_chunks)

        all_notes = self.repository.list_notes(space=request.space)
        candidates = filter_by_query(filter_by_type(all_notes, request.types), request.note_query)
        paged = candidates[request.offset : request.offset + request.limit]
        logger.info(
            f"Syncing embeddings ({request.space or 'all'}): {len(paged)} of "
            f"{len(candidates)} candidates from offset {request.offset}"
        )

        existing = self.store.content_hashes()
        indexed_notes = unchanged_notes = added_notes = updated_notes = indexed_chunks = 0

        for note in paged:
            key = note_key(note)
            digest = content_hash(note.content)
            previous = existing.get(key)

            if not request.force_reembed and previous == digest:
                unchanged_notes += 1
                continue

            chunks = chunker.chunk(note.content)
            vectors: list[list[float]] = []
            if chunks:
                vectors = await embed_in_batches(self.client, chunks, batch_size)
                if len(vectors) != len(chunks):
                    raise EmbeddingProviderError(
                        f"Embedding mismatch for {note.filename}: "
                        f"{len(chunks)} chunks but {len(vectors)} vectors"
                    )

            self._write_note(note, key, digest, chunks, vectors)
            indexed_notes += 1
            indexed_chunks += len(chunks)
            if previous:
                updated_notes += 1
            else:
                added_notes += 1

        warnings: list[str] = []
        pruned_notes = pruned_chunks = 0
        if request.prune_missing:
            full_scope = (
                request.offset == 0
                and len(paged) == len(candidates)
                and not request.types
                and not request.note_query
            )
            if full_scope:
                valid = {note_key(note) for note in paged}
                stale = [key for key in self.store.note_keys(request.space) if key not in valid]
                if stale:
                    pruned_notes, pruned_chunks = self.store.delete_notes(stale)
                    logger.info(f"Pruned {pruned_notes} notes ({pruned_chunks} chunks)")
            else:
                logger.warning(PRUNE_SKIPPED_WARNING)
                warnings.append(PRUNE_SKIPPED_WARNING)

        self.store.set_metadata(META_LAST_SYNC_AT, now_iso())
        self.store.set_metadata(META_LAST_SYNC_PROVIDER, self.config.provider.value)
        self.store.set_metadata(META_LAST_SYNC_MODEL, self.config.model)

        consumed = request.offset + len(paged)
        has_more = consumed < len(candidates)
        logger.success(
            f"Sync complete: {indexed_notes} indexed ({added_notes} added, "
            f"{updated_notes} updated), {unchanged_notes} unchanged, {indexed_chunks} chunks"
        )
        return SyncReport(
            provider=self.config.provider.value,
            model=self.config.model,
            space=request.space,
            total_candidates=len(candidates),
            scanned_notes=len(paged),
            indexed_notes=indexed_notes,
            unchanged_notes=unchanged_notes,
            added_notes=added_notes,
            updated_notes=updated_notes,
            indexed_chunks=indexed_chunks,
            pruned_notes=pruned_notes,
            pruned_chunks=pruned_chunks,
            offset=request.offset,
            limit=request.limit,
            has_more=has_more,
            next_cursor=str(consumed) if has_more else None,
            warnings=warnings,
        )

    def _write_note(
        self,
        note: NoteSnapshot,
        key: str,
        digest: str,
        chunks: list[str],
        vectors: list[list[float]],
    ) -> None:
        timestamp = now_iso()
        record = NoteRecord(
            note_key=key,
            note_id=note.id,
            filename=note.filename,
            title=note.title,
            source=note.source.value,
            space_id=note.space_id,
            folder=note.folder,
            type=note.type,
            modified_at=note.modified_at.isoformat() if note.modified_at else None,
            content_hash=digest,
            chunk_count=len(chunks),
            updated_at=timestamp,
        )
        chunk_records = [
            ChunkRecord(
                note_key=key,
                chunk_index=index,
                chunk_text=text,
                chunk_preview=build_preview(text, self.config.preview_chars),
                chunk_hash=content_hash(text),
                vector=vector,
                created_at=timestamp,
            )
            for index, (text, vector) in enumerate(zip(chunks, vectors, strict=True))
        ]
        self.store.replace_note(record, chunk_records)
