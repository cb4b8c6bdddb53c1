"""Semantic search over the live note index."""

from __future__ import annotations

from loguru import logger

from note_index.chunking import build_preview
from note_index.config import EmbeddingsConfig
from note_index.embedding import EmbeddingClient
from note_index.models import (
    MatchedChunk,
    MatchedNote,
    OperationFailure,
    SearchMatch,
    SearchRequest,
    SearchResponse,
)
from note_index.similarity import cosine_similarity, decode_vector
from note_index.store import EmbeddingsStore, StoredChunk

SCORE_DECIMALS = 4


class SemanticSearcher:
    """Ranks stored chunks by cosine similarity to an embedded query."""

    def __init__(self, config: EmbeddingsConfig, store: EmbeddingsStore, client: EmbeddingClient):
        self.config = config
        self.store = store
        self.client = client

    async def search(self, request: SearchRequest) -> SearchResponse | OperationFailure:
        """Embed the query, scan up to ``max_chunks`` rows, and rank them.

        Raises:
            EmbeddingProviderError: When the query cannot be embedded
        """
        reason = self.config.not_configured_reason()
        if reason:
            return OperationFailure(error=reason)

        query = request.query.strip()
        if not query:
            return OperationFailure(error="query is required")

        query_vector = await self.client.embed_single(query)
        rows = self.store.scan_chunks(
            space=request.space,
            source=request.source.value if request.source else None,
            types=request.types,
            limit=request.max_chunks,
        )
        ranked = rank_chunks(query_vector, rows, request.min_score)[: request.limit]

        preview_chars = request.preview_chars or self.config.preview_chars
        matches = [
            SearchMatch(
                score=round(score, SCORE_DECIMALS),
                note=MatchedNote(
                    id=row.note_id,
                    filename=row.filename,
                    title=row.title,
                    source=row.source,
                    space_id=row.space_id,
                    folder=row.folder,
                    type=row.type,
                    modified_at=row.modified_at,
                ),
                chunk=MatchedChunk(
                    index=row.chunk_index,
                    preview=build_preview(row.chunk_text, preview_chars),
                    text=row.chunk_text if request.include_text else None,
                ),
            )
            for row, score in ranked
        ]
        logger.info(f"Search '{query}': {len(matches)} matches from {len(rows)} chunks")

        return SearchResponse(
            query=query,
            provider=self.config.provider.value,
            model=self.config.model,
            include_text=request.include_text,
            min_score=request.min_score,
            scanned_chunks=len(rows),
            count=len(matches),
            matches=matches,
        )


def rank_chunks(
    query_vector: list[float], rows: list[StoredChunk], min_score: float
) -> list[tuple[StoredChunk, float]]:
    """Score rows against the query, drop those below ``min_score``, sort descending.

    The sort is stable, so equal scores keep the scan order (freshest notes first).
    """
    scored = [
        (row, cosine_similarity(query_vector, decode_vector(row.embedding_json))) for row in rows
    ]
    kept = [(row, score) for row, score in scored if score >= min_score]
    return sorted(kept, key=lambda item: item[1], reverse=True)
