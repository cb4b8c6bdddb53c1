"""Entry points called by the protocol layer's tool handlers.

``EmbeddingsContext`` owns every long-lived resource (config, store
connection, provider client, host bridge, reference index) and is created
once at startup. ``EmbeddingsService`` turns each tool call into a typed
result; nothing here raises into the host process.
"""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from note_index.config import DISABLED_MESSAGE, EmbeddingsConfig
from note_index.embedding import EmbeddingClient, create_embedding_client
from note_index.errors import EmbeddingProviderError, ReferenceDocsUnavailableError
from note_index.host import HostApp
from note_index.models import (
    OperationFailure,
    ReferenceDocChunk,
    ReferenceSearchResponse,
    ResetPreview,
    ResetResult,
    SearchRequest,
    SearchResponse,
    StatusReport,
    SyncReport,
    SyncRequest,
)
from note_index.query_embedding import (
    HostScriptingStrategy,
    QueryEmbedder,
    RemoteProviderStrategy,
)
from note_index.reference_docs import ReferenceDocsIndex
from note_index.repository import NoteRepository
from note_index.retrieval import SemanticSearcher
from note_index.store import META_LAST_SYNC_AT, EmbeddingsStore
from note_index.sync import NoteSynchronizer


class EmbeddingsContext:
    """Process-wide resources, opened lazily and closed together."""

    def __init__(
        self,
        config: EmbeddingsConfig,
        repository: NoteRepository,
        *,
        host: HostApp | None = None,
        client: EmbeddingClient | None = None,
        store: EmbeddingsStore | None = None,
        reference_index: ReferenceDocsIndex | None = None,
    ):
        self.config = config
        self.repository = repository
        self.host = host or HostApp()
        self.reference_index = reference_index or ReferenceDocsIndex(
            config.reference_docs_path, config.reference_cache_path
        )
        self._client = client
        self._store = store

    @property
    def store(self) -> EmbeddingsStore:
        if self._store is None:
            self._store = EmbeddingsStore(self.config.db_path)
        return self._store

    @property
    def client(self) -> EmbeddingClient:
        if self._client is None:
            self._client = create_embedding_client(self.config)
        return self._client

    def query_embedder(self) -> QueryEmbedder:
        return QueryEmbedder(
            [
                HostScriptingStrategy(self.host),
                RemoteProviderStrategy(self.config, lambda: self.client),
            ]
        )

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "aclose"):
            await self._client.aclose()
        self.close()

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None
        self.reference_index.close()


class EmbeddingsService:
    """Typed operations over one ``EmbeddingsContext``."""

    def __init__(self, context: EmbeddingsContext):
        self.context = context

    @property
    def config(self) -> EmbeddingsConfig:
        return self.context.config

    def get_status(self, space: str | None = None) -> StatusReport:
        """Index status; never touches the database while disabled."""
        config = self.config
        base = {
            "provider": config.provider.value,
            "model": config.model,
            "base_url": config.base_url,
            "db_path": str(config.db_path),
        }
        if not config.enabled:
            return StatusReport(enabled=False, configured=False, warning=DISABLED_MESSAGE, **base)

        store = self.context.store
        counts = store.counts(space)
        return StatusReport(
            enabled=True,
            configured=config.is_configured,
            has_api_key=bool(config.api_key),
            chunk_chars=config.chunk_chars,
            chunk_overlap=config.chunk_overlap,
            preview_chars=config.preview_chars,
            note_count=counts.note_count,
            chunk_count=counts.chunk_count,
            last_sync_at=store.get_metadata(META_LAST_SYNC_AT) or None,
            last_indexed_update_at=store.last_indexed_at(space),
            warning=config.not_configured_reason(),
            **base,
        )

    def preview_reset(self, space: str | None = None) -> ResetPreview | OperationFailure:
        if not self.config.enabled:
            return OperationFailure(error=DISABLED_MESSAGE)
        return self.context.store.counts(space)

    def reset(self, space: str | None = None) -> ResetResult | OperationFailure:
        """Delete every indexed note in scope; a full reset also clears the last sync time."""
        if not self.config.enabled:
            return OperationFailure(error=DISABLED_MESSAGE)
        return self.context.store.reset(space)

    async def sync(self, request: SyncRequest) -> SyncReport | OperationFailure:
        reason = self.config.not_configured_reason()
        if reason:
            return OperationFailure(error=reason)

        synchronizer = NoteSynchronizer(
            self.config, self.context.store, self.context.client, self.context.repository
        )
        try:
            return await synchronizer.sync(request)
        except EmbeddingProviderError as e:
            logger.error(f"Sync aborted: {e}")
            return OperationFailure(error=str(e))

    async def search(self, request: SearchRequest) -> SearchResponse | OperationFailure:
        reason = self.config.not_configured_reason()
        if reason:
            return OperationFailure(error=reason)

        searcher = SemanticSearcher(self.config, self.context.store, self.context.client)
        try:
            return await searcher.search(request)
        except EmbeddingProviderError as e:
            logger.error(f"Search failed: {e}")
            return OperationFailure(error=str(e))

    async def search_reference_docs(
        self,
        query: str | None = None,
        query_vector: Sequence[float] | None = None,
        limit: int = 5,
        include_content: bool = False,
    ) -> ReferenceSearchResponse | OperationFailure:
        """Search the bundled reference docs.

        Vector source order: ``query_vector`` when given, then the host's
        embedText hook, then the configured provider, then lexical search.
        """
        query = (query or "").strip() or None
        if query is None and not query_vector:
            return OperationFailure(error="query is required")

        index = self.context.reference_index
        try:
            if query_vector:
                matches = index.search(query_vector, limit, include_content)
                return ReferenceSearchResponse(
                    query=query, count=len(matches), embedding_source="vector", matches=matches
                )

            embedded = await self.context.query_embedder().embed(query)
            if embedded.vector is not None:
                matches = index.search(embedded.vector, limit, include_content)
                return ReferenceSearchResponse(
                    query=query,
                    count=len(matches),
                    embedding_source=embedded.source,
                    matches=matches,
                )

            matches = index.text_search(query, limit, include_content)
            return ReferenceSearchResponse(
                query=query, count=len(matches), embedding_source="text", matches=matches
            )
        except (ReferenceDocsUnavailableError, EmbeddingProviderError) as e:
            logger.error(f"Reference doc search failed: {e}")
            return OperationFailure(error=str(e))

    def get_reference_doc_chunk(
        self, title: str, index: int = 0
    ) -> ReferenceDocChunk | OperationFailure:
        try:
            chunk = self.context.reference_index.get_chunk(title, index)
        except ReferenceDocsUnavailableError as e:
            return OperationFailure(error=str(e))
        if chunk is None:
            return OperationFailure(
                error=f'No doc chunk found for title="{title}" chunk_index={index}'
            )
        return chunk
