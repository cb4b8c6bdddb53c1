"""Semantic embeddings index for a personal note repository.

This package chunks and embeds notes into a local SQLite store, keeps the
store in sync incrementally, ranks stored chunks against a query, and
searches a bundled, quantized reference documentation index. The protocol
layer that dispatches tool calls consumes it through ``EmbeddingsService``.

Architecture:
    - chunking: Line-aware overlapping character windows
    - embedding: OpenAI-compatible batch embedding client
    - store: Content-addressed SQLite note/chunk tables
    - sync: Incremental hash-based re-embedding with safe pruning
    - retrieval: Cosine ranking of stored chunks
    - reference_docs: Read-only int8-quantized doc index
    - service: Typed entry points over one EmbeddingsContext

Usage:
    >>> from note_index import EmbeddingsContext, EmbeddingsService, load_config
    >>> context = EmbeddingsContext(load_config(), repository)
    >>> report = await EmbeddingsService(context).sync(SyncRequest())
"""

__version__ = "0.3.0"

from note_index.config import EmbeddingsConfig, load_config
from note_index.models import (
    NoteSnapshot,
    OperationFailure,
    SearchRequest,
    SearchResponse,
    SyncReport,
    SyncRequest,
)
from note_index.service import EmbeddingsContext, EmbeddingsService

__all__ = [
    "EmbeddingsConfig",
    "EmbeddingsContext",
    "EmbeddingsService",
    "NoteSnapshot",
    "OperationFailure",
    "SearchRequest",
    "SearchResponse",
    "SyncReport",
    "SyncRequest",
    "load_config",
]
