"""Query-time embedding with an ordered fallback chain.

Strategies are tried in order; each returns a vector or ``None`` to hand
over to the next one. When none produces a vector the caller gets
``source="none"`` and can fall back to lexical search.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from note_index.config import EmbeddingsConfig
from note_index.embedding import EmbeddingClient
from note_index.errors import HostScriptError
from note_index.host import HostApp


@dataclass(frozen=True)
class QueryEmbedding:
    vector: list[float] | None
    source: str  # "host" | "api" | "none"

    @property
    def ok(self) -> bool:
        return self.vector is not None


class QueryEmbeddingStrategy(Protocol):
    name: str

    async def embed(self, text: str) -> list[float] | None:
        """Return a vector, or None to let the next strategy try."""
        ...


class HostScriptingStrategy:
    """Embed through the host app's ``embedText`` command when its build supports it."""

    name = "host"

    def __init__(self, host: HostApp):
        self.host = host

    async def embed(self, text: str) -> list[float] | None:
        if not await asyncio.to_thread(self.host.supports_embed_text):
            return None
        try:
            return await asyncio.to_thread(self.host.embed_text, text)
        except HostScriptError as e:
            logger.warning(f"Host embedText failed, falling back: {e}")
            return None


class RemoteProviderStrategy:
    """Embed through the configured provider; skipped when not configured.

    Provider errors propagate to the caller.
    """

    name = "api"

    def __init__(self, config: EmbeddingsConfig, client_factory: Callable[[], EmbeddingClient]):
        self.config = config
        self._client_factory = client_factory

    async def embed(self, text: str) -> list[float] | None:
        if not self.config.is_configured:
            return None
        client = self._client_factory()
        return await client.embed_single(text)


class QueryEmbedder:
    """Runs strategies in order and reports which one produced the vector."""

    def __init__(self, strategies: Sequence[QueryEmbeddingStrategy]):
        self.strategies = list(strategies)

    async def embed(self, text: str) -> QueryEmbedding:
        for strategy in self.strategies:
            vector = await strategy.embed(text)
            if vector is not None:
                logger.debug(f"Query embedded via {strategy.name} ({len(vector)} dims)")
                return QueryEmbedding(vector=vector, source=strategy.name)
        logger.info("No embedding source available for query")
        return QueryEmbedding(vector=None, source="none")
