"""Embedding client abstraction for provider-agnostic vector generation.

All three providers (OpenAI, Mistral, and OpenAI-compatible local servers)
speak the same ``POST /v1/embeddings`` shape, so one client built on the
OpenAI SDK covers them, pointed at the configured base URL. Batches are sent
one at a time, never fanned out concurrently.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
from loguru import logger
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from note_index.config import EmbeddingsConfig
from note_index.errors import EmbeddingProviderError

ERROR_EXCERPT_CHARS = 320

# Local OpenAI-compatible servers ignore the bearer token, but the SDK requires one
UNAUTHENTICATED_KEY = "not-needed"


class EmbeddingClient(Protocol):
    """Protocol for embedding client implementations."""

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts.

        Args:
            texts: List of input texts

        Returns:
            List of embedding vectors (same order as inputs)

        Raises:
            EmbeddingProviderError: For API failures or a vector count mismatch
        """
        ...

    async def embed_single(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        ...


def build_api_base(base_url: str) -> str:
    """Return the ``/v1`` API root for a configured endpoint base.

    Accepts a bare host, a ``/v1`` root, or the full ``/v1/embeddings`` endpoint.

    Example:
        >>> build_api_base("https://api.mistral.ai")
        'https://api.mistral.ai/v1'
        >>> build_api_base("http://localhost:11434/v1/embeddings")
        'http://localhost:11434/v1'
    """
    base = base_url.strip().rstrip("/")
    if base.endswith("/v1/embeddings"):
        return base.removesuffix("/embeddings")
    if base.endswith("/v1"):
        return base
    return f"{base}/v1"


def order_vectors(data: Sequence[Any], expected: int) -> list[list[float]]:
    """Validate the vector count and restore input order using each item's ``index``."""
    if len(data) != expected:
        raise EmbeddingProviderError(
            f"Embeddings response mismatch: expected {expected} vectors, got {len(data)}"
        )

    def _index(item: Any) -> int:
        value = getattr(item, "index", None)
        return value if isinstance(value, int) else 0

    try:
        return [[float(v) for v in item.embedding] for item in sorted(data, key=_index)]
    except (AttributeError, TypeError, ValueError) as e:
        raise EmbeddingProviderError(f"Embeddings response has a malformed vector: {e}") from e


class RemoteEmbedding:
    """Embedding client for the configured HTTP provider with retry logic."""

    def __init__(self, config: EmbeddingsConfig, http_client: httpx.AsyncClient | None = None):
        """Initialize the provider client.

        Args:
            config: Resolved embeddings configuration
            http_client: Optional preconfigured httpx client (tests, proxies)
        """
        self.config = config
        self.model_name = config.model
        self.max_retries = config.max_retries
        self.backoff_base = 1.0
        self.client = AsyncOpenAI(
            api_key=config.api_key or UNAUTHENTICATED_KEY,
            base_url=build_api_base(config.base_url),
            timeout=float(config.timeout_seconds),
            max_retries=0,  # retries are handled below
            http_client=http_client,
        )

    async def _backoff(self, attempt: int) -> None:
        await asyncio.sleep(self.backoff_base * 2**attempt)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for one batch, retrying rate limits and timeouts.

        Args:
            texts: Input texts; the provider must return exactly one vector each

        Returns:
            List of embedding vectors (same order as inputs)

        Raises:
            EmbeddingProviderError: Non-success response, connection failure,
                exhausted retries, or vector count mismatch
        """
        if not texts:
            return []

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                response = await self.client.embeddings.create(
                    model=self.model_name, input=texts, encoding_format="float"
                )

            except APITimeoutError as e:
                logger.warning(
                    f"Timeout embedding batch (attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if last_attempt:
                    raise EmbeddingProviderError("Embeddings request timed out") from e
                await self._backoff(attempt)
                continue

            except RateLimitError as e:
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{self.max_retries}): {e.status_code}"
                )
                if last_attempt:
                    raise EmbeddingProviderError(
                        _failure_message(e.status_code, e.response), e.status_code
                    ) from e
                await self._backoff(attempt + 1)
                continue

            except APIStatusError as e:
                # Non-retryable HTTP error
                logger.error(f"HTTP error embedding batch: {e.status_code}")
                raise EmbeddingProviderError(
                    _failure_message(e.status_code, e.response), e.status_code
                ) from e

            except APIConnectionError as e:
                logger.error(f"Could not reach embeddings endpoint: {e}")
                raise EmbeddingProviderError(f"Embeddings request failed: {e}") from e

            vectors = order_vectors(getattr(response, "data", None) or [], len(texts))
            logger.debug(
                f"Embedded {len(texts)} texts with {self.model_name} "
                f"(attempt {attempt + 1}/{self.max_retries})"
            )
            return vectors

        raise EmbeddingProviderError("Exhausted all retry attempts")

    async def embed_single(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        embeddings = await self.embed_batch([text])
        return embeddings[0]

    async def aclose(self) -> None:
        await self.client.close()


def _failure_message(status_code: int, response: httpx.Response | None) -> str:
    body = ""
    if response is not None:
        try:
            body = response.text[:ERROR_EXCERPT_CHARS]
        except httpx.ResponseNotRead:
            body = ""
    return f"Embeddings request failed ({status_code}): {body}"


async def embed_in_batches(
    client: EmbeddingClient, texts: list[str], batch_size: int
) -> list[list[float]]:
    """Embed ``texts`` in sequential batches of ``batch_size``.

    Raises:
        EmbeddingProviderError: Propagated from the first failing batch
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    vectors: list[list[float]] = []
    for start in range(0, len(texts), batch_size):
        batch = texts[start : start + batch_size]
        batch_vectors = await client.embed_batch(batch)
        if len(batch_vectors) != len(batch):
            raise EmbeddingProviderError(
                f"Embeddings response mismatch: expected {len(batch)} vectors, "
                f"got {len(batch_vectors)}"
            )
        vectors.extend(batch_vectors)
        logger.debug(f"Embedded batch {start // batch_size + 1} ({len(batch)} texts)")
    return vectors


def create_embedding_client(config: EmbeddingsConfig) -> EmbeddingClient:
    """Factory function to create the embedding client for ``config.provider``.

    Example:
        >>> config = EmbeddingsConfig(enabled=True, api_key="sk-...")
        >>> client = create_embedding_client(config)
    """
    return RemoteEmbedding(config)
