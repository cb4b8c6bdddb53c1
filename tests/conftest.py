"""Pytest configuration and shared fixtures.

This file ensures that:
- `src/` is importable
- No NOTEPLAN_* variable from the developer's shell leaks into config tests
- Sync/search tests get a deterministic embedder and an in-memory repository
"""

from __future__ import annotations

import os
import re
import sys
from collections.abc import Sequence
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from note_index.config import EmbeddingsConfig  # noqa: E402
from note_index.models import NoteSnapshot  # noqa: E402
from note_index.store import EmbeddingsStore  # noqa: E402

FAKE_DIM = 64
_WORD = re.compile(r"[a-z0-9]+")


class VocabularyEmbedder:
    """Deterministic bag-of-words embedder.

    Each distinct lowercase word gets its own dimension (first come, first
    served), so cosine similarity reflects word overlap exactly.
    """

    def __init__(self, dim: int = FAKE_DIM):
        self.dim = dim
        self.vocabulary: dict[str, int] = {}
        self.calls: list[list[str]] = []

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dim
        for word in _WORD.findall(text.lower()):
            slot = self.vocabulary.setdefault(word, len(self.vocabulary) % self.dim)
            vec[slot] = 1.0
        return vec

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector(text) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    @property
    def texts_embedded(self) -> int:
        return sum(len(batch) for batch in self.calls)


class InMemoryRepository:
    """Note repository backed by a mutable list."""

    def __init__(self, notes: Sequence[NoteSnapshot] = ()):
        self.notes = list(notes)

    def list_notes(self, space: str | None = None) -> list[NoteSnapshot]:
        if space is None:
            return list(self.notes)
        return [note for note in self.notes if note.space_id == space]

    def upsert(self, note: NoteSnapshot) -> None:
        self.notes = [n for n in self.notes if n.filename != note.filename] + [note]

    def remove(self, filename: str) -> None:
        self.notes = [n for n in self.notes if n.filename != filename]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("NOTEPLAN_") or name == "NOTE_INDEX_LOG_LEVEL":
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(tmp_path: Path) -> EmbeddingsConfig:
    """Enabled, configured OpenAI config writing under tmp_path."""
    return EmbeddingsConfig(
        enabled=True,
        api_key="sk-test-key",
        db_path=str(tmp_path / "embeddings.db"),
        reference_docs_path=str(tmp_path / "reference_docs.db.gz"),
        reference_cache_path=str(tmp_path / "cache" / "templates.db"),
    )


@pytest.fixture
def store(config: EmbeddingsConfig):
    db = EmbeddingsStore(config.db_path)
    yield db
    db.close()


@pytest.fixture
def embedder() -> VocabularyEmbedder:
    return VocabularyEmbedder()


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


def make_note(
    filename: str,
    content: str,
    *,
    title: str | None = None,
    type: str = "note",
    source: str = "local",
    space_id: str | None = None,
    folder: str | None = None,
    id: str = "",
) -> NoteSnapshot:
    return NoteSnapshot(
        id=id,
        filename=filename,
        title=title if title is not None else Path(filename).stem,
        content=content,
        type=type,
        source=source,
        space_id=space_id,
        folder=folder,
    )
