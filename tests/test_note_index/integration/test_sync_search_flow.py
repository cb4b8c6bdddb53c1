"""End-to-end sync and search through ``EmbeddingsService``.

Uses the real SQLite store with a deterministic bag-of-words embedder, so
scores reflect word overlap.
"""

from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from conftest import make_note

from note_index.host import HostApp
from note_index.models import SearchRequest, SyncRequest
from note_index.service import EmbeddingsContext, EmbeddingsService
from note_index.sync import note_key

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def service(config, repository, embedder):
    host = MagicMock(spec=HostApp)
    host.supports_embed_text.return_value = False
    context = EmbeddingsContext(config, repository, host=host, client=embedder)
    yield EmbeddingsService(context)
    await context.aclose()


def _stored(service: EmbeddingsService, key: str) -> list[tuple]:
    return [tuple(row) for row in service.context.store.get_chunks(key)]


@pytest.mark.asyncio
async def test_second_sync_is_a_no_op(service, repository, embedder):
    notes = [
        make_note("groceries.md", "apples\npears\n" * 200),
        make_note("standup.md", "yesterday shipped the parser", source="space", space_id="t1"),
    ]
    for note in notes:
        repository.upsert(note)

    first = await service.sync(SyncRequest())
    calls_after_first = len(embedder.calls)
    snapshot = {note_key(n): _stored(service, note_key(n)) for n in notes}

    second = await service.sync(SyncRequest())

    assert first.indexed_notes == 2
    assert second.unchanged_notes == second.total_candidates == 2
    assert second.indexed_notes == second.indexed_chunks == 0
    assert len(embedder.calls) == calls_after_first
    assert {key: _stored(service, key) for key in snapshot} == snapshot


@pytest.mark.asyncio
async def test_edited_note_is_reembedded_and_found(service, repository):
    repository.upsert(make_note("Recipe A.md", "Eggs\nMilk\nFlour"))
    await service.sync(SyncRequest())
    key = note_key(repository.notes[0])
    hash_before = service.context.store.get_note(key).content_hash

    before = await service.search(SearchRequest(query="sugar", min_score=0.2))
    assert before.count == 0

    repository.upsert(make_note("Recipe A.md", "Eggs\nMilk\nFlour\nSugar"))
    report = await service.sync(SyncRequest())

    assert (report.updated_notes, report.indexed_chunks) == (1, 1)
    assert service.context.store.get_note(key).content_hash != hash_before
    assert len(service.context.store.get_chunks(key)) == 1

    after = await service.search(SearchRequest(query="sugar", min_score=0.2))
    assert after.count == 1
    assert after.matches[0].note.title == "Recipe A"
    assert after.matches[0].score == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_missing_note_is_pruned(service, repository):
    repository.upsert(make_note("Old Note.md", "Old Note about the garden shed"))
    repository.upsert(make_note("Shopping.md", "bread cheese butter"))
    await service.sync(SyncRequest())

    found = await service.search(SearchRequest(query="Old Note"))
    assert found.count == 1

    repository.remove("Old Note.md")
    report = await service.sync(SyncRequest(prune_missing=True))

    assert (report.pruned_notes, report.pruned_chunks) == (1, 1)
    assert report.warnings == []
    assert service.get_status().note_count == 1

    gone = await service.search(SearchRequest(query="Old Note"))
    assert gone.count == 0
