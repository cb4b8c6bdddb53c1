"""Contract for the external note repository that feeds the sync pass.

The backend never reads note files or the host database itself; it only
consumes snapshots through this protocol.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from note_index.models import NoteSnapshot

TRASH_TYPE = "trash"


class NoteRepository(Protocol):
    """Source of note snapshots."""

    def list_notes(self, space: str | None = None) -> Sequence[NoteSnapshot]:
        """Return every note in scope (all notes when ``space`` is None)."""
        ...


def filter_by_type(
    notes: Sequence[NoteSnapshot], types: Sequence[str] | None
) -> list[NoteSnapshot]:
    """Keep notes whose type is allowed; without an allow-list, drop trash."""
    if types:
        allowed = set(types)
        return [note for note in notes if note.type in allowed]
    return [note for note in notes if note.type != TRASH_TYPE]


def filter_by_query(notes: Sequence[NoteSnapshot], note_query: str | None) -> list[NoteSnapshot]:
    """Case-insensitive substring match over title, filename and folder."""
    query = (note_query or "").strip().lower()
    if not query:
        return list(notes)
    return [
        note
        for note in notes
        if query in f"{note.title} {note.filename} {note.folder or ''}".lower()
    ]
