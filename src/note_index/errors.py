"""Exception hierarchy for the note embeddings backend.

Only genuinely exceptional conditions are raised. "Not configured" and bad
input are reported as ``OperationFailure`` results (see ``note_index.models``)
so tool handlers can degrade to lexical search instead of crashing.
"""

from __future__ import annotations


class NoteIndexError(Exception):
    """Base class for all note_index errors."""


class EmbeddingProviderError(NoteIndexError):
    """Embedding API returned a non-success response or the wrong number of vectors.

    Attributes:
        status_code: HTTP status of the failed request, if one was received
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class HostScriptError(NoteIndexError):
    """The host application's scripting hook failed, timed out, or is unavailable."""


class ReferenceDocsUnavailableError(NoteIndexError):
    """The bundled reference documentation database is missing or unreadable."""
