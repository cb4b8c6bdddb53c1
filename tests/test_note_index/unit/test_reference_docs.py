"""Unit tests for the quantized reference documentation index."""

import os
import sqlite3
from pathlib import Path

import numpy as np
import pytest

from note_index.errors import ReferenceDocsUnavailableError
from note_index.reference_docs import (
    BundleEntry,
    ReferenceDocsIndex,
    dequantize_int8,
    quantize_int8,
    write_bundle,
)

LONG_CONTENT = "Loops repeat a block. " * 30

ENTRIES = [
    BundleEntry(
        "templates.md", "Templates", 0, "Templates insert dates and titles.", [1.0, 0.0, 0.0]
    ),
    BundleEntry("templates.md", "Templates", 1, LONG_CONTENT, [0.0, 1.0, 0.0]),
    BundleEntry("web.md", "Web Requests", 0, "Fetch a URL from a template.", [0.6, 0.0, 0.8]),
]


@pytest.fixture
def bundle(tmp_path: Path) -> Path:
    path = tmp_path / "bundle" / "reference_docs.db.gz"
    write_bundle(ENTRIES, path)
    return path


@pytest.fixture
def index(bundle: Path, tmp_path: Path):
    docs = ReferenceDocsIndex(bundle, tmp_path / "cache" / "templates.db")
    yield docs
    docs.close()


class TestQuantization:
    @pytest.mark.parametrize("scale", [0.01, 1.0, 7.5])
    def test_byte_128_is_zero(self, scale: float) -> None:
        assert dequantize_int8(bytes([128]), scale)[0] == 0.0

    @pytest.mark.parametrize("scale", [0.01, 1.0, 7.5])
    def test_extremes_are_about_plus_minus_scale(self, scale: float) -> None:
        low, high = dequantize_int8(bytes([0, 255]), scale)

        assert low == pytest.approx(-scale, rel=0.01)
        assert high == pytest.approx(scale, rel=1e-6)

    def test_quantize_within_one_step(self) -> None:
        vector = [0.5, -0.25, 0.1, -0.5, 0.0]
        blob, scale = quantize_int8(vector)

        assert scale == 0.5
        assert min(blob) >= 1
        np.testing.assert_allclose(dequantize_int8(blob, scale), vector, atol=scale / 127)

    def test_zero_vector(self) -> None:
        blob, scale = quantize_int8([0.0, 0.0])
        assert (blob, scale) == (bytes([128, 128]), 0.0)


class TestCache:
    def test_missing_bundle_raises(self, tmp_path: Path) -> None:
        docs = ReferenceDocsIndex(tmp_path / "absent.db.gz", tmp_path / "cache.db")

        with pytest.raises(ReferenceDocsUnavailableError, match="not found"):
            docs.chunks()

    def test_decompresses_once(self, index: ReferenceDocsIndex) -> None:
        assert len(index.chunks()) == 3
        assert index.cache_path.exists()
        assert index.chunks() is index.chunks()

    def test_stale_cache_is_refreshed(self, bundle: Path, tmp_path: Path) -> None:
        cache = tmp_path / "cache" / "templates.db"
        cache.parent.mkdir(parents=True)
        cache.write_bytes(b"stale")
        os.utime(cache, (0, 0))

        docs = ReferenceDocsIndex(bundle, cache)
        try:
            assert len(docs.chunks()) == 3
        finally:
            docs.close()

    def test_cache_is_read_only(self, index: ReferenceDocsIndex) -> None:
        index.chunks()
        with pytest.raises(sqlite3.OperationalError):
            index._connect().execute("DELETE FROM chunks")


class TestSearch:
    def test_semantic_ranking_keeps_positive_scores(self, index: ReferenceDocsIndex) -> None:
        matches = index.search([1.0, 0.0, 0.0])

        assert [(m.document_title, m.chunk_index) for m in matches] == [
            ("Templates", 0),
            ("Web Requests", 0),
        ]
        assert matches[0].score == pytest.approx(1.0, abs=1e-3)
        assert matches[1].score == pytest.approx(0.6, abs=1e-2)
        assert matches[0].content is None

    def test_limit_and_content(self, index: ReferenceDocsIndex) -> None:
        matches = index.search([0.0, 1.0, 0.0], limit=1, include_content=True)

        assert len(matches) == 1
        assert matches[0].content == LONG_CONTENT
        assert len(matches[0].preview) == 300
        assert matches[0].preview.endswith("...")

    def test_text_search_scoring(self, index: ReferenceDocsIndex) -> None:
        matches = index.text_search("template fetch")

        # "template" is in every chunk (title or body); "fetch" only in the web chunk
        assert matches[0].document_title == "Web Requests"
        assert matches[0].score == pytest.approx(2 / 3, abs=1e-4)
        assert [m.score for m in matches[1:]] == [0.5, 0.5]

    def test_text_search_no_terms(self, index: ReferenceDocsIndex) -> None:
        assert index.text_search("   ") == []
        assert index.text_search("zebra") == []


class TestGetChunk:
    def test_found(self, index: ReferenceDocsIndex) -> None:
        chunk = index.get_chunk("Templates", 1)

        assert chunk is not None
        assert chunk.total_chunks == 2
        assert chunk.content == LONG_CONTENT

    def test_missing(self, index: ReferenceDocsIndex) -> None:
        assert index.get_chunk("Templates", 9) is None
        assert index.get_chunk("Nope", 0) is None
