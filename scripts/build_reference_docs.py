#!/usr/bin/env python
"""Build the bundled reference documentation index.

Reads a directory of markdown documents, chunks them with the same chunker
the live index uses, embeds every chunk through the configured provider,
quantizes the vectors to int8, and writes the gzipped SQLite bundle.

Usage:
    NOTEPLAN_EMBEDDINGS_ENABLED=true NOTEPLAN_EMBEDDINGS_API_KEY=sk-... \\
        python scripts/build_reference_docs.py docs/reference
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import click
from loguru import logger

from note_index.chunking import ChunkingConfig, LineAwareChunker
from note_index.config import EmbeddingsConfig, load_config
from note_index.embedding import RemoteEmbedding, embed_in_batches
from note_index.logging_setup import configure_logging
from note_index.reference_docs import BundleEntry, write_bundle


def document_title(path: Path, text: str) -> str:
    """First level-one heading, else the file stem."""
    for line in text.splitlines():
        if line.startswith("# "):
            return line[2:].strip()
    return path.stem


async def build(config: EmbeddingsConfig, docs_dir: Path, output: Path) -> int:
    chunker = LineAwareChunker(
        ChunkingConfig(
            chunk_size=config.chunk_chars,
            overlap=config.chunk_overlap,
            max_chunks=config.default_max_chunks_per_note,
        )
    )
    client = RemoteEmbedding(config)
    entries: list[BundleEntry] = []
    try:
        for path in sorted(docs_dir.rglob("*.md")):
            text = path.read_text(encoding="utf-8")
            chunks = chunker.chunk(text)
            if not chunks:
                logger.warning(f"Skipping empty document {path}")
                continue
            vectors = await embed_in_batches(client, chunks, config.default_batch_size)
            note_id = path.relative_to(docs_dir).as_posix()
            title = document_title(path, text)
            entries.extend(
                BundleEntry(
                    note_id=note_id,
                    note_title=title,
                    chunk_index=index,
                    content=chunk,
                    vector=vector,
                )
                for index, (chunk, vector) in enumerate(zip(chunks, vectors, strict=True))
            )
            logger.info(f"Embedded {title} ({len(chunks)} chunks)")
    finally:
        await client.aclose()

    return write_bundle(entries, output)


@click.command()
@click.argument("docs_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Bundle path (defaults to the configured reference docs path)",
)
def cli(docs_dir: Path, output: Path | None) -> None:
    """Embed DOCS_DIR into the reference docs bundle."""
    configure_logging()
    config = load_config()
    reason = config.not_configured_reason()
    if reason:
        logger.error(reason)
        sys.exit(1)

    count = asyncio.run(build(config, docs_dir, output or config.reference_docs_path))
    logger.success(f"Reference bundle ready: {count} chunks")


if __name__ == "__main__":
    cli()
