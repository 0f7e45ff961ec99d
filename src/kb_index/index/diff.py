"""Content-addressed chunk diffing between index runs."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from kb_index.config import DEFAULT_MAX_CHUNK_CHARS
from kb_index.index.chunking import hash_chunk
from kb_index.index.models import ChunkDiff, ChunkOutcome, ChunkRecord, FileRecord, PendingChunk


def plan_file_update(
    previous: FileRecord | None,
    chunks: Sequence[str],
    max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS,
) -> ChunkDiff:
    """Classify a file's current chunks against its stored record.

    Blank chunks and chunks longer than `max_chunk_chars` are not indexed.
    Repeated content within the file is embedded once.
    """
    previous_chunks = previous.chunks if previous is not None else ()
    previous_hashes = {chunk.hash for chunk in previous_chunks}

    current_hashes: set[str] = set()
    new: list[PendingChunk] = []
    for text in chunks:
        if not text.strip() or len(text) > max_chunk_chars:
            continue
        digest = hash_chunk(text)
        if digest in current_hashes:
            continue
        current_hashes.add(digest)
        if digest not in previous_hashes:
            new.append(PendingChunk(text=text, hash=digest))

    unchanged = tuple(chunk for chunk in previous_chunks if chunk.hash in current_hashes)
    stale = tuple(chunk for chunk in previous_chunks if chunk.hash not in current_hashes)
    return ChunkDiff(new=tuple(new), unchanged=unchanged, stale=stale)


def merge_chunks(
    unchanged: Iterable[ChunkRecord],
    outcomes: Iterable[ChunkOutcome],
) -> tuple[ChunkRecord, ...]:
    """Build a file's chunk list from carried-over and newly uploaded chunks."""
    merged = list(unchanged)
    merged.extend(outcome.record for outcome in outcomes if outcome.record is not None)
    return tuple(merged)
