"""Typed models for indexing state."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class ChunkRecord:
    """A chunk already stored remotely, identified by its content hash."""

    id: str
    hash: str


@dataclass(slots=True, frozen=True)
class FileRecord:
    """Represents a file tracked by the index."""

    path: str
    last_modified: int
    chunks: tuple[ChunkRecord, ...]

    def hashes(self) -> frozenset[str]:
        """Return the content hashes stored for this file."""
        return frozenset(chunk.hash for chunk in self.chunks)


@dataclass(slots=True, frozen=True)
class PendingChunk:
    """Chunk text scheduled for embedding and upload."""

    text: str
    hash: str


@dataclass(slots=True, frozen=True)
class ChunkDiff:
    """Chunk-level change classification for one file."""

    new: tuple[PendingChunk, ...]
    unchanged: tuple[ChunkRecord, ...]
    stale: tuple[ChunkRecord, ...]


@dataclass(slots=True, frozen=True)
class ChunkOutcome:
    """Result of one embed-and-upload pipeline."""

    hash: str
    record: ChunkRecord | None
    error: str | None

    @property
    def ok(self) -> bool:
        return self.record is not None


def dedupe_chunks(chunks: Iterable[ChunkRecord]) -> tuple[ChunkRecord, ...]:
    """Collapse chunks sharing a hash, keeping the first occurrence."""
    seen: set[str] = set()
    output: list[ChunkRecord] = []
    for chunk in chunks:
        if chunk.hash in seen:
            continue
        seen.add(chunk.hash)
        output.append(chunk)
    return tuple(output)
