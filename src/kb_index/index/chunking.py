"""Deterministic fixed-window line chunking."""

from __future__ import annotations

import hashlib

from kb_index.config import DEFAULT_CHUNK_LINES


def chunk_text(text: str, chunk_lines: int = DEFAULT_CHUNK_LINES) -> list[str]:
    """Split text into consecutive windows of `chunk_lines` lines.

    Windows that are blank after stripping are dropped. Identical input always
    yields identical boundaries.
    """
    if chunk_lines < 1:
        raise ValueError("chunk_lines must be >= 1")

    lines = text.splitlines()
    chunks: list[str] = []
    for start in range(0, len(lines), chunk_lines):
        chunk = "\n".join(lines[start : start + chunk_lines])
        if not chunk.strip():
            continue
        chunks.append(chunk)
    return chunks


def hash_chunk(text: str) -> str:
    """Return the content identity of a chunk."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
