"""Persistent per-file index state."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from kb_index.index.models import ChunkRecord, FileRecord, dedupe_chunks
from kb_index.storage import read_snapshot, write_snapshot

INDEX_STATE_FILE = "index-state.json"


@dataclass(slots=True)
class IndexState:
    """Mapping of file path to its last indexed record.

    Loaded once per indexing run and saved once at the end of it.
    """

    files: dict[str, FileRecord] = field(default_factory=dict)

    @classmethod
    def load(cls, config_dir: Path) -> IndexState:
        payload = read_snapshot(config_dir / INDEX_STATE_FILE)
        if payload is None:
            return cls()
        raw_files = payload.get("files", {})
        if not isinstance(raw_files, dict):
            return cls()
        files: dict[str, FileRecord] = {}
        for path, obj in raw_files.items():
            if not isinstance(obj, dict):
                continue
            last_modified = obj.get("last_modified")
            raw_chunks = obj.get("chunks")
            if isinstance(last_modified, bool) or not isinstance(last_modified, int):
                continue
            if not isinstance(raw_chunks, list):
                continue
            chunks: list[ChunkRecord] = []
            for raw_chunk in raw_chunks:
                if not isinstance(raw_chunk, dict):
                    continue
                chunk_id = raw_chunk.get("id")
                chunk_hash = raw_chunk.get("hash")
                if not isinstance(chunk_id, str) or not isinstance(chunk_hash, str):
                    continue
                chunks.append(ChunkRecord(id=chunk_id, hash=chunk_hash))
            files[path] = FileRecord(
                path=path,
                last_modified=last_modified,
                chunks=dedupe_chunks(chunks),
            )
        return cls(files=files)

    def save(self, config_dir: Path) -> None:
        write_snapshot(
            config_dir / INDEX_STATE_FILE,
            {
                "files": {
                    path: {
                        "last_modified": record.last_modified,
                        "chunks": [
                            {"id": chunk.id, "hash": chunk.hash} for chunk in record.chunks
                        ],
                    }
                    for path, record in sorted(self.files.items())
                }
            },
        )

    def get(self, path: str) -> FileRecord | None:
        return self.files.get(path)

    def last_modified(self, path: str) -> int | None:
        record = self.files.get(path)
        if record is None:
            return None
        return record.last_modified

    def upsert(self, record: FileRecord) -> None:
        """Insert or replace a file record, collapsing duplicate hashes."""
        self.files[record.path] = FileRecord(
            path=record.path,
            last_modified=record.last_modified,
            chunks=dedupe_chunks(record.chunks),
        )

    def chunk_count(self) -> int:
        return sum(len(record.chunks) for record in self.files.values())
