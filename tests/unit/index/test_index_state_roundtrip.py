from __future__ import annotations

import json
from pathlib import Path

import pytest

from kb_index.errors import StateError, StateSchemaError
from kb_index.index import INDEX_STATE_FILE, ChunkRecord, FileRecord, IndexState


def test_index_state_roundtrip_preserves_records(tmp_path: Path) -> None:
    state = IndexState()
    state.upsert(
        FileRecord(
            path="/repo/b.md",
            last_modified=20,
            chunks=(ChunkRecord(id="c1", hash="h1"), ChunkRecord(id="c2", hash="h2")),
        )
    )
    state.upsert(FileRecord(path="/repo/a.md", last_modified=10, chunks=()))
    state.save(tmp_path)

    loaded = IndexState.load(tmp_path)

    assert loaded.files == state.files
    assert loaded.last_modified("/repo/b.md") == 20
    assert loaded.last_modified("/repo/missing.md") is None
    assert loaded.chunk_count() == 2
    payload = json.loads((tmp_path / INDEX_STATE_FILE).read_text(encoding="utf-8"))
    assert payload["schema_version"] == 1
    assert list(payload["files"]) == ["/repo/a.md", "/repo/b.md"]


def test_upsert_collapses_duplicate_hashes() -> None:
    state = IndexState()
    state.upsert(
        FileRecord(
            path="/repo/a.md",
            last_modified=1,
            chunks=(ChunkRecord(id="c1", hash="h"), ChunkRecord(id="c2", hash="h")),
        )
    )

    record = state.get("/repo/a.md")
    assert record is not None
    assert record.chunks == (ChunkRecord(id="c1", hash="h"),)


def test_missing_state_file_loads_empty(tmp_path: Path) -> None:
    assert IndexState.load(tmp_path).files == {}


def test_legacy_state_without_schema_version_loads(tmp_path: Path) -> None:
    legacy = {"files": {"/repo/a.md": {"last_modified": 5, "chunks": [{"id": "c", "hash": "h"}]}}}
    (tmp_path / INDEX_STATE_FILE).write_text(json.dumps(legacy), encoding="utf-8")

    loaded = IndexState.load(tmp_path)

    assert loaded.get("/repo/a.md") == FileRecord(
        path="/repo/a.md", last_modified=5, chunks=(ChunkRecord(id="c", hash="h"),)
    )


def test_unsupported_schema_version_is_rejected(tmp_path: Path) -> None:
    (tmp_path / INDEX_STATE_FILE).write_text(
        json.dumps({"schema_version": 99, "files": {}}), encoding="utf-8"
    )

    with pytest.raises(StateSchemaError) as info:
        IndexState.load(tmp_path)
    assert info.value.found == 99


def test_corrupt_state_file_raises_state_error(tmp_path: Path) -> None:
    (tmp_path / INDEX_STATE_FILE).write_text("{not json", encoding="utf-8")

    with pytest.raises(StateError):
        IndexState.load(tmp_path)
