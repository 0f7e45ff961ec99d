from __future__ import annotations

import json
from pathlib import Path

import pytest

from kb_index.errors import StateError, StateSchemaError
from kb_index.storage import SNAPSHOT_SCHEMA_VERSION, read_snapshot, write_snapshot


def test_write_snapshot_is_sorted_versioned_and_leaves_no_temp(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.json"

    write_snapshot(path, {"b": 1, "a": [2]})

    text = path.read_text(encoding="utf-8")
    assert json.loads(text) == {"a": [2], "b": 1, "schema_version": SNAPSHOT_SCHEMA_VERSION}
    assert text.index('"a"') < text.index('"b"')
    assert sorted(item.name for item in path.parent.iterdir()) == ["state.json"]


def test_read_snapshot_of_missing_file_is_none(tmp_path: Path) -> None:
    assert read_snapshot(tmp_path / "absent.json") is None


def test_read_snapshot_rejects_non_objects(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(StateError, match="JSON object"):
        read_snapshot(path)


def test_read_snapshot_rejects_future_versions(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text('{"schema_version": 2}', encoding="utf-8")

    with pytest.raises(StateSchemaError, match="expected 1"):
        read_snapshot(path)


def test_read_snapshot_maps_undecodable_bytes_to_state_error(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_bytes(b'\xff\xfe{"files": {}}')

    with pytest.raises(StateError, match="not valid JSON"):
        read_snapshot(path)


def test_read_snapshot_maps_unreadable_path_to_state_error(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.mkdir()

    with pytest.raises(StateError, match="could not be read"):
        read_snapshot(path)
