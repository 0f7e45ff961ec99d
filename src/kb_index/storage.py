"""Whole-document JSON snapshots with atomic replacement."""

from __future__ import annotations

import json
from pathlib import Path

from kb_index.errors import StateError, StateSchemaError

SNAPSHOT_SCHEMA_VERSION = 1


def read_snapshot(path: Path) -> dict[str, object] | None:
    """Read a snapshot document, or None when it has never been written.

    Documents written before versioning carry no schema_version and are read
    as version 1.
    """
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise StateError(f"Snapshot {path} is not valid JSON: {error}") from error
    except OSError as error:
        raise StateError(f"Snapshot {path} could not be read: {error}") from error
    if not isinstance(payload, dict):
        raise StateError(f"Snapshot {path} must contain a JSON object.")
    schema = payload.get("schema_version", SNAPSHOT_SCHEMA_VERSION)
    if isinstance(schema, bool) or schema != SNAPSHOT_SCHEMA_VERSION:
        raise StateSchemaError(path=str(path), found=schema, expected=SNAPSHOT_SCHEMA_VERSION)
    return payload


def write_snapshot(path: Path, payload: dict[str, object]) -> None:
    """Write a snapshot document through a temporary sibling file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    document = {"schema_version": SNAPSHOT_SCHEMA_VERSION, **payload}
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        json.dump(document, handle, sort_keys=True, indent=2)
        handle.write("\n")
    tmp.replace(path)
