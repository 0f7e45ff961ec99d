"""Structured JSONL run log."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path

_SECRET_KEYS = frozenset({"api_key", "openai_api_key", "authorization"})
# Free-form strings are logged as length only, except for these.
_PLAIN_STRING_KEYS = frozenset({"path", "format", "session", "switch"})


@dataclass(slots=True, frozen=True)
class RunEvent:
    """Sanitized record of one command invocation."""

    timestamp: str
    run_id: str
    command: str
    ok: bool
    error_code: str | None
    metadata: dict[str, object]


def utc_timestamp() -> str:
    """Return an ISO-8601 UTC timestamp."""
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_run_id() -> str:
    """Sortable timestamp-based run identifier."""
    stamp = datetime.now(tz=UTC).strftime("%Y%m%d-%H%M%S")
    return f"{stamp}-{uuid.uuid4().hex[:6]}"


def sanitize_arguments(arguments: dict[str, object]) -> dict[str, object]:
    """Describe command arguments without recording query text or secrets."""
    sanitized: dict[str, object] = {}
    for key, value in sorted(arguments.items()):
        sanitized.update(_describe(key, value))
    return sanitized


def _describe(key: str, value: object) -> dict[str, object]:
    if key in _SECRET_KEYS:
        return {f"{key}_present": bool(value)}
    if isinstance(value, str) and key not in _PLAIN_STRING_KEYS:
        return {f"{key}_present": True, f"{key}_length": len(value)}
    if value is None or isinstance(value, (bool, int, float, str)):
        return {key: value}
    if isinstance(value, (list, tuple, dict)):
        return {f"{key}_count": len(value)}
    return {f"{key}_type": type(value).__name__}


class JsonlEventLogger:
    """One JSON object per command run, appended to a file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def append(self, event: RunEvent) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(asdict(event), sort_keys=True)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(f"{line}\n")


def configure_logging(level: str = "WARNING") -> None:
    """Send package diagnostics to stderr at the requested level."""
    logger = logging.getLogger("kb_index")
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    if any(getattr(handler, "_kb_index", False) for handler in logger.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler._kb_index = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
