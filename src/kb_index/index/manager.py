"""Incremental indexing run orchestration."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from kb_index.config import AppConfig
from kb_index.errors import KbIndexError
from kb_index.index.chunking import chunk_text
from kb_index.index.diff import merge_chunks, plan_file_update
from kb_index.index.discovery import DiscoveredFile, discover_files
from kb_index.index.dispatcher import Embedder, EmbeddingDispatcher
from kb_index.index.models import ChunkDiff, ChunkOutcome, FileRecord
from kb_index.index.state import IndexState

logger = logging.getLogger(__name__)


class VectorStoreSync(Protocol):
    def ensure_collection(self) -> None: ...

    def add(
        self,
        chunk_id: str,
        text: str,
        embedding: Sequence[float],
        metadata: dict[str, str],
    ) -> None: ...

    def delete(self, ids: Sequence[str]) -> None: ...


@dataclass(slots=True, frozen=True)
class FileFailure:
    """A file whose processing was aborted or only partially completed."""

    path: str
    message: str


@dataclass(slots=True)
class IndexReport:
    """Counters and failures for one indexing run."""

    files_seen: int = 0
    files_skipped: int = 0
    files_indexed: int = 0
    chunks_added: int = 0
    chunks_unchanged: int = 0
    chunks_deleted: int = 0
    chunks_failed: int = 0
    chunks_tracked: int = 0
    failures: list[FileFailure] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, object]:
        return {
            "files_seen": self.files_seen,
            "files_skipped": self.files_skipped,
            "files_indexed": self.files_indexed,
            "chunks_added": self.chunks_added,
            "chunks_unchanged": self.chunks_unchanged,
            "chunks_deleted": self.chunks_deleted,
            "chunks_failed": self.chunks_failed,
            "chunks_tracked": self.chunks_tracked,
            "failures": [{"path": item.path, "message": item.message} for item in self.failures],
            "missing": list(self.missing),
            "duration_ms": self.duration_ms,
        }


class IndexManager:
    """Keeps the remote collection in sync with files under a root."""

    def __init__(self, config: AppConfig, embedder: Embedder, store: VectorStoreSync) -> None:
        self._config = config
        self._store = store
        self._dispatcher = EmbeddingDispatcher(
            embedder=embedder,
            sink=store,
            batch_size=config.index.batch_size,
            embed_delay_seconds=config.index.embed_delay_seconds,
        )
        self._collection_ready = False

    def refresh(self, root: Path) -> IndexReport:
        """Index new and changed files under root and persist state once at the end."""
        start = time.perf_counter()
        report = IndexReport()
        state = IndexState.load(self._config.config_dir)
        self._collection_ready = False

        discovered = discover_files(root, self._config.index)
        report.files_seen = len(discovered)
        for item in discovered:
            if state.last_modified(item.key) == item.last_modified:
                report.files_skipped += 1
                continue
            try:
                self._process_file(item, state, report)
            except (KbIndexError, OSError, UnicodeDecodeError) as error:
                logger.error("indexing %s aborted: %s", item.key, error)
                report.failures.append(FileFailure(path=item.key, message=str(error)))

        report.missing = _missing_paths(root, state, discovered)
        report.chunks_tracked = state.chunk_count()
        state.save(self._config.config_dir)
        report.duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "indexed %d of %d files (%d chunks added, %d deleted, %d failed)",
            report.files_indexed,
            report.files_seen,
            report.chunks_added,
            report.chunks_deleted,
            report.chunks_failed,
        )
        return report

    def _process_file(self, item: DiscoveredFile, state: IndexState, report: IndexReport) -> None:
        previous = state.get(item.key)
        text = item.path.read_text(encoding="utf-8")
        chunks = chunk_text(text, chunk_lines=self._config.index.chunk_lines)
        diff = plan_file_update(previous, chunks, self._config.index.max_chunk_chars)
        report.chunks_unchanged += len(diff.unchanged)

        outcomes: list[ChunkOutcome] = []
        if diff.new:
            self._ensure_collection()
            outcomes = self._dispatcher.dispatch(item.key, diff.new)
        succeeded = [outcome for outcome in outcomes if outcome.ok]
        failed = [outcome for outcome in outcomes if not outcome.ok]
        report.chunks_added += len(succeeded)
        report.chunks_failed += len(failed)

        # A file with failed chunks keeps its previous mtime so the next run retries them.
        previous_mtime = previous.last_modified if previous is not None else 0
        last_modified = item.last_modified if not failed else previous_mtime

        if diff.stale:
            try:
                self._ensure_collection()
                self._store.delete([chunk.id for chunk in diff.stale])
            except KbIndexError:
                state.upsert(_record(item.key, previous_mtime, diff, succeeded, keep_stale=True))
                raise
            report.chunks_deleted += len(diff.stale)

        state.upsert(_record(item.key, last_modified, diff, succeeded, keep_stale=False))
        report.files_indexed += 1
        if failed:
            summary = f"{len(failed)} of {len(outcomes)} new chunks failed"
            report.failures.append(
                FileFailure(path=item.key, message=f"{summary}: {failed[0].error}")
            )

    def _ensure_collection(self) -> None:
        if self._collection_ready:
            return
        self._store.ensure_collection()
        self._collection_ready = True


def _record(
    path: str,
    last_modified: int,
    diff: ChunkDiff,
    succeeded: list[ChunkOutcome],
    keep_stale: bool,
) -> FileRecord:
    carried = diff.unchanged + diff.stale if keep_stale else diff.unchanged
    return FileRecord(
        path=path,
        last_modified=last_modified,
        chunks=merge_chunks(carried, succeeded),
    )


def _missing_paths(root: Path, state: IndexState, discovered: list[DiscoveredFile]) -> list[str]:
    """Tracked paths under root that no longer exist; their records are kept."""
    resolved = root.resolve()
    if not resolved.is_dir():
        return []
    present = {item.key for item in discovered}
    missing: list[str] = []
    for key in sorted(state.files):
        if key in present:
            continue
        candidate = Path(key)
        if candidate.is_relative_to(resolved) and not candidate.exists():
            missing.append(key)
    return missing
