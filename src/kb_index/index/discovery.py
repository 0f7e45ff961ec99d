"""Deterministic file discovery honoring extension and ignore rules."""

from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass
from pathlib import Path

import pathspec

from kb_index.config import IndexConfig
from kb_index.errors import ConfigError

_BINARY_SNIFF_BYTES = 4096

# An ignore spec and the directory its patterns are relative to.
_ScopedSpec = tuple[Path, pathspec.PathSpec]


@dataclass(slots=True, frozen=True)
class DiscoveredFile:
    """A readable candidate file and its modification time."""

    path: Path
    key: str
    last_modified: int


def discover_files(root: Path, config: IndexConfig) -> list[DiscoveredFile]:
    """Discover indexable text files under root, ordered by path.

    A file given as root is returned alone when its extension is allowed.
    Ignore files apply to their own directory and everything below it.
    """
    resolved = root.resolve()
    if not resolved.exists():
        raise ConfigError(f"Index path not found: {root}")
    include_extensions = {item.lower() for item in config.file_extensions}
    if resolved.is_file():
        if resolved.suffix.lower() not in include_extensions:
            return []
        return [_discovered(resolved)]

    files: list[DiscoveredFile] = []
    stack: list[tuple[Path, tuple[_ScopedSpec, ...]]] = [(resolved, ())]
    while stack:
        current, inherited = stack.pop()
        try:
            with os.scandir(current) as entries:
                ordered_entries = sorted(entries, key=lambda item: item.name)
        except OSError:
            continue
        scoped = inherited
        local_spec = load_ignore_spec(current, config.ignore_files)
        if local_spec is not None:
            scoped = (*inherited, (current, local_spec))
        for entry in reversed(ordered_entries):
            full_path = Path(entry.path)
            relative = full_path.relative_to(resolved).as_posix()
            if entry.is_dir(follow_symlinks=False):
                if should_exclude(f"{relative}/", config.exclude_globs) or _is_ignored(
                    scoped, full_path, is_dir=True
                ):
                    continue
                stack.append((full_path, scoped))
                continue
            if not entry.is_file(follow_symlinks=False):
                continue
            if should_exclude(relative, config.exclude_globs) or _is_ignored(scoped, full_path):
                continue
            if full_path.suffix.lower() not in include_extensions:
                continue
            try:
                if is_binary_file(full_path):
                    continue
                files.append(_discovered(full_path))
            except OSError:
                continue
    files.sort(key=lambda item: item.key)
    return files


def load_ignore_spec(directory: Path, ignore_files: tuple[str, ...]) -> pathspec.PathSpec | None:
    """Combine gitignore-style patterns from the ignore files in one directory."""
    patterns: list[str] = []
    for name in ignore_files:
        ignore_path = directory / name
        if not ignore_path.is_file():
            continue
        patterns.extend(ignore_path.read_text(encoding="utf-8", errors="replace").splitlines())
    if not patterns:
        return None
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def should_exclude(relative_path: str, exclude_globs: tuple[str, ...]) -> bool:
    """Return True when a path matches configured exclude globs."""
    anchored = f"/{relative_path}"
    return any(
        fnmatch.fnmatch(relative_path, pattern) or fnmatch.fnmatch(anchored, pattern)
        for pattern in exclude_globs
    )


def is_binary_file(path: Path) -> bool:
    """Use content sniffing to skip files that are not UTF-8 text."""
    with path.open("rb") as handle:
        sample = handle.read(_BINARY_SNIFF_BYTES)
    if b"\x00" in sample:
        return True
    try:
        sample.decode("utf-8")
    except UnicodeDecodeError as error:
        # A multi-byte sequence cut off at the sniff boundary is still text.
        truncated = len(sample) == _BINARY_SNIFF_BYTES and error.start >= len(sample) - 3
        return not truncated
    return False


def file_mtime_seconds(path: Path) -> int:
    """Return modification time in whole epoch seconds."""
    return int(path.stat().st_mtime)


def _discovered(path: Path) -> DiscoveredFile:
    return DiscoveredFile(path=path, key=path.as_posix(), last_modified=file_mtime_seconds(path))


def _is_ignored(scoped: tuple[_ScopedSpec, ...], path: Path, is_dir: bool = False) -> bool:
    for base, spec in scoped:
        relative = path.relative_to(base).as_posix()
        if spec.match_file(f"{relative}/" if is_dir else relative):
            return True
    return False
