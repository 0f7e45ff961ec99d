"""Incremental indexing package."""

from .chunking import chunk_text, hash_chunk
from .diff import merge_chunks, plan_file_update
from .discovery import DiscoveredFile, discover_files
from .dispatcher import EmbeddingDispatcher
from .manager import FileFailure, IndexManager, IndexReport
from .models import ChunkDiff, ChunkOutcome, ChunkRecord, FileRecord, PendingChunk
from .state import INDEX_STATE_FILE, IndexState

__all__ = [
    "ChunkDiff",
    "ChunkOutcome",
    "ChunkRecord",
    "DiscoveredFile",
    "EmbeddingDispatcher",
    "FileFailure",
    "FileRecord",
    "INDEX_STATE_FILE",
    "IndexManager",
    "IndexReport",
    "IndexState",
    "PendingChunk",
    "chunk_text",
    "discover_files",
    "hash_chunk",
    "merge_chunks",
    "plan_file_update",
]
