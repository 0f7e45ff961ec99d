"""Query answering, caching and sessions."""

from .cache import (
    QUERY_CACHE_FILE,
    QueryCache,
    QueryCacheEntry,
    cosine_similarity,
    hash_query_context,
)
from .engine import NEW_SESSION, QueryEngine, QueryOutcome
from .formatting import OUTPUT_FORMATS, format_context_chunk, render_answer, render_hits
from .sessions import SESSIONS_FILE, SessionManager, SessionState, build_context_messages

__all__ = [
    "NEW_SESSION",
    "OUTPUT_FORMATS",
    "QUERY_CACHE_FILE",
    "QueryCache",
    "QueryCacheEntry",
    "QueryEngine",
    "QueryOutcome",
    "SESSIONS_FILE",
    "SessionManager",
    "SessionState",
    "build_context_messages",
    "cosine_similarity",
    "format_context_chunk",
    "hash_query_context",
    "render_answer",
    "render_hits",
]
