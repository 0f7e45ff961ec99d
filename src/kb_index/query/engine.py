"""Query path: cache lookup, vector search, answer synthesis."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from kb_index.clients.chat import ChatMessage
from kb_index.clients.vector_store import QueryResult, SearchHit
from kb_index.config import AppConfig
from kb_index.query.cache import QueryCache, hash_query_context
from kb_index.query.formatting import OUTPUT_FORMATS, format_context_chunk
from kb_index.query.sessions import SessionManager, build_context_messages

logger = logging.getLogger(__name__)

NEW_SESSION = "new"
SYSTEM_PROMPT = "You are an expert personal and code assistant."


class QueryEmbedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


class Searcher(Protocol):
    def query(self, embedding: Sequence[float], top_k: int) -> QueryResult: ...


class Answerer(Protocol):
    def complete(self, messages: Sequence[ChatMessage]) -> str: ...


@dataclass(slots=True, frozen=True)
class QueryOutcome:
    """Everything the caller needs to present one handled query."""

    query: str
    output_format: str
    hits: tuple[SearchHit, ...]
    answer: str | None
    cached: bool
    session_id: str | None
    session_turns: int
    notices: tuple[str, ...]


class QueryEngine:
    """Answers queries, short-circuiting on similar past answers.

    The cache and session snapshots are saved once a query has been handled.
    """

    def __init__(
        self,
        config: AppConfig,
        embedder: QueryEmbedder,
        searcher: Searcher,
        answerer: Answerer,
        cache: QueryCache,
        sessions: SessionManager,
    ) -> None:
        self._config = config
        self._embedder = embedder
        self._searcher = searcher
        self._answerer = answerer
        self._cache = cache
        self._sessions = sessions

    def run(
        self,
        query: str,
        top_k: int | None = None,
        output_format: str = "smart",
        session: str | None = None,
    ) -> QueryOutcome:
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(f"Unknown output format: {output_format}")
        notices = self._resolve_session(session)
        cache_size = len(self._cache)

        embedding = self._embedder.embed(query)
        similar = self._cache.find_similar(embedding, self._config.query.similarity_threshold)
        if similar is not None:
            logger.info("similar cached answer found; skipping search and completion")
            self._sessions.add_interaction(query, similar)
            return self._finish(query, output_format, (), similar, True, notices, cache_size)

        result = self._searcher.query(embedding, top_k or self._config.query.top_k)
        if output_format != "smart":
            return self._finish(query, output_format, result.hits, None, False, notices, cache_size)

        context_chunks = [format_context_chunk(hit) for hit in result.hits]
        context_hash = hash_query_context(query, context_chunks)
        answer = self._cache.get_cached_answer(query, context_hash)
        cached = answer is not None
        if answer is None:
            answer = self._answerer.complete(self.build_messages(query, context_chunks))
            self._cache.insert_answer(query, context_hash, embedding, answer)
        self._sessions.add_interaction(query, answer)
        return self._finish(query, output_format, result.hits, answer, cached, notices, cache_size)

    def build_messages(self, query: str, context_chunks: Sequence[str]) -> list[ChatMessage]:
        """System prompt, windowed session history, then the question with context."""
        messages = [ChatMessage(role="system", content=SYSTEM_PROMPT)]
        messages.extend(
            build_context_messages(
                self._sessions.get_active_session(), self._config.query.history_turns
            )
        )
        context = "\n\n---\n\n".join(context_chunks)
        messages.append(
            ChatMessage(
                role="user",
                content=(
                    "Use the following code snippets to answer the question. "
                    "Format your response in Markdown and include code where necessary.\n\n"
                    f"Question:\n{query}\n\nContext:\n{context}"
                ),
            )
        )
        return messages

    def _resolve_session(self, session: str | None) -> tuple[str, ...]:
        if session == NEW_SESSION:
            return (f"Created new session: {self._sessions.create_session()}",)
        if session is not None:
            self._sessions.set_active_session(session)
            return (f"Switched to session: {session}",)
        if self._sessions.get_active_session() is None:
            return (f"Created default session: {self._sessions.create_session()}",)
        return ()

    def _finish(
        self,
        query: str,
        output_format: str,
        hits: tuple[SearchHit, ...],
        answer: str | None,
        cached: bool,
        notices: tuple[str, ...],
        cache_size: int,
    ) -> QueryOutcome:
        config_dir = self._config.config_dir
        if len(self._cache) != cache_size:
            self._cache.save(config_dir)
        self._sessions.save(config_dir)
        active = self._sessions.get_active_session()
        return QueryOutcome(
            query=query,
            output_format=output_format,
            hits=hits,
            answer=answer,
            cached=cached,
            session_id=active.id if active is not None else None,
            session_turns=active.turn_count if active is not None else 0,
            notices=notices,
        )
