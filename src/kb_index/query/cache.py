"""Exact and embedding-similarity cache of past answers."""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from kb_index.storage import read_snapshot, write_snapshot

QUERY_CACHE_FILE = "query-cache.json"
SIMILARITY_EPSILON = 1e-8


@dataclass(slots=True, frozen=True)
class QueryCacheEntry:
    """One answered query and the context it was answered from."""

    query: str
    context_hash: str
    embedding: tuple[float, ...]
    answer: str


@dataclass(slots=True)
class QueryCache:
    """Append-only list of answered queries.

    Entries are never deduplicated or evicted. Lookups scan in insertion
    order, so the earliest entry wins every tie.
    """

    entries: list[QueryCacheEntry] = field(default_factory=list)

    @classmethod
    def load(cls, config_dir: Path) -> QueryCache:
        payload = read_snapshot(config_dir / QUERY_CACHE_FILE)
        if payload is None:
            return cls()
        raw_entries = payload.get("entries", [])
        if not isinstance(raw_entries, list):
            return cls()
        entries: list[QueryCacheEntry] = []
        for obj in raw_entries:
            if not isinstance(obj, dict):
                continue
            query = obj.get("query")
            context_hash = obj.get("context_hash")
            embedding = obj.get("embedding")
            answer = obj.get("answer")
            if not isinstance(query, str) or not isinstance(answer, str):
                continue
            if not isinstance(context_hash, str):
                continue
            if not isinstance(embedding, list) or not all(
                isinstance(value, (int, float)) and not isinstance(value, bool)
                for value in embedding
            ):
                continue
            entries.append(
                QueryCacheEntry(
                    query=query,
                    context_hash=context_hash,
                    embedding=tuple(float(value) for value in embedding),
                    answer=answer,
                )
            )
        return cls(entries=entries)

    def save(self, config_dir: Path) -> None:
        write_snapshot(
            config_dir / QUERY_CACHE_FILE,
            {
                "entries": [
                    {
                        "query": entry.query,
                        "context_hash": entry.context_hash,
                        "embedding": list(entry.embedding),
                        "answer": entry.answer,
                    }
                    for entry in self.entries
                ]
            },
        )

    def __len__(self) -> int:
        return len(self.entries)

    def get_cached_answer(self, query: str, context_hash: str) -> str | None:
        """Return the stored answer for this exact query and context."""
        for entry in self.entries:
            if entry.query == query and entry.context_hash == context_hash:
                return entry.answer
        return None

    def find_similar(self, embedding: Sequence[float], threshold: float) -> str | None:
        """Return the answer of the most similar entry scoring above threshold."""
        target = np.asarray(embedding, dtype=np.float64)
        best_score: float | None = None
        best_answer: str | None = None
        for entry in self.entries:
            if len(entry.embedding) != target.shape[0]:
                continue
            score = cosine_similarity(np.asarray(entry.embedding, dtype=np.float64), target)
            if score <= threshold:
                continue
            if best_score is None or score > best_score:
                best_score = score
                best_answer = entry.answer
        return best_answer

    def insert_answer(
        self,
        query: str,
        context_hash: str,
        embedding: Sequence[float],
        answer: str,
    ) -> None:
        self.entries.append(
            QueryCacheEntry(
                query=query,
                context_hash=context_hash,
                embedding=tuple(float(value) for value in embedding),
                answer=answer,
            )
        )


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity with an epsilon guarding zero-norm vectors."""
    denominator = float(np.linalg.norm(a)) * float(np.linalg.norm(b)) + SIMILARITY_EPSILON
    return float(np.dot(a, b)) / denominator


def hash_query_context(query: str, context_chunks: Sequence[str]) -> str:
    """Digest a query together with the context chunks retrieved for it."""
    digest = hashlib.sha256()
    digest.update(query.encode("utf-8"))
    for chunk in context_chunks:
        digest.update(chunk.encode("utf-8"))
    return digest.hexdigest()
