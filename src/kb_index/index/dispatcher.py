"""Bounded-concurrency embed-and-upload dispatch."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Protocol

from kb_index.config import DEFAULT_BATCH_SIZE, DEFAULT_EMBED_DELAY_SECONDS
from kb_index.errors import KbIndexError
from kb_index.index.models import ChunkOutcome, ChunkRecord, PendingChunk

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


class ChunkSink(Protocol):
    def add(
        self,
        chunk_id: str,
        text: str,
        embedding: Sequence[float],
        metadata: dict[str, str],
    ) -> None: ...


def _new_chunk_id() -> str:
    return str(uuid.uuid4())


class EmbeddingDispatcher:
    """Runs chunk pipelines in fixed-size batches.

    At most `batch_size` pipelines are in flight, and each batch drains fully
    before the next one starts. A failing pipeline never cancels its siblings;
    its failure is reported in the returned outcomes.
    """

    def __init__(
        self,
        embedder: Embedder,
        sink: ChunkSink,
        batch_size: int = DEFAULT_BATCH_SIZE,
        embed_delay_seconds: float = DEFAULT_EMBED_DELAY_SECONDS,
        id_factory: Callable[[], str] = _new_chunk_id,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._embedder = embedder
        self._sink = sink
        self._batch_size = batch_size
        self._embed_delay_seconds = embed_delay_seconds
        self._id_factory = id_factory
        self._sleep = sleep

    def dispatch(self, source: str, pending: Sequence[PendingChunk]) -> list[ChunkOutcome]:
        """Embed and upload pending chunks, returning outcomes in input order."""
        if not pending:
            return []
        outcomes: dict[int, ChunkOutcome] = {}
        with ThreadPoolExecutor(
            max_workers=self._batch_size, thread_name_prefix="kb-embed"
        ) as executor:
            for start in range(0, len(pending), self._batch_size):
                batch = pending[start : start + self._batch_size]
                futures = {
                    executor.submit(self._run_pipeline, source, chunk): start + offset
                    for offset, chunk in enumerate(batch)
                }
                for future in as_completed(futures):
                    outcomes[futures[future]] = future.result()
        return [outcomes[index] for index in range(len(pending))]

    def _run_pipeline(self, source: str, chunk: PendingChunk) -> ChunkOutcome:
        try:
            if self._embed_delay_seconds > 0:
                self._sleep(self._embed_delay_seconds)
            embedding = self._embedder.embed(chunk.text)
            chunk_id = self._id_factory()
            self._sink.add(chunk_id, chunk.text, embedding, {"source": source})
        except KbIndexError as error:
            logger.warning("chunk %s of %s failed: %s", chunk.hash[:12], source, error)
            return ChunkOutcome(hash=chunk.hash, record=None, error=str(error))
        logger.debug("indexed chunk %s of %s (%d chars)", chunk.hash[:12], source, len(chunk.text))
        return ChunkOutcome(
            hash=chunk.hash,
            record=ChunkRecord(id=chunk_id, hash=chunk.hash),
            error=None,
        )
