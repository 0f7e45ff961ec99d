"""Vector-store synchronizer for the Chroma v2 REST API."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import requests

from kb_index.clients.http import JsonResponse, JsonTransport
from kb_index.config import AppConfig
from kb_index.errors import ParseError, RemoteServiceError

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "<unknown>"
_CONFLICT = 409


@dataclass(slots=True, frozen=True)
class SearchHit:
    """One nearest-neighbor result."""

    index: int
    source: str
    distance: float
    content: str

    def to_dict(self) -> dict[str, object]:
        return {
            "index": self.index,
            "source": self.source,
            "distance": self.distance,
            "content": self.content,
        }


@dataclass(slots=True, frozen=True)
class QueryResult:
    """Hits returned for one query embedding, nearest first."""

    hits: tuple[SearchHit, ...]


class VectorStoreClient:
    """Creates, mutates and searches one named collection.

    The collection id is looked up by name on every mutation or query; it is
    never cached between calls.
    """

    def __init__(self, config: AppConfig, session: requests.Session | None = None) -> None:
        chroma = config.chroma
        self._collection = chroma.collection
        self._collections_url = (
            f"{chroma.host}/api/v2/tenants/{chroma.tenant}"
            f"/databases/{chroma.database}/collections"
        )
        self._transport = JsonTransport(
            service="vector-store",
            timeout_seconds=config.request_timeout_seconds,
            session=session,
        )

    def ensure_collection(self) -> None:
        """Create the collection, treating an existing one as success."""
        response = self._transport.call(
            "POST", self._collections_url, {"name": self._collection}, accept=(_CONFLICT,)
        )
        if response.status != _CONFLICT:
            logger.info("created collection %s", self._collection)

    def collection_id(self) -> str:
        """Resolve the collection's opaque id from the collection listing."""
        response = self._transport.call("GET", self._collections_url)
        listing = response.json()
        if not isinstance(listing, list):
            raise ParseError(
                "vector-store", "collection listing is not a list", response.status, response.body
            )
        for item in listing:
            if not isinstance(item, dict) or item.get("name") != self._collection:
                continue
            collection_id = item.get("id")
            if isinstance(collection_id, str) and collection_id:
                return collection_id
            raise ParseError("vector-store", f"collection '{self._collection}' has no id")
        raise RemoteServiceError("vector-store", f"collection '{self._collection}' not found")

    def add(
        self,
        chunk_id: str,
        text: str,
        embedding: Sequence[float],
        metadata: dict[str, str],
    ) -> None:
        """Store one chunk with its embedding and metadata."""
        self._transport.call(
            "POST",
            self._collection_url("add"),
            {
                "ids": [chunk_id],
                "documents": [text],
                "embeddings": [list(embedding)],
                "metadatas": [dict(metadata)],
            },
        )

    def delete(self, ids: Sequence[str]) -> None:
        """Remove chunks by id."""
        if not ids:
            return
        self._transport.call("POST", self._collection_url("delete"), {"ids": list(ids)})
        logger.debug("deleted %d chunks from %s", len(ids), self._collection)

    def query(self, embedding: Sequence[float], top_k: int) -> QueryResult:
        """Return up to top_k nearest chunks for an embedding."""
        response = self._transport.call(
            "POST",
            self._collection_url("query"),
            {"query_embeddings": [list(embedding)], "n_results": top_k},
        )
        return parse_query_response(response)

    def _collection_url(self, operation: str) -> str:
        return f"{self._collections_url}/{self.collection_id()}/{operation}"


def parse_query_response(response: JsonResponse) -> QueryResult:
    """Build typed hits from the parallel documents/metadatas/distances arrays."""
    payload = response.json()
    if not isinstance(payload, dict):
        raise ParseError("vector-store", "query response is not an object", response.status)
    documents = _first_row(payload, "documents", response)
    metadatas = _first_row(payload, "metadatas", response)
    distances = _first_row(payload, "distances", response)
    if not len(documents) == len(metadatas) == len(distances):
        raise ParseError(
            "vector-store", "query response arrays differ in length", response.status
        )

    hits: list[SearchHit] = []
    for position, (document, metadata, distance) in enumerate(
        zip(documents, metadatas, distances), start=1
    ):
        if not isinstance(document, str):
            raise ParseError("vector-store", f"document {position} is not text", response.status)
        if isinstance(distance, bool) or not isinstance(distance, (int, float)):
            raise ParseError(
                "vector-store", f"distance {position} is not a number", response.status
            )
        source = metadata.get("source") if isinstance(metadata, dict) else None
        hits.append(
            SearchHit(
                index=position,
                source=source if isinstance(source, str) else UNKNOWN_SOURCE,
                distance=float(distance),
                content=document,
            )
        )
    return QueryResult(hits=tuple(hits))


def _first_row(payload: dict[str, object], key: str, response: JsonResponse) -> list[object]:
    outer = payload.get(key)
    if not isinstance(outer, list) or not outer or not isinstance(outer[0], list):
        raise ParseError("vector-store", f"no {key} in query response", response.status)
    return outer[0]
