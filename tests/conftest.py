from __future__ import annotations

import json
import threading
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import pytest

from kb_index.config import AppConfig, default_config

CHROMA = "http://localhost:8000"
COLLECTIONS_URL = (
    f"{CHROMA}/api/v2/tenants/default_tenant/databases/default_database/collections"
)
OPENAI = "https://api.openai.com/v1"
COLLECTION_ID = "col-0001"


class FakeResponse:
    def __init__(self, status_code: int, payload: object = None, text: str | None = None) -> None:
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)


Handler = Callable[[object], FakeResponse]


class FakeHttpSession:
    """Routes requests by method and URL to handlers and records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, object]] = []
        self.headers: list[dict[str, str]] = []
        self._routes: dict[tuple[str, str], Handler] = {}
        self._lock = threading.Lock()

    def route(self, method: str, url: str, handler: Handler) -> None:
        self._routes[(method, url)] = handler

    def request(
        self,
        method: str,
        url: str,
        json: object = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> FakeResponse:
        with self._lock:
            self.calls.append((method, url, json))
            self.headers.append(dict(headers or {}))
            handler = self._routes.get((method, url))
        if handler is None:
            return FakeResponse(404, text=f"no route for {method} {url}")
        return handler(json)

    def urls(self, method: str | None = None) -> list[str]:
        return [url for verb, url, _ in self.calls if method is None or verb == method]


def fake_vector(text: str) -> list[float]:
    """Deterministic three-dimensional embedding for test text."""
    return [1.0, float(len(text) % 17), float(sum(text.encode("utf-8")) % 23)]


class FakeServices:
    """In-memory embedding, chat and vector-store endpoints."""

    def __init__(self, session: FakeHttpSession) -> None:
        self.session = session
        self.documents: dict[str, tuple[str, dict[str, str]]] = {}
        self.collection_created = False
        self.answers: list[str] = []
        self.chat_requests: list[object] = []
        self.fail_embedding_for: set[str] = set()
        self.fail_delete = False
        self._lock = threading.Lock()
        session.route("POST", COLLECTIONS_URL, self._create)
        session.route("GET", COLLECTIONS_URL, self._list)
        session.route("POST", f"{COLLECTIONS_URL}/{COLLECTION_ID}/add", self._add)
        session.route("POST", f"{COLLECTIONS_URL}/{COLLECTION_ID}/delete", self._delete)
        session.route("POST", f"{COLLECTIONS_URL}/{COLLECTION_ID}/query", self._query)
        session.route("POST", f"{OPENAI}/embeddings", self._embed)
        session.route("POST", f"{OPENAI}/chat/completions", self._chat)

    def _create(self, payload: object) -> FakeResponse:
        with self._lock:
            if self.collection_created:
                return FakeResponse(409, {"error": "exists"})
            self.collection_created = True
        return FakeResponse(200, {"id": COLLECTION_ID, "name": "kb_index"})

    def _list(self, payload: object) -> FakeResponse:
        listing = [{"id": COLLECTION_ID, "name": "kb_index"}] if self.collection_created else []
        return FakeResponse(200, listing)

    def _add(self, payload: object) -> FakeResponse:
        assert isinstance(payload, dict)
        with self._lock:
            for chunk_id, document, metadata in zip(
                payload["ids"], payload["documents"], payload["metadatas"]
            ):
                self.documents[chunk_id] = (document, metadata)
        return FakeResponse(200, True)

    def _delete(self, payload: object) -> FakeResponse:
        if self.fail_delete:
            return FakeResponse(500, text="delete failed")
        assert isinstance(payload, dict)
        with self._lock:
            for chunk_id in payload["ids"]:
                self.documents.pop(chunk_id, None)
        return FakeResponse(200, payload["ids"])

    def _query(self, payload: object) -> FakeResponse:
        assert isinstance(payload, dict)
        items = sorted(self.documents.values(), key=lambda item: item[0])[: payload["n_results"]]
        return FakeResponse(
            200,
            {
                "ids": [[f"id-{index}" for index in range(len(items))]],
                "documents": [[document for document, _ in items]],
                "metadatas": [[metadata for _, metadata in items]],
                "distances": [[0.1 * (index + 1) for index in range(len(items))]],
            },
        )

    def _embed(self, payload: object) -> FakeResponse:
        assert isinstance(payload, dict)
        texts = payload["input"]
        if any(text in self.fail_embedding_for for text in texts):
            return FakeResponse(429, text="rate limited")
        return FakeResponse(
            200,
            {"data": [{"index": i, "embedding": fake_vector(t)} for i, t in enumerate(texts)]},
        )

    def _chat(self, payload: object) -> FakeResponse:
        with self._lock:
            self.chat_requests.append(payload)
            answer = f"answer {len(self.chat_requests)}"
            self.answers.append(answer)
        message = {"role": "assistant", "content": answer}
        return FakeResponse(200, {"choices": [{"message": message}]})


@pytest.fixture
def fake_session() -> FakeHttpSession:
    return FakeHttpSession()


@pytest.fixture
def services(fake_session: FakeHttpSession) -> FakeServices:
    return FakeServices(fake_session)


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Default config with an API key, state under tmp_path and no embed delay."""
    base = default_config(tmp_path / "state")
    return replace(
        base,
        openai=replace(base.openai, api_key="sk-test"),
        index=replace(base.index, embed_delay_seconds=0.0),
    )
