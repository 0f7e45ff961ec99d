"""Embedding provider client."""

from __future__ import annotations

from collections.abc import Sequence

import requests

from kb_index.clients.http import JsonTransport
from kb_index.config import AppConfig
from kb_index.errors import ParseError


class EmbeddingClient:
    """Turns text into fixed-length vectors via an OpenAI-compatible endpoint."""

    def __init__(self, config: AppConfig, session: requests.Session | None = None) -> None:
        api_key = config.require_api_key()
        self._model = config.openai.embedding_model
        self._url = f"{config.openai.base_url}/embeddings"
        self._transport = JsonTransport(
            service="embeddings",
            timeout_seconds=config.request_timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
            session=session,
        )

    def embed(self, text: str) -> list[float]:
        """Return the embedding of one text."""
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one embedding per input text, in input order."""
        response = self._transport.call(
            "POST", self._url, {"input": list(texts), "model": self._model}
        )
        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or len(data) != len(texts):
            raise ParseError(
                "embeddings",
                f"expected {len(texts)} embeddings in 'data'",
                response.status,
                response.body,
            )
        vectors: list[list[float]] = []
        for item in data:
            vector = item.get("embedding") if isinstance(item, dict) else None
            if not _is_vector(vector):
                raise ParseError(
                    "embeddings", "embedding is not a list of numbers", response.status
                )
            vectors.append([float(value) for value in vector])
        return vectors


def _is_vector(value: object) -> bool:
    if not isinstance(value, list) or not value:
        return False
    return all(
        isinstance(item, (int, float)) and not isinstance(item, bool) for item in value
    )
