"""Clients for the embedding, chat and vector-store services."""

from .chat import ChatClient, ChatMessage
from .embedding import EmbeddingClient
from .http import JsonResponse, JsonTransport
from .vector_store import QueryResult, SearchHit, VectorStoreClient, parse_query_response

__all__ = [
    "ChatClient",
    "ChatMessage",
    "EmbeddingClient",
    "JsonResponse",
    "JsonTransport",
    "QueryResult",
    "SearchHit",
    "VectorStoreClient",
    "parse_query_response",
]
