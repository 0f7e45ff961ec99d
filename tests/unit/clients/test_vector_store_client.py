from __future__ import annotations

import pytest
from conftest import COLLECTION_ID, COLLECTIONS_URL, FakeHttpSession, FakeResponse, FakeServices

from kb_index.clients import JsonResponse, VectorStoreClient, parse_query_response
from kb_index.config import AppConfig
from kb_index.errors import ParseError, RemoteServiceError


def test_ensure_collection_treats_conflict_as_success(
    app_config: AppConfig, fake_session: FakeHttpSession, services: FakeServices
) -> None:
    client = VectorStoreClient(app_config, session=fake_session)

    client.ensure_collection()
    client.ensure_collection()

    posts = [call for call in fake_session.calls if call[1] == COLLECTIONS_URL]
    assert posts == [("POST", COLLECTIONS_URL, {"name": "kb_index"})] * 2


def test_add_and_delete_resolve_collection_id_each_time(
    app_config: AppConfig, fake_session: FakeHttpSession, services: FakeServices
) -> None:
    client = VectorStoreClient(app_config, session=fake_session)
    client.ensure_collection()

    client.add("c1", "text", [0.1, 0.2], {"source": "/repo/a.md"})
    client.delete(["c1"])

    assert fake_session.urls("GET") == [COLLECTIONS_URL, COLLECTIONS_URL]
    assert fake_session.calls[2] == (
        "POST",
        f"{COLLECTIONS_URL}/{COLLECTION_ID}/add",
        {
            "ids": ["c1"],
            "documents": ["text"],
            "embeddings": [[0.1, 0.2]],
            "metadatas": [{"source": "/repo/a.md"}],
        },
    )
    assert services.documents == {}


def test_delete_of_nothing_makes_no_call(
    app_config: AppConfig, fake_session: FakeHttpSession
) -> None:
    VectorStoreClient(app_config, session=fake_session).delete([])

    assert fake_session.calls == []


def test_missing_collection_is_a_remote_error(
    app_config: AppConfig, fake_session: FakeHttpSession, services: FakeServices
) -> None:
    client = VectorStoreClient(app_config, session=fake_session)

    with pytest.raises(RemoteServiceError, match="collection 'kb_index' not found"):
        client.query([1.0], top_k=3)


def test_rejected_request_carries_status_and_body(
    app_config: AppConfig, fake_session: FakeHttpSession
) -> None:
    fake_session.route("POST", COLLECTIONS_URL, lambda _: FakeResponse(503, text="overloaded"))
    client = VectorStoreClient(app_config, session=fake_session)

    with pytest.raises(RemoteServiceError) as info:
        client.ensure_collection()

    assert info.value.status == 503
    assert info.value.body == "overloaded"
    assert info.value.service == "vector-store"


def test_query_returns_typed_hits(
    app_config: AppConfig, fake_session: FakeHttpSession, services: FakeServices
) -> None:
    client = VectorStoreClient(app_config, session=fake_session)
    client.ensure_collection()
    client.add("c1", "alpha", [1.0], {"source": "/repo/a.md"})
    client.add("c2", "beta", [1.0], {})

    result = client.query([1.0], top_k=5)

    assert [(hit.index, hit.source, hit.content) for hit in result.hits] == [
        (1, "/repo/a.md", "alpha"),
        (2, "<unknown>", "beta"),
    ]
    assert result.hits[0].distance == pytest.approx(0.1)
    sent = fake_session.calls[-1][2]
    assert sent == {"query_embeddings": [[1.0]], "n_results": 5}


def test_query_response_without_rows_is_a_parse_error() -> None:
    response = JsonResponse(service="vector-store", status=200, body='{"documents": []}')

    with pytest.raises(ParseError):
        parse_query_response(response)


def test_query_response_with_uneven_rows_is_a_parse_error() -> None:
    body = '{"documents": [["a", "b"]], "metadatas": [[{}]], "distances": [[0.1, 0.2]]}'

    with pytest.raises(ParseError, match="differ in length"):
        parse_query_response(JsonResponse(service="vector-store", status=200, body=body))


def test_non_json_body_is_a_parse_error() -> None:
    with pytest.raises(ParseError) as info:
        JsonResponse(service="vector-store", status=200, body="<html>").json()

    assert info.value.body == "<html>"
