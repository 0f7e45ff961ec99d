from __future__ import annotations

from dataclasses import replace

import pytest
import requests
from conftest import OPENAI, FakeHttpSession, FakeResponse, FakeServices

from kb_index.clients import ChatClient, ChatMessage, EmbeddingClient
from kb_index.config import AppConfig
from kb_index.errors import ConfigError, ParseError, RemoteServiceError


def test_clients_require_an_api_key(app_config: AppConfig, fake_session: FakeHttpSession) -> None:
    config = replace(app_config, openai=replace(app_config.openai, api_key=None))

    with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
        EmbeddingClient(config, session=fake_session)
    with pytest.raises(ConfigError):
        ChatClient(config, session=fake_session)
    assert fake_session.calls == []


def test_embedding_request_shape_and_auth(
    app_config: AppConfig, fake_session: FakeHttpSession, services: FakeServices
) -> None:
    client = EmbeddingClient(app_config, session=fake_session)

    vector = client.embed("hello")

    assert len(vector) == 3
    assert fake_session.calls == [
        ("POST", f"{OPENAI}/embeddings", {"input": ["hello"], "model": "text-embedding-3-large"})
    ]
    assert fake_session.headers[0]["Authorization"] == "Bearer sk-test"


def test_embed_many_keeps_input_order(
    app_config: AppConfig, fake_session: FakeHttpSession, services: FakeServices
) -> None:
    client = EmbeddingClient(app_config, session=fake_session)

    vectors = client.embed_many(["a", "bb"])

    assert vectors[0] != vectors[1]
    assert vectors == [client.embed("a"), client.embed("bb")]


def test_embedding_rejection_is_remote_error(
    app_config: AppConfig, fake_session: FakeHttpSession
) -> None:
    fake_session.route(
        "POST", f"{OPENAI}/embeddings", lambda _: FakeResponse(401, text='{"error": "bad key"}')
    )

    with pytest.raises(RemoteServiceError) as info:
        EmbeddingClient(app_config, session=fake_session).embed("x")

    assert info.value.status == 401
    assert "bad key" in info.value.body
    assert not isinstance(info.value, ParseError)


@pytest.mark.parametrize(
    "payload",
    [{}, {"data": []}, {"data": [{"embedding": "nope"}]}, {"data": [{"embedding": []}]}],
)
def test_malformed_embedding_response_is_parse_error(
    app_config: AppConfig, fake_session: FakeHttpSession, payload: object
) -> None:
    fake_session.route("POST", f"{OPENAI}/embeddings", lambda _: FakeResponse(200, payload))

    with pytest.raises(ParseError):
        EmbeddingClient(app_config, session=fake_session).embed("x")


def test_transport_failure_is_remote_error(
    app_config: AppConfig, fake_session: FakeHttpSession
) -> None:
    def refuse(_: object) -> FakeResponse:
        raise requests.ConnectionError("connection refused")

    fake_session.route("POST", f"{OPENAI}/embeddings", refuse)

    with pytest.raises(RemoteServiceError, match="connection refused") as info:
        EmbeddingClient(app_config, session=fake_session).embed("x")

    assert info.value.status is None


def test_chat_sends_messages_with_model_and_temperature(
    app_config: AppConfig, fake_session: FakeHttpSession, services: FakeServices
) -> None:
    client = ChatClient(app_config, session=fake_session)

    answer = client.complete(
        [ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="hi")]
    )

    assert answer == "answer 1"
    assert services.chat_requests == [
        {
            "model": "gpt-4",
            "messages": [
                {"role": "system", "content": "sys"},
                {"role": "user", "content": "hi"},
            ],
            "temperature": 0.4,
        }
    ]


@pytest.mark.parametrize(
    "payload",
    [{"choices": []}, {"choices": [{"message": {}}]}, {"choices": [{"message": {"content": 3}}]}],
)
def test_malformed_chat_response_is_parse_error(
    app_config: AppConfig, fake_session: FakeHttpSession, payload: object
) -> None:
    fake_session.route("POST", f"{OPENAI}/chat/completions", lambda _: FakeResponse(200, payload))

    with pytest.raises(ParseError):
        ChatClient(app_config, session=fake_session).complete([])
