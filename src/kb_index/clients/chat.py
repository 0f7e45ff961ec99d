"""Chat/completion provider client."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import requests

from kb_index.clients.http import JsonTransport
from kb_index.config import AppConfig
from kb_index.errors import ParseError


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """One role-tagged message sent to the chat model."""

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatClient:
    """Answers an ordered message list via an OpenAI-compatible endpoint."""

    def __init__(self, config: AppConfig, session: requests.Session | None = None) -> None:
        api_key = config.require_api_key()
        self._model = config.openai.completion_model
        self._temperature = config.openai.temperature
        self._url = f"{config.openai.base_url}/chat/completions"
        self._transport = JsonTransport(
            service="chat",
            timeout_seconds=config.request_timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
            session=session,
        )

    def complete(self, messages: Sequence[ChatMessage]) -> str:
        """Return the model's answer to the conversation."""
        response = self._transport.call(
            "POST",
            self._url,
            {
                "model": self._model,
                "messages": [message.to_dict() for message in messages],
                "temperature": self._temperature,
            },
        )
        payload = response.json()
        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise ParseError("chat", "response has no choices", response.status, response.body)
        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise ParseError(
                "chat", "first choice has no message content", response.status, response.body
            )
        return content
