"""JSON-over-HTTP transport shared by the remote service clients."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

import requests

from kb_index.errors import ParseError, RemoteServiceError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class JsonResponse:
    """Status and raw body of one remote call."""

    service: str
    status: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> object:
        """Decode the body, treating malformed JSON as a parse failure."""
        try:
            return json.loads(self.body)
        except json.JSONDecodeError as error:
            raise ParseError(
                self.service, f"response is not valid JSON ({error})", self.status, self.body
            ) from error


class JsonTransport:
    """Issues JSON requests and maps failures to RemoteServiceError.

    There is no retry here; a failed call aborts the operation that made it.
    """

    def __init__(
        self,
        service: str,
        timeout_seconds: float,
        headers: dict[str, str] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._service = service
        self._timeout_seconds = timeout_seconds
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._session = session or requests.Session()

    def send(self, method: str, url: str, payload: object | None = None) -> JsonResponse:
        """Send a request and return the response whatever its status."""
        logger.debug("%s %s %s", self._service, method, url)
        try:
            response = self._session.request(
                method,
                url,
                json=payload,
                headers=self._headers,
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as error:
            raise RemoteServiceError(self._service, f"{method} {url} failed: {error}") from error
        return JsonResponse(service=self._service, status=response.status_code, body=response.text)

    def call(
        self,
        method: str,
        url: str,
        payload: object | None = None,
        accept: tuple[int, ...] = (),
    ) -> JsonResponse:
        """Send a request, raising unless it succeeded or its status is accepted."""
        response = self.send(method, url, payload)
        if response.ok or response.status in accept:
            return response
        raise RemoteServiceError(
            self._service, f"{method} {url} was rejected", response.status, response.body
        )
