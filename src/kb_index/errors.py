"""Error taxonomy shared by every kb-index component."""

from __future__ import annotations


class KbIndexError(Exception):
    """Base class for failures surfaced to the command line."""

    code = "KB_INDEX_ERROR"


class ConfigError(KbIndexError):
    """Raised when configuration is missing or malformed."""

    code = "CONFIG_ERROR"


class RemoteServiceError(KbIndexError):
    """Raised when an embedding, chat or vector-store call does not succeed."""

    code = "REMOTE_SERVICE_ERROR"

    def __init__(
        self, service: str, message: str, status: int | None = None, body: str = ""
    ) -> None:
        detail = f"{service}: {message}"
        if status is not None:
            detail = f"{detail} (HTTP {status})"
        if body:
            detail = f"{detail} - {body}"
        super().__init__(detail)
        self.service = service
        self.status = status
        self.body = body


class ParseError(RemoteServiceError):
    """Raised when a remote response is not shaped as expected."""

    code = "PARSE_ERROR"


class StateError(KbIndexError):
    """Raised for invalid operations against local session or snapshot state."""

    code = "STATE_ERROR"


class SessionNotFoundError(StateError):
    """Raised when switching to a session id that does not exist."""

    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class NoActiveSessionError(StateError):
    """Raised when an interaction is recorded without an active session."""

    code = "NO_ACTIVE_SESSION"

    def __init__(self) -> None:
        super().__init__("No active session. Start one with 'kb-index query --session new'.")


class StateSchemaError(StateError):
    """Raised when a stored snapshot carries an unsupported schema version."""

    code = "STATE_SCHEMA_UNSUPPORTED"

    def __init__(self, path: str, found: object, expected: int) -> None:
        super().__init__(
            f"Snapshot {path} has schema_version {found!r}; expected {expected}."
        )
        self.path = path
        self.found = found
        self.expected = expected
