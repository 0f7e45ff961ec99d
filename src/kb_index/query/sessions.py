"""Multi-turn query sessions and their LLM context window."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from kb_index.clients.chat import ChatMessage
from kb_index.config import DEFAULT_HISTORY_TURNS
from kb_index.errors import NoActiveSessionError, SessionNotFoundError
from kb_index.storage import read_snapshot, write_snapshot

SESSIONS_FILE = "sessions.json"


@dataclass(slots=True)
class SessionState:
    """Ordered query/answer turns; queries and responses always pair up."""

    id: str
    queries: list[str] = field(default_factory=list)
    responses: list[str] = field(default_factory=list)
    created_at: int = 0
    last_updated: int = 0

    @property
    def turn_count(self) -> int:
        return len(self.queries)

    def turns(self) -> list[tuple[str, str]]:
        return list(zip(self.queries, self.responses))


def _now() -> int:
    return int(time.time())


def _new_session_id() -> str:
    return str(uuid.uuid4())


class SessionManager:
    """Tracks all sessions and the active one."""

    def __init__(
        self,
        sessions: dict[str, SessionState] | None = None,
        active_session: str | None = None,
        clock: Callable[[], int] = _now,
        id_factory: Callable[[], str] = _new_session_id,
    ) -> None:
        self.sessions: dict[str, SessionState] = sessions or {}
        self.active_session = active_session if active_session in self.sessions else None
        self._clock = clock
        self._id_factory = id_factory

    @classmethod
    def load(
        cls,
        config_dir: Path,
        clock: Callable[[], int] = _now,
        id_factory: Callable[[], str] = _new_session_id,
    ) -> SessionManager:
        payload = read_snapshot(config_dir / SESSIONS_FILE)
        if payload is None:
            return cls(clock=clock, id_factory=id_factory)
        raw_sessions = payload.get("sessions", {})
        sessions: dict[str, SessionState] = {}
        if isinstance(raw_sessions, dict):
            for session_id, obj in raw_sessions.items():
                session = _session_from_dict(session_id, obj)
                if session is not None:
                    sessions[session_id] = session
        active = payload.get("active_session")
        return cls(
            sessions=sessions,
            active_session=active if isinstance(active, str) else None,
            clock=clock,
            id_factory=id_factory,
        )

    def save(self, config_dir: Path) -> None:
        write_snapshot(
            config_dir / SESSIONS_FILE,
            {
                "active_session": self.active_session,
                "sessions": {
                    session_id: {
                        "id": session.id,
                        "queries": list(session.queries),
                        "responses": list(session.responses),
                        "created_at": session.created_at,
                        "last_updated": session.last_updated,
                    }
                    for session_id, session in sorted(self.sessions.items())
                },
            },
        )

    def create_session(self) -> str:
        """Start an empty session and make it active."""
        session_id = self._id_factory()
        now = self._clock()
        self.sessions[session_id] = SessionState(id=session_id, created_at=now, last_updated=now)
        self.active_session = session_id
        return session_id

    def set_active_session(self, session_id: str) -> None:
        if session_id not in self.sessions:
            raise SessionNotFoundError(session_id)
        self.active_session = session_id

    def get_active_session(self) -> SessionState | None:
        if self.active_session is None:
            return None
        return self.sessions.get(self.active_session)

    def add_interaction(self, query: str, answer: str) -> None:
        """Append one turn to the active session."""
        session = self.get_active_session()
        if session is None:
            raise NoActiveSessionError()
        session.queries.append(query)
        session.responses.append(answer)
        session.last_updated = self._clock()

    def list_sessions(self) -> list[SessionState]:
        """Sessions ordered by most recent activity."""
        return sorted(self.sessions.values(), key=lambda item: (-item.last_updated, item.id))

    def clear_active_session(self) -> str | None:
        """Remove the active session, returning its id if there was one."""
        session_id = self.active_session
        if session_id is None:
            return None
        self.sessions.pop(session_id, None)
        self.active_session = None
        return session_id


def build_context_messages(
    session: SessionState | None,
    max_turns: int = DEFAULT_HISTORY_TURNS,
) -> list[ChatMessage]:
    """Render the most recent turns as chat messages.

    When older turns are left out, a single leading system note says how many,
    so a truncated history is distinguishable from a fresh session.
    """
    if session is None:
        return []
    turns = session.turns()
    omitted = max(0, len(turns) - max_turns)
    messages: list[ChatMessage] = []
    if omitted:
        noun = "turn" if omitted == 1 else "turns"
        verb = "was" if omitted == 1 else "were"
        messages.append(
            ChatMessage(
                role="system",
                content=f"{omitted} earlier {noun} of this session {verb} omitted.",
            )
        )
    for query, response in turns[omitted:]:
        messages.append(ChatMessage(role="user", content=query))
        messages.append(ChatMessage(role="assistant", content=response))
    return messages


def _session_from_dict(session_id: str, obj: object) -> SessionState | None:
    if not isinstance(obj, dict):
        return None
    queries = obj.get("queries")
    responses = obj.get("responses")
    created_at = obj.get("created_at")
    last_updated = obj.get("last_updated")
    if not isinstance(queries, list) or not isinstance(responses, list):
        return None
    if not all(isinstance(item, str) for item in queries + responses):
        return None
    if len(queries) != len(responses):
        return None
    if not isinstance(created_at, int) or not isinstance(last_updated, int):
        return None
    return SessionState(
        id=session_id,
        queries=list(queries),
        responses=list(responses),
        created_at=created_at,
        last_updated=last_updated,
    )
