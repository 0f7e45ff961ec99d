"""kb-index command line entrypoint."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

import requests

from kb_index.clients import ChatClient, EmbeddingClient, VectorStoreClient
from kb_index.config import (
    CONFIG_FILE_NAME,
    AppConfig,
    CliOverrides,
    load_effective_config,
    render_default_config,
)
from kb_index.errors import KbIndexError
from kb_index.index import IndexManager
from kb_index.logging import (
    JsonlEventLogger,
    RunEvent,
    configure_logging,
    new_run_id,
    sanitize_arguments,
    utc_timestamp,
)
from kb_index.query import (
    OUTPUT_FORMATS,
    QueryCache,
    QueryEngine,
    SessionManager,
    render_answer,
    render_hits,
)

logger = logging.getLogger(__name__)

EVENTS_FILE = "events.jsonl"
_GLOBAL_OPTIONS = frozenset(
    {"command", "config_dir", "chroma_host", "completion_model", "embedding_model", "verbose"}
)


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="kb-index", description="Index or query local files using a vector store."
    )
    parser.add_argument("--config-dir", required=False, default=None)
    parser.add_argument("--chroma-host", required=False, default=None)
    parser.add_argument("--completion-model", required=False, default=None)
    parser.add_argument("--embedding-model", required=False, default=None)
    parser.add_argument("-v", "--verbose", action="count", default=0)
    commands = parser.add_subparsers(dest="command", required=True)

    index = commands.add_parser("index", help="Index files at the specified path")
    index.add_argument("path")

    query = commands.add_parser("query", help="Query the index with a text prompt")
    query.add_argument("query")
    query.add_argument("-k", "--top-k", type=int, required=False, default=None)
    query.add_argument("-f", "--format", choices=OUTPUT_FORMATS, default="pretty")
    query.add_argument(
        "-s", "--session", required=False, default=None, help="Session id, or 'new'"
    )

    sessions = commands.add_parser("sessions", help="List, switch or clear sessions")
    sessions.add_argument("--list", action="store_true", default=False)
    sessions.add_argument("--clear", action="store_true", default=False)
    sessions.add_argument("--switch", required=False, default=None)

    config = commands.add_parser("config", help="Show or initialize configuration")
    config.add_argument("--show", action="store_true", default=False)
    config.add_argument("--init", action="store_true", default=False)
    return parser


class KbApp:
    """Runs one command against an explicit configuration."""

    def __init__(
        self,
        config: AppConfig,
        out_stream: TextIO,
        err_stream: TextIO,
        http_session: requests.Session | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._config = config
        self._out = out_stream
        self._err = err_stream
        self._http_session = http_session
        self._environ = os.environ if environ is None else environ
        self._events = JsonlEventLogger(path=config.config_dir / EVENTS_FILE)
        self._run_id = new_run_id()

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def events(self) -> JsonlEventLogger:
        return self._events

    def execute(self, command: str, arguments: dict[str, object]) -> int:
        """Dispatch a command, reporting failures as a message and exit status 1."""
        handlers: dict[str, Callable[[dict[str, object]], int]] = {
            "index": self._index,
            "query": self._query,
            "sessions": self._sessions,
            "config": self._show_config,
        }
        handler = handlers.get(command)
        if handler is None:
            self._err.write(f"error: unknown command: {command}\n")
            return 2
        try:
            status = handler(arguments)
        except KbIndexError as error:
            self._err.write(f"error: {error}\n")
            self._log(command, arguments, ok=False, error_code=error.code)
            return 1
        self._log(command, arguments, ok=status == 0, error_code=None)
        return status

    def _index(self, arguments: dict[str, object]) -> int:
        path = Path(str(arguments["path"]))
        manager = IndexManager(
            config=self._config,
            embedder=EmbeddingClient(self._config, session=self._http_session),
            store=VectorStoreClient(self._config, session=self._http_session),
        )
        report = manager.refresh(path)
        logger.debug("index report: %s", json.dumps(report.to_dict(), sort_keys=True))
        self._out.write(
            f"Indexed {report.files_indexed} of {report.files_seen} files "
            f"({report.files_skipped} unchanged): {report.chunks_added} chunks added, "
            f"{report.chunks_unchanged} kept, {report.chunks_deleted} deleted, "
            f"{report.chunks_tracked} tracked.\n"
        )
        for missing in report.missing:
            self._out.write(f"missing (record kept): {missing}\n")
        for failure in report.failures:
            self._err.write(f"failed: {failure.path}: {failure.message}\n")
        return 0 if report.ok else 1

    def _query(self, arguments: dict[str, object]) -> int:
        top_k = arguments.get("top_k")
        session = arguments.get("session")
        engine = QueryEngine(
            config=self._config,
            embedder=EmbeddingClient(self._config, session=self._http_session),
            searcher=VectorStoreClient(self._config, session=self._http_session),
            answerer=ChatClient(self._config, session=self._http_session),
            cache=QueryCache.load(self._config.config_dir),
            sessions=SessionManager.load(self._config.config_dir),
        )
        outcome = engine.run(
            query=str(arguments["query"]),
            top_k=top_k if isinstance(top_k, int) else None,
            output_format=str(arguments.get("format", "pretty")),
            session=session if isinstance(session, str) else None,
        )
        for notice in outcome.notices:
            self._err.write(f"{notice}\n")
        if outcome.answer is not None:
            show_session = outcome.output_format == "smart"
            self._out.write(
                render_answer(
                    outcome.answer,
                    cached=outcome.cached,
                    session_id=outcome.session_id if show_session else None,
                    turns=outcome.session_turns,
                )
            )
        else:
            self._out.write(render_hits(outcome.hits, outcome.output_format))
        self._out.write("\n")
        return 0

    def _sessions(self, arguments: dict[str, object]) -> int:
        config_dir = self._config.config_dir
        manager = SessionManager.load(config_dir)
        if arguments.get("clear"):
            cleared = manager.clear_active_session()
            if cleared is None:
                self._out.write("No active session to clear\n")
                return 0
            manager.save(config_dir)
            self._out.write(f"Cleared session: {cleared}\n")
            return 0

        switch = arguments.get("switch")
        if isinstance(switch, str):
            manager.set_active_session(switch)
            manager.save(config_dir)
            self._out.write(f"Switched to session: {switch}\n")
            return 0

        self._out.write("Available Sessions:\n")
        for session in manager.list_sessions():
            marker = "* " if session.id == manager.active_session else "  "
            updated = datetime.fromtimestamp(session.last_updated, tz=UTC).strftime(
                "%Y-%m-%d %H:%M"
            )
            self._out.write(
                f"{marker}{session.id[:8]} - {session.turn_count} Q&A pairs, "
                f"last updated: {updated}\n"
            )
        if not manager.sessions:
            self._out.write("  No sessions found. Create one with 'kb-index query --session new'\n")
        return 0

    def _show_config(self, arguments: dict[str, object]) -> int:
        config_path = self._config.config_dir / CONFIG_FILE_NAME
        if arguments.get("init"):
            if config_path.exists():
                self._out.write(f"Config already exists: {config_path}\n")
            else:
                config_path.parent.mkdir(parents=True, exist_ok=True)
                config_path.write_text(render_default_config(self._config), encoding="utf-8")
                self._out.write(f"Created default config at {config_path}\n")
        if arguments.get("show") or not arguments.get("init"):
            env_key = "set" if self._environ.get("OPENAI_API_KEY") else "not set"
            self._out.write(f"Configuration file: {config_path}\n")
            self._out.write(f"OPENAI_API_KEY environment variable: {env_key}\n")
            self._out.write(json.dumps(self._config.to_public_dict(), indent=2, sort_keys=True))
            self._out.write("\n")
        return 0

    def _log(
        self, command: str, arguments: dict[str, object], ok: bool, error_code: str | None
    ) -> None:
        event = RunEvent(
            timestamp=utc_timestamp(),
            run_id=self._run_id,
            command=command,
            ok=ok,
            error_code=error_code,
            metadata=sanitize_arguments(arguments),
        )
        try:
            self._events.append(event)
        except OSError as error:
            logger.warning("could not write event log %s: %s", self._events.path, error)


def create_app(
    overrides: CliOverrides | None = None,
    out_stream: TextIO | None = None,
    err_stream: TextIO | None = None,
    http_session: requests.Session | None = None,
    environ: Mapping[str, str] | None = None,
) -> KbApp:
    """Create an app from the effective configuration."""
    config = load_effective_config(overrides=overrides, environ=environ)
    return KbApp(
        config=config,
        out_stream=out_stream or sys.stdout,
        err_stream=err_stream or sys.stderr,
        http_session=http_session,
        environ=environ,
    )


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for the kb-index command."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    level = "DEBUG" if args.verbose > 1 else "INFO" if args.verbose else None
    configure_logging(level or os.environ.get("KB_INDEX_LOG_LEVEL", "WARNING"))

    overrides = CliOverrides(
        config_dir=Path(args.config_dir).expanduser() if args.config_dir is not None else None,
        chroma_host=args.chroma_host,
        completion_model=args.completion_model,
        embedding_model=args.embedding_model,
        top_k=getattr(args, "top_k", None),
    )
    try:
        app = create_app(overrides=overrides)
    except KbIndexError as error:
        print(f"error: {error}", file=sys.stderr)
        return 1

    arguments = {
        key: value
        for key, value in vars(args).items()
        if key not in _GLOBAL_OPTIONS
    }
    return app.execute(args.command, arguments)


if __name__ == "__main__":
    raise SystemExit(main())
