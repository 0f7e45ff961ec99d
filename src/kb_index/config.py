"""Configuration loading and deterministic merge order."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from kb_index.errors import ConfigError

CONFIG_FILE_NAME = "config.toml"

MAX_BATCH_SIZE_CAP = 64
MAX_TOP_K_CAP = 100
MAX_HISTORY_TURNS_CAP = 50

DEFAULT_CHROMA_HOST = "http://localhost:8000"
DEFAULT_TENANT = "default_tenant"
DEFAULT_DATABASE = "default_database"
DEFAULT_COLLECTION = "kb_index"

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_COMPLETION_MODEL = "gpt-4"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-large"
DEFAULT_TEMPERATURE = 0.4

DEFAULT_FILE_EXTENSIONS = (".md", ".rs", ".tsx", ".ts", ".js", ".jsx", ".html")
DEFAULT_EXCLUDE_GLOBS = ("**/.git/**", "**/node_modules/**", "**/target/**")
DEFAULT_IGNORE_FILES = (".gitignore", ".kbignore")
DEFAULT_CHUNK_LINES = 10
DEFAULT_MAX_CHUNK_CHARS = 100_000
DEFAULT_BATCH_SIZE = 8
DEFAULT_EMBED_DELAY_SECONDS = 0.1

DEFAULT_TOP_K = 5
DEFAULT_SIMILARITY_THRESHOLD = 0.93
DEFAULT_HISTORY_TURNS = 5

DEFAULT_REQUEST_TIMEOUT_SECONDS = 60.0


@dataclass(slots=True, frozen=True)
class ChromaConfig:
    """Vector-store endpoint and collection coordinates."""

    host: str
    tenant: str
    database: str
    collection: str


@dataclass(slots=True, frozen=True)
class OpenAIConfig:
    """Embedding and chat provider settings."""

    api_key: str | None
    base_url: str
    completion_model: str
    embedding_model: str
    temperature: float


@dataclass(slots=True, frozen=True)
class IndexConfig:
    """Deterministic indexing settings."""

    file_extensions: tuple[str, ...]
    exclude_globs: tuple[str, ...]
    ignore_files: tuple[str, ...]
    chunk_lines: int
    max_chunk_chars: int
    batch_size: int
    embed_delay_seconds: float


@dataclass(slots=True, frozen=True)
class QueryConfig:
    """Query path tuning."""

    top_k: int
    similarity_threshold: float
    history_turns: int


@dataclass(slots=True, frozen=True)
class AppConfig:
    """Fully merged application configuration."""

    config_dir: Path
    chroma: ChromaConfig
    openai: OpenAIConfig
    index: IndexConfig
    query: QueryConfig
    request_timeout_seconds: float

    def require_api_key(self) -> str:
        """Return the provider API key or fail before any network activity."""
        key = self.openai.api_key
        if not key:
            raise ConfigError(
                "OpenAI API key not found. Set OPENAI_API_KEY or add "
                f"openai.api_key to {self.config_dir / CONFIG_FILE_NAME}."
            )
        return key

    def to_public_dict(self) -> dict[str, object]:
        """Return serializable config snapshot with secrets hidden."""
        return {
            "config_dir": str(self.config_dir),
            "chroma": {
                "host": self.chroma.host,
                "tenant": self.chroma.tenant,
                "database": self.chroma.database,
                "collection": self.chroma.collection,
            },
            "openai": {
                "api_key": "set" if self.openai.api_key else "not set",
                "base_url": self.openai.base_url,
                "completion_model": self.openai.completion_model,
                "embedding_model": self.openai.embedding_model,
                "temperature": self.openai.temperature,
            },
            "index": {
                "file_extensions": list(self.index.file_extensions),
                "exclude_globs": list(self.index.exclude_globs),
                "ignore_files": list(self.index.ignore_files),
                "chunk_lines": self.index.chunk_lines,
                "max_chunk_chars": self.index.max_chunk_chars,
                "batch_size": self.index.batch_size,
                "embed_delay_seconds": self.index.embed_delay_seconds,
            },
            "query": {
                "top_k": self.query.top_k,
                "similarity_threshold": self.query.similarity_threshold,
                "history_turns": self.query.history_turns,
            },
            "network": {
                "request_timeout_seconds": self.request_timeout_seconds,
            },
        }


@dataclass(slots=True, frozen=True)
class CliOverrides:
    """Optional startup overrides applied at highest precedence."""

    config_dir: Path | None = None
    chroma_host: str | None = None
    completion_model: str | None = None
    embedding_model: str | None = None
    top_k: int | None = None


def resolve_config_dir(environ: Mapping[str, str] | None = None) -> Path:
    """Resolve the state/config directory from the environment."""
    env = os.environ if environ is None else environ
    explicit = env.get("KB_INDEX_CONFIG_DIR", "").strip()
    if explicit:
        return Path(explicit).expanduser()
    xdg = env.get("XDG_CONFIG_HOME", "").strip()
    if xdg:
        return Path(xdg).expanduser() / "kb-index"
    return Path.home() / ".config" / "kb-index"


def default_config(config_dir: Path) -> AppConfig:
    """Build default config rooted at a state directory."""
    return AppConfig(
        config_dir=config_dir,
        chroma=ChromaConfig(
            host=DEFAULT_CHROMA_HOST,
            tenant=DEFAULT_TENANT,
            database=DEFAULT_DATABASE,
            collection=DEFAULT_COLLECTION,
        ),
        openai=OpenAIConfig(
            api_key=None,
            base_url=DEFAULT_OPENAI_BASE_URL,
            completion_model=DEFAULT_COMPLETION_MODEL,
            embedding_model=DEFAULT_EMBEDDING_MODEL,
            temperature=DEFAULT_TEMPERATURE,
        ),
        index=IndexConfig(
            file_extensions=DEFAULT_FILE_EXTENSIONS,
            exclude_globs=DEFAULT_EXCLUDE_GLOBS,
            ignore_files=DEFAULT_IGNORE_FILES,
            chunk_lines=DEFAULT_CHUNK_LINES,
            max_chunk_chars=DEFAULT_MAX_CHUNK_CHARS,
            batch_size=DEFAULT_BATCH_SIZE,
            embed_delay_seconds=DEFAULT_EMBED_DELAY_SECONDS,
        ),
        query=QueryConfig(
            top_k=DEFAULT_TOP_K,
            similarity_threshold=DEFAULT_SIMILARITY_THRESHOLD,
            history_turns=DEFAULT_HISTORY_TURNS,
        ),
        request_timeout_seconds=DEFAULT_REQUEST_TIMEOUT_SECONDS,
    )


def load_config_file(config_dir: Path) -> dict[str, object]:
    """Load optional config.toml from the config directory."""
    config_path = config_dir / CONFIG_FILE_NAME
    if not config_path.exists():
        return {}
    try:
        with config_path.open("rb") as handle:
            payload = tomllib.load(handle)
    except tomllib.TOMLDecodeError as error:
        raise ConfigError(f"{config_path} is not valid TOML: {error}") from error
    if not isinstance(payload, dict):
        raise ConfigError(f"{CONFIG_FILE_NAME} must contain a top-level table.")
    return payload


def merge_config(
    base: AppConfig,
    file_payload: dict[str, object],
    environ: Mapping[str, str],
    overrides: CliOverrides,
) -> AppConfig:
    """Merge defaults, config file, environment, then CLI overrides."""
    chroma_payload = _get_table(file_payload, "chroma")
    openai_payload = _get_table(file_payload, "openai")
    index_payload = _get_table(file_payload, "index")
    query_payload = _get_table(file_payload, "query")
    network_payload = _get_table(file_payload, "network")

    chroma = ChromaConfig(
        host=_optional_str(chroma_payload.get("host"), "chroma.host", base.chroma.host).rstrip(
            "/"
        ),
        tenant=_optional_str(chroma_payload.get("tenant"), "chroma.tenant", base.chroma.tenant),
        database=_optional_str(
            chroma_payload.get("database"), "chroma.database", base.chroma.database
        ),
        collection=_optional_str(
            chroma_payload.get("collection"), "chroma.collection", base.chroma.collection
        ),
    )

    api_key = base.openai.api_key
    if "api_key" in openai_payload:
        api_key = _optional_str(openai_payload["api_key"], "openai.api_key", "") or None
    env_key = environ.get("OPENAI_API_KEY", "").strip()
    if env_key:
        api_key = env_key
    openai = OpenAIConfig(
        api_key=api_key,
        base_url=_optional_str(
            openai_payload.get("base_url"), "openai.base_url", base.openai.base_url
        ).rstrip("/"),
        completion_model=_optional_str(
            openai_payload.get("completion_model"),
            "openai.completion_model",
            base.openai.completion_model,
        ),
        embedding_model=_optional_str(
            openai_payload.get("embedding_model"),
            "openai.embedding_model",
            base.openai.embedding_model,
        ),
        temperature=_optional_float_in_range(
            openai_payload.get("temperature"),
            "openai.temperature",
            base.openai.temperature,
            low=0.0,
            high=2.0,
        ),
    )

    file_extensions = base.index.file_extensions
    if "file_extensions" in index_payload:
        file_extensions = tuple(
            _normalize_extension(item)
            for item in _tuple_of_strings(
                index_payload["file_extensions"], "index", "file_extensions"
            )
        )
    exclude_globs = base.index.exclude_globs
    if "exclude_globs" in index_payload:
        exclude_globs = _tuple_of_strings(index_payload["exclude_globs"], "index", "exclude_globs")
    ignore_files = base.index.ignore_files
    if "ignore_files" in index_payload:
        ignore_files = _tuple_of_strings(index_payload["ignore_files"], "index", "ignore_files")
    index = IndexConfig(
        file_extensions=file_extensions,
        exclude_globs=exclude_globs,
        ignore_files=ignore_files,
        chunk_lines=_optional_positive_int_with_cap(
            index_payload.get("chunk_lines"), "index.chunk_lines", base.index.chunk_lines, None
        ),
        max_chunk_chars=_optional_positive_int_with_cap(
            index_payload.get("max_chunk_chars"),
            "index.max_chunk_chars",
            base.index.max_chunk_chars,
            None,
        ),
        batch_size=_optional_positive_int_with_cap(
            index_payload.get("batch_size"),
            "index.batch_size",
            base.index.batch_size,
            MAX_BATCH_SIZE_CAP,
        ),
        embed_delay_seconds=_optional_float_in_range(
            index_payload.get("embed_delay_seconds"),
            "index.embed_delay_seconds",
            base.index.embed_delay_seconds,
            low=0.0,
            high=None,
        ),
    )

    query = QueryConfig(
        top_k=_optional_positive_int_with_cap(
            query_payload.get("top_k"), "query.top_k", base.query.top_k, MAX_TOP_K_CAP
        ),
        similarity_threshold=_optional_float_in_range(
            query_payload.get("similarity_threshold"),
            "query.similarity_threshold",
            base.query.similarity_threshold,
            low=-1.0,
            high=1.0,
        ),
        history_turns=_optional_positive_int_with_cap(
            query_payload.get("history_turns"),
            "query.history_turns",
            base.query.history_turns,
            MAX_HISTORY_TURNS_CAP,
        ),
    )

    merged = AppConfig(
        config_dir=base.config_dir,
        chroma=chroma,
        openai=openai,
        index=index,
        query=query,
        request_timeout_seconds=_optional_float_in_range(
            network_payload.get("request_timeout_seconds"),
            "network.request_timeout_seconds",
            base.request_timeout_seconds,
            low=0.001,
            high=None,
        ),
    )
    return apply_cli_overrides(merged, overrides)


def apply_cli_overrides(config: AppConfig, overrides: CliOverrides) -> AppConfig:
    """Apply startup overrides at highest precedence."""
    chroma = config.chroma
    if overrides.chroma_host is not None:
        chroma = ChromaConfig(
            host=overrides.chroma_host.rstrip("/"),
            tenant=chroma.tenant,
            database=chroma.database,
            collection=chroma.collection,
        )
    openai = OpenAIConfig(
        api_key=config.openai.api_key,
        base_url=config.openai.base_url,
        completion_model=overrides.completion_model or config.openai.completion_model,
        embedding_model=overrides.embedding_model or config.openai.embedding_model,
        temperature=config.openai.temperature,
    )
    query = QueryConfig(
        top_k=_optional_positive_int_with_cap(
            overrides.top_k, "overrides.top_k", config.query.top_k, MAX_TOP_K_CAP
        ),
        similarity_threshold=config.query.similarity_threshold,
        history_turns=config.query.history_turns,
    )
    return AppConfig(
        config_dir=overrides.config_dir or config.config_dir,
        chroma=chroma,
        openai=openai,
        index=config.index,
        query=query,
        request_timeout_seconds=config.request_timeout_seconds,
    )


def load_effective_config(
    overrides: CliOverrides | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load effective config using merge order defaults -> file -> env -> overrides."""
    env = os.environ if environ is None else environ
    active = overrides or CliOverrides()
    config_dir = active.config_dir or resolve_config_dir(env)
    base = default_config(config_dir)
    payload = load_config_file(config_dir)
    return merge_config(base, payload, env, active)


def render_default_config(config: AppConfig) -> str:
    """Render a commented config.toml template for `config --init`."""
    extensions = ", ".join(f'"{item}"' for item in config.index.file_extensions)
    return "\n".join(
        [
            "# kb-index configuration",
            "",
            "[chroma]",
            f'host = "{config.chroma.host}"',
            f'tenant = "{config.chroma.tenant}"',
            f'database = "{config.chroma.database}"',
            f'collection = "{config.chroma.collection}"',
            "",
            "[openai]",
            "# api_key = \"sk-...\"  (OPENAI_API_KEY takes precedence)",
            f'base_url = "{config.openai.base_url}"',
            f'completion_model = "{config.openai.completion_model}"',
            f'embedding_model = "{config.openai.embedding_model}"',
            f"temperature = {config.openai.temperature}",
            "",
            "[index]",
            f"file_extensions = [{extensions}]",
            f"batch_size = {config.index.batch_size}",
            "",
            "[query]",
            f"top_k = {config.query.top_k}",
            f"similarity_threshold = {config.query.similarity_threshold}",
            f"history_turns = {config.query.history_turns}",
            "",
        ]
    )


def _get_table(payload: dict[str, object], key: str) -> dict[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{key}' must be a table.")
    return value


def _tuple_of_strings(value: object, section: str, field: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ConfigError(f"Config field '{section}.{field}' must be a list of strings.")
    output: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"Config field '{section}.{field}' must contain only strings.")
        output.append(item)
    return tuple(output)


def _normalize_extension(value: str) -> str:
    stripped = value.strip().lower()
    if not stripped.startswith("."):
        stripped = f".{stripped}"
    return stripped


def _optional_str(value: object, name: str, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigError(f"Config field '{name}' must be a string.")
    return value


def _optional_positive_int_with_cap(
    value: object,
    name: str,
    default: int,
    cap: int | None,
) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"Config field '{name}' must be a positive integer.")
    if cap is not None and value > cap:
        raise ConfigError(f"Config field '{name}' must be <= {cap}.")
    return value


def _optional_float_in_range(
    value: object,
    name: str,
    default: float,
    low: float,
    high: float | None,
) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"Config field '{name}' must be a number.")
    number = float(value)
    if number < low:
        raise ConfigError(f"Config field '{name}' must be >= {low}.")
    if high is not None and number > high:
        raise ConfigError(f"Config field '{name}' must be <= {high}.")
    return number
