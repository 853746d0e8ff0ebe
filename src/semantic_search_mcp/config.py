"""Server configuration from defaults, an optional YAML file, CLI flags and environment.

Precedence, lowest to highest: built-in defaults, the YAML file named by
``--config`` / ``MCP_SEMANTIC_CONFIG``, command-line flags, then
``MCP_SEMANTIC_*`` environment variables.
"""

from __future__ import annotations

import argparse
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from omegaconf import OmegaConf
from pydantic import BaseModel, Field, ValidationError, field_validator

from vector_backend.embedding import EmbeddingConfig
from vector_backend.index import EngineConfig

from .errors import ConfigurationError
from .initializer import RetryPolicy

ENV_PREFIX = "MCP_SEMANTIC_"

# field name -> (CLI flag, environment suffix)
_SOURCES: dict[str, tuple[str, str]] = {
    "store_path": ("store", "STORE"),
    "min_similarity": ("similarity", "SIMILARITY"),
    "model": ("model", "MODEL"),
    "cache_dir": ("cache-dir", "CACHE_DIR"),
    "auto_chunk": ("auto-chunk", "AUTO_CHUNK"),
    "deduplicate_exact": ("deduplicate-exact", "DEDUPLICATE_EXACT"),
    "deduplicate_similarity": ("deduplicate-similarity", "DEDUPLICATE_SIMILARITY"),
    "temporal_boost": ("temporal-boost", "TEMPORAL_BOOST"),
    "verbose": ("verbose", "VERBOSE"),
    "init_attempts": ("init-attempts", "INIT_ATTEMPTS"),
    "init_retry_delay": ("init-retry-delay", "INIT_RETRY_DELAY"),
}

_BOOL_FIELDS = {"auto_chunk", "deduplicate_exact", "temporal_boost", "verbose"}


def parse_bool(value: Any) -> bool:
    """Interpret a flag value; only true/1/yes/on (any case) are true."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


class ServerConfig(BaseModel):
    """Validated runtime configuration for the server and its engine."""

    store_path: Path = Field(
        default=Path(".semantic-store.json"),
        validate_default=True,
        description="JSON file the index is persisted to",
    )
    min_similarity: float = Field(default=0.6, ge=0.0, le=1.0)
    model: str = Field(default="sentence-transformers/all-MiniLM-L6-v2", min_length=1)
    cache_dir: str = ".cache/transformers"
    auto_chunk: bool = True
    deduplicate_exact: bool = True
    deduplicate_similarity: float = Field(default=0.95, ge=0.0, le=1.0)
    temporal_boost: bool = True
    verbose: bool = False
    init_attempts: int = Field(default=3, ge=1, le=20)
    init_retry_delay: float = Field(default=2.0, ge=0.0, le=300.0)

    @field_validator("store_path")
    @classmethod
    def resolve_store_path(cls, v: Path) -> Path:
        return Path(v).expanduser().resolve()

    def to_engine_config(self) -> EngineConfig:
        return EngineConfig(
            store_path=self.store_path,
            min_similarity=self.min_similarity,
            embedding=EmbeddingConfig(model=self.model, cache_dir=self.cache_dir),
            auto_chunk=self.auto_chunk,
            deduplicate_exact=self.deduplicate_exact,
            deduplicate_similarity=self.deduplicate_similarity,
            temporal_boost=self.temporal_boost,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.init_attempts, delay=self.init_retry_delay)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="semantic-search-mcp",
        description="MCP server exposing a persistent semantic memory index.",
    )
    parser.add_argument("--config", help="YAML file with configuration defaults")
    for field_name, (flag, _env) in _SOURCES.items():
        if field_name in _BOOL_FIELDS:
            parser.add_argument(
                f"--{flag}", dest=field_name, nargs="?", const="true", default=None, metavar="BOOL"
            )
        else:
            parser.add_argument(f"--{flag}", dest=field_name, default=None)
    return parser


def _load_file_layer(path: str) -> dict[str, Any]:
    location = Path(path).expanduser()
    if not location.exists():
        raise ConfigurationError(f"Config file not found: {location}")
    data = OmegaConf.to_container(OmegaConf.load(location), resolve=True)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {location}")
    unknown = set(data) - set(ServerConfig.model_fields)
    if unknown:
        raise ConfigurationError(f"Unknown config keys in {location}: {', '.join(sorted(unknown))}")
    return {str(key): value for key, value in data.items()}


def load_config(
    argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None
) -> ServerConfig:
    """Merge every configuration source into a validated `ServerConfig`.

    Args:
        argv: Command-line arguments without the program name (defaults to none)
        environ: Environment mapping (defaults to `os.environ`)

    Raises:
        ConfigurationError: On unknown flags, unreadable config files or invalid values
    """
    environ = os.environ if environ is None else environ

    try:
        args = build_parser().parse_args(list(argv or []))
    except SystemExit as exc:
        if exc.code == 0:
            raise
        raise ConfigurationError(f"Invalid command-line arguments: {list(argv or [])}") from exc

    merged: dict[str, Any] = {}

    config_file = environ.get(f"{ENV_PREFIX}CONFIG") or args.config
    if config_file:
        merged.update(_load_file_layer(config_file))

    for field_name, (_flag, env_suffix) in _SOURCES.items():
        cli_value = getattr(args, field_name)
        if cli_value is not None:
            merged[field_name] = cli_value
        env_value = environ.get(f"{ENV_PREFIX}{env_suffix}")
        if env_value is not None:
            merged[field_name] = env_value

    for field_name in _BOOL_FIELDS & merged.keys():
        merged[field_name] = parse_bool(merged[field_name])

    try:
        return ServerConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
