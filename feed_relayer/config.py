"""
Relayer configuration.

Values come from (in order of precedence) explicit keyword overrides,
``RELAYER_*`` environment variables, an optional JSON config file, and
the defaults below.

Environment variables:
    RELAYER_NODE_URL         node HTTP RPC endpoint
    RELAYER_REGISTRY_PATH    feeds file / database path
    RELAYER_REGISTRY_BACKEND json | sqlite | memory
    RELAYER_EXPLORER_URL     block explorer prefix for inclusion logs
    RELAYER_HTTP_TIMEOUT     seconds
    RELAYER_POLL_INTERVAL    seconds between head polls
    RELAYER_WATCH_TIMEOUT    seconds to wait for inclusion
    RELAYER_MAX_IN_FLIGHT    concurrent submissions
    RELAYER_LOG_LEVEL        DEBUG | INFO | WARNING | ERROR
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import jsonschema  # type: ignore[import-untyped]

from feed_relayer.registry import (
    JsonFileRegistry,
    MemoryRegistry,
    RegistryStore,
    SqliteRegistry,
)

REGISTRY_BACKENDS = ("json", "sqlite", "memory")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_ENV_PREFIX = "RELAYER_"

# Shape of a JSON config file. Value ranges are checked by RelayerConfig.
CONFIG_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "node_url": {"type": "string"},
        "registry_path": {"type": "string"},
        "registry_backend": {"enum": list(REGISTRY_BACKENDS)},
        "explorer_url": {"type": ["string", "null"]},
        "http_timeout": {"type": "number"},
        "poll_interval": {"type": "number"},
        "watch_timeout": {"type": "number"},
        "max_in_flight": {"type": "integer"},
        "log_level": {"type": "string"},
    },
}


@dataclass(frozen=True)
class RelayerConfig:
    node_url: str = "http://127.0.0.1:9933"
    registry_path: str = "./feeds.json"
    registry_backend: str = "json"
    explorer_url: str | None = None
    http_timeout: float = 30.0
    poll_interval: float = 2.0
    watch_timeout: float = 120.0
    max_in_flight: int = 1
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.node_url:
            raise ValueError("node_url must be non-empty")
        if self.registry_backend not in REGISTRY_BACKENDS:
            raise ValueError(
                f"registry_backend must be one of {REGISTRY_BACKENDS}, "
                f"got: {self.registry_backend!r}"
            )
        if self.registry_backend != "memory" and not self.registry_path:
            raise ValueError("registry_path must be non-empty")
        for name in ("http_timeout", "poll_interval", "watch_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got: {getattr(self, name)}")
        if self.max_in_flight < 1:
            raise ValueError(f"max_in_flight must be >= 1, got: {self.max_in_flight}")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"unknown log_level: {self.log_level!r}")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> RelayerConfig:
        """Build a config from a mapping, coercing strings to field types.

        Unknown keys raise ValueError rather than being ignored.
        """
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(values) - set(known))
        if unknown:
            raise ValueError(f"unknown config keys: {', '.join(unknown)}")

        kwargs: dict[str, Any] = {}
        for name, raw in values.items():
            default = getattr(cls, name)
            if default is None:
                kwargs[name] = raw or None
            elif isinstance(default, int):
                kwargs[name] = int(raw)
            elif isinstance(default, float):
                kwargs[name] = float(raw)
            else:
                kwargs[name] = str(raw)
        return cls(**kwargs)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> RelayerConfig:
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = _env_values(environ)
        values.update(overrides)
        return cls.from_mapping(values)

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        environ: Mapping[str, str] | None = None,
    ) -> RelayerConfig:
        """Load a JSON config file, then apply ``RELAYER_*`` overrides."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        try:
            jsonschema.validate(instance=data, schema=CONFIG_FILE_SCHEMA)
        except jsonschema.ValidationError as exc:
            raise ValueError(f"{path}: {exc.message}") from exc
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = dict(data)
        values.update(_env_values(environ))
        return cls.from_mapping(values)


def _env_values(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for f in fields(RelayerConfig):
        key = _ENV_PREFIX + f.name.upper()
        if key in environ:
            values[f.name] = environ[key]
    return values


def open_registry(config: RelayerConfig) -> RegistryStore:
    """Open the registry backend named by the config.

    Raises:
        StoreCorruption: If the backing store is unreadable.
    """
    if config.registry_backend == "memory":
        return MemoryRegistry()
    if config.registry_backend == "sqlite":
        return SqliteRegistry(config.registry_path)
    return JsonFileRegistry(config.registry_path)


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup for applications embedding the relayer."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
