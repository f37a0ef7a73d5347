"""Configuration loading for ravenlsp.

Example ravenlsp.yaml:
    server:
      command: ["ravenlsp", "serve"]
    client:
      document_selector: raven
      request_timeout: 30.0
    shutdown:
      grace_timeout: 2.0
    restart:
      max_restarts: 1
      cooldown: 60.0
    logging:
      verbose: 3
      file: ~/.ravenlsp.log
"""

from __future__ import annotations

import logging
import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ravenlsp.protocol.methods import (
    COMPLETION_PROVIDER,
    DEFINITION_PROVIDER,
    FORMATTING_PROVIDER,
    HOVER_PROVIDER,
    TEXT_DOCUMENT_SYNC,
)

_log = logging.getLogger("ravenlsp.config")

DEFAULT_CONFIG_NAMES = ("ravenlsp.yaml", ".ravenlsp.yaml", "ravenlsp.yml", ".ravenlsp.yml")


def _default_server_command() -> list[str]:
    return [sys.executable, "-m", "ravenlsp", "serve"]


def _default_client_capabilities() -> list[str]:
    return [
        TEXT_DOCUMENT_SYNC,
        HOVER_PROVIDER,
        COMPLETION_PROVIDER,
        DEFINITION_PROVIDER,
        FORMATTING_PROVIDER,
    ]


@dataclass
class ServerConfig:
    """How to spawn the language server."""

    command: list[str] = field(default_factory=_default_server_command)
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class ClientConfig:
    """Client-side session settings."""

    document_selector: str = "raven"
    """Language id of documents routed to the server."""

    capabilities: list[str] = field(default_factory=_default_client_capabilities)
    """Feature tags advertised during initialize."""

    request_timeout: float | None = 30.0
    """Default request deadline in seconds; None waits forever."""

    root_uri: str | None = None


@dataclass
class ShutdownConfig:
    """Shutdown timeout configuration."""

    grace_timeout: float = 2.0
    """Seconds to wait for the shutdown response."""

    interrupt_timeout: float = 2.0
    """Seconds to wait after sending interrupt (SIGINT/Ctrl+Break)."""

    terminate_timeout: float = 3.0
    """Seconds to wait after sending terminate (SIGTERM)."""


@dataclass
class RestartConfig:
    """Crash recovery policy."""

    enabled: bool = True
    max_restarts: int = 1
    """Restarts allowed within one cooldown window."""

    initial_delay: float = 0.5
    backoff_factor: float = 2.0
    max_delay: float = 10.0
    cooldown: float = 60.0


@dataclass
class LoggingConfig:
    level: str | None = None  # DEBUG, INFO, WARNING, ...
    verbose: int | None = None  # 0-4, takes precedence over level
    file: str | None = None


@dataclass
class Config:
    """ravenlsp configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)
    restart: RestartConfig = field(default_factory=RestartConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from a YAML file plus environment overrides.

    Without an explicit path the current directory is searched for
    ravenlsp.yaml and its variants. Missing files yield defaults.
    """
    if config_path is None:
        for name in DEFAULT_CONFIG_NAMES:
            if Path(name).exists():
                config_path = Path(name)
                break

    data: dict[str, Any] = {}
    if config_path is not None and config_path.exists():
        data = load_yaml_file(config_path)

    _apply_env_overrides(data)
    return dict_to_config(data)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if it is empty or not a mapping."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        _log.warning("Ignoring %s: top level is not a mapping", path)
        return {}
    return data


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Environment variables take highest priority."""
    log_path = os.environ.get("RAVEN_LOG")
    if log_path:
        data.setdefault("logging", {})["file"] = log_path

    server_command = os.environ.get("RAVEN_SERVER_COMMAND")
    if server_command:
        data.setdefault("server", {})["command"] = shlex.split(server_command)


def _command(value: Any) -> list[str]:
    if isinstance(value, str):
        return shlex.split(value)
    return [str(part) for part in value]


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a parsed dict to the typed Config dataclass."""
    server_data = data.get("server") or {}
    server = ServerConfig(
        command=_command(server_data["command"]) if server_data.get("command") else _default_server_command(),
        cwd=server_data.get("cwd"),
        env={str(k): str(v) for k, v in (server_data.get("env") or {}).items()},
    )

    client_data = data.get("client") or {}
    client = ClientConfig(
        document_selector=client_data.get("document_selector", "raven"),
        capabilities=list(client_data.get("capabilities", _default_client_capabilities())),
        request_timeout=client_data.get("request_timeout", 30.0),
        root_uri=client_data.get("root_uri"),
    )

    shutdown_data = data.get("shutdown") or {}
    shutdown = ShutdownConfig(
        grace_timeout=shutdown_data.get("grace_timeout", 2.0),
        interrupt_timeout=shutdown_data.get("interrupt_timeout", 2.0),
        terminate_timeout=shutdown_data.get("terminate_timeout", 3.0),
    )

    restart_data = data.get("restart") or {}
    restart = RestartConfig(
        enabled=restart_data.get("enabled", True),
        max_restarts=restart_data.get("max_restarts", 1),
        initial_delay=restart_data.get("initial_delay", 0.5),
        backoff_factor=restart_data.get("backoff_factor", 2.0),
        max_delay=restart_data.get("max_delay", 10.0),
        cooldown=restart_data.get("cooldown", 60.0),
    )

    logging_data = data.get("logging") or {}
    logging_config = LoggingConfig(
        level=logging_data.get("level"),
        verbose=logging_data.get("verbose"),
        file=logging_data.get("file"),
    )

    return Config(
        server=server,
        client=client,
        shutdown=shutdown,
        restart=restart,
        logging=logging_config,
    )
