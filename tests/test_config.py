"""Tests for the configuration module."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from ravenlsp.config import (
    ClientConfig,
    Config,
    RestartConfig,
    ShutdownConfig,
    dict_to_config,
    load_config,
    load_yaml_file,
)
from ravenlsp.protocol import methods


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("RAVEN_LOG", raising=False)
    monkeypatch.delenv("RAVEN_SERVER_COMMAND", raising=False)


class TestDefaults:
    """Test default configuration values."""

    def test_default_values(self) -> None:
        config = Config()
        assert config.server.command == [sys.executable, "-m", "ravenlsp", "serve"]
        assert config.client.document_selector == "raven"
        assert config.client.request_timeout == 30.0
        assert set(config.client.capabilities) == methods.ALL_FEATURES

    def test_default_shutdown_config(self) -> None:
        shutdown = ShutdownConfig()
        assert shutdown.grace_timeout == 2.0
        assert shutdown.interrupt_timeout == 2.0
        assert shutdown.terminate_timeout == 3.0

    def test_default_restart_config(self) -> None:
        restart = RestartConfig()
        assert restart.enabled is True
        assert restart.max_restarts == 1
        assert restart.cooldown == 60.0

    def test_instances_do_not_share_lists(self) -> None:
        a, b = ClientConfig(), ClientConfig()
        a.capabilities.append("extra")
        assert "extra" not in b.capabilities


class TestLoadConfig:
    """Test YAML loading."""

    def test_load_default_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """No file anywhere yields defaults."""
        monkeypatch.chdir(tmp_path)
        config = load_config()
        assert config == Config()

    def test_load_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "ravenlsp.yaml"
        config_file.write_text(
            """
server:
  command: ["raven-server", "--stdio"]
  env:
    RAVEN_HOME: /opt/raven
client:
  document_selector: raven
  capabilities: [textDocumentSync, hover]
  request_timeout: 5
shutdown:
  grace_timeout: 0.5
restart:
  max_restarts: 3
  cooldown: 10
logging:
  verbose: 3
"""
        )

        config = load_config(config_file)
        assert config.server.command == ["raven-server", "--stdio"]
        assert config.server.env == {"RAVEN_HOME": "/opt/raven"}
        assert config.client.capabilities == ["textDocumentSync", "hover"]
        assert config.client.request_timeout == 5
        assert config.shutdown.grace_timeout == 0.5
        assert config.shutdown.terminate_timeout == 3.0
        assert config.restart.max_restarts == 3
        assert config.restart.cooldown == 10
        assert config.logging.verbose == 3

    def test_discovers_file_in_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / ".ravenlsp.yaml").write_text("client:\n  document_selector: raven-dev\n")
        monkeypatch.chdir(tmp_path)
        assert load_config().client.document_selector == "raven-dev"

    def test_string_command_is_split(self) -> None:
        config = dict_to_config({"server": {"command": "raven-server --log 'my file.log'"}})
        assert config.server.command == ["raven-server", "--log", "my file.log"]

    def test_empty_and_non_mapping_files(self, tmp_path: Path) -> None:
        empty = tmp_path / "empty.yaml"
        empty.write_text("")
        listing = tmp_path / "list.yaml"
        listing.write_text("- a\n- b\n")

        assert load_yaml_file(empty) == {}
        assert load_yaml_file(listing) == {}

    def test_null_sections_use_defaults(self) -> None:
        config = dict_to_config({"server": None, "restart": None})
        assert config.server.command == Config().server.command
        assert config.restart == RestartConfig()


class TestEnvOverrides:
    """Environment variables take priority over the file."""

    def test_raven_log(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "ravenlsp.yaml"
        config_file.write_text("logging:\n  file: from-file.log\n")
        monkeypatch.setenv("RAVEN_LOG", str(tmp_path / "from-env.log"))

        config = load_config(config_file)
        assert config.logging.file == str(tmp_path / "from-env.log")

    def test_raven_server_command(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("RAVEN_SERVER_COMMAND", "node server.js --stdio")

        config = load_config()
        assert config.server.command == ["node", "server.js", "--stdio"]
