"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from histdb.config import HistdbConfig, config_path, load_config
from histdb.config.models import SOCKET_NAME
from histdb.core.exceptions import ConfigError
from histdb.core.types import ImportErrorPolicy, TimestampPolicy


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in (
        "HISTDB_CONFIG", "HISTDB_IGNORE_SPACE", "HISTDB_LOG_LEVEL", "HISTDB_HOSTNAME",
        "HISTDB_DATA_DIR", "HISTDB_RUNTIME_DIR", "XDG_DATA_HOME", "XDG_RUNTIME_DIR",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))


class TestHistdbConfig:
    """Tests for the configuration model."""

    def test_defaults(self) -> None:
        config = HistdbConfig()
        assert config.ignore_space is True
        assert config.log_level == "warning"
        assert config.finish_before_start == TimestampPolicy.CLAMP
        assert config.import_on_error == ImportErrorPolicy.SKIP
        assert config.data_dir == Path.home() / ".local" / "share" / "histdb"
        assert config.socket_path == Path.home() / ".cache" / "histdb" / SOCKET_NAME

    def test_xdg_directories(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
        monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path / "run"))
        config = HistdbConfig()
        assert config.data_dir == tmp_path / "data" / "histdb"
        assert config.runtime_dir == tmp_path / "run" / "histdb"

    def test_log_level_case_insensitive(self) -> None:
        assert HistdbConfig(log_level="DEBUG").log_level == "debug"

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            HistdbConfig(ignore_spaces=False)

    def test_hostname_override(self) -> None:
        assert HistdbConfig(hostname="box").resolve_hostname() == "box"
        assert HistdbConfig().resolve_hostname()


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_gives_defaults(self, tmp_path) -> None:
        assert load_config(tmp_path / "none.yaml") == HistdbConfig()

    def test_yaml_file(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "ignore_space: false\n"
            "hostname: workstation\n"
            f"data_dir: {tmp_path / 'hist'}\n"
            "finish_before_start: reject\n"
        )
        config = load_config(path)

        assert config.ignore_space is False
        assert config.hostname == "workstation"
        assert config.data_dir == tmp_path / "hist"
        assert config.finish_before_start == TimestampPolicy.REJECT

    def test_env_overrides_file(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("hostname: from-file\nignore_space: true\n")
        monkeypatch.setenv("HISTDB_HOSTNAME", "from-env")
        monkeypatch.setenv("HISTDB_IGNORE_SPACE", "false")

        config = load_config(path)

        assert config.hostname == "from-env"
        assert config.ignore_space is False

    def test_config_path_env(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("HISTDB_CONFIG", str(tmp_path / "alt.yaml"))
        assert config_path() == tmp_path / "alt.yaml"

    def test_default_path(self, tmp_path) -> None:
        assert config_path() == tmp_path / "xdg-config" / "histdb" / "config.yaml"

    def test_invalid_yaml(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("ignore_space: [unclosed\n")
        with pytest.raises(ConfigError, match="Cannot read config file"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_config(path)

    def test_invalid_value(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("log_level: chatty\n")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path)
