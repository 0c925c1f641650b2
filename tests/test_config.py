# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Tests for configuration loading, root selection and logging setup"""

import logging
from pathlib import Path

import pytest
import yaml

from ipkg.core.config import ConfigLoader, IpkgConfig, get_config, load_config
from ipkg.core.exceptions import ConfigError, NotARootError
from ipkg.core.logger import IpkgLogger, get_logger
from ipkg.core.registry import PackageRoot
from ipkg.core.roots import RootManager


class TestConfig:

    def test_defaults_follow_home(self, ipkg_home):
        config = get_config()
        assert config.paths.ipkg_home == ipkg_home
        assert config.paths.root_dir == ipkg_home / "root"
        assert config.paths.log_dir == ipkg_home / "logs"
        assert config.install.bundle_extension == ".ipkg"
        assert config.observability.file_logging is False

    def test_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("IPKG_ROOT", str(tmp_path / "myroot"))
        monkeypatch.setenv("IPKG_LOG_LEVEL", "debug")

        env = ConfigLoader.load_from_env()
        assert env["paths"]["root_dir"] == str(tmp_path / "myroot")

        config = load_config()
        assert config.paths.root_dir == tmp_path / "myroot"
        assert config.observability.log_level == "DEBUG"

    def test_file_then_env_precedence(self, monkeypatch, tmp_path):
        config_file = tmp_path / "ipkg.yaml"
        config_file.write_text(yaml.safe_dump({
            "paths": {"root_dir": str(tmp_path / "from-file")},
            "observability": {"log_level": "WARNING"},
            "install": {"bundle_extension": "pkg"},
        }))
        monkeypatch.setenv("IPKG_LOG_LEVEL", "ERROR")

        config = load_config(config_file)

        assert config.paths.root_dir == tmp_path / "from-file"
        assert config.observability.log_level == "ERROR"
        assert config.install.bundle_extension == ".pkg"

    def test_home_config_file(self, ipkg_home):
        ipkg_home.mkdir(parents=True, exist_ok=True)
        (ipkg_home / "config.yaml").write_text("observability:\n  log_level: critical\n")
        assert load_config().observability.log_level == "CRITICAL"

    def test_broken_file_ignored(self, tmp_path):
        config_file = tmp_path / "broken.yaml"
        config_file.write_text("paths: [unclosed")
        assert ConfigLoader.load_from_file(config_file) == {}

    def test_invalid_value(self, monkeypatch):
        monkeypatch.setenv("IPKG_LOG_LEVEL", "LOUD")
        with pytest.raises(ConfigError):
            load_config()

    def test_merge(self):
        merged = ConfigLoader.merge_configs(
            {"paths": {"root_dir": "a", "temp_dir": "t"}},
            {"paths": {"root_dir": "b"}},
        )
        assert merged == {"paths": {"root_dir": "b", "temp_dir": "t"}}

    def test_model_expands_user(self):
        config = IpkgConfig(paths={"ipkg_home": "~/somewhere"})
        assert config.paths.ipkg_home == Path.home() / "somewhere"


class TestRootManager:

    def test_resolve_defaults_to_configured_root(self, ipkg_home):
        root = RootManager().resolve()
        assert root.path == ipkg_home / "root"
        assert root.db_path.is_file()

    def test_set_current_is_remembered(self, tmp_path):
        manager = RootManager()
        manager.set_current(tmp_path / "chosen")

        assert RootManager().get_current_path() == (tmp_path / "chosen").resolve()
        assert RootManager().resolve().path == (tmp_path / "chosen").resolve()

    def test_explicit_root_must_exist(self, tmp_path):
        with pytest.raises(NotARootError):
            RootManager().resolve(tmp_path / "missing")

    def test_explicit_root_wins(self, tmp_path):
        manager = RootManager()
        manager.set_current(tmp_path / "chosen")
        other = PackageRoot.create(tmp_path / "other")

        assert manager.resolve(other.path).path == other.path

    def test_clear_current(self, tmp_path, ipkg_home):
        manager = RootManager()
        manager.set_current(tmp_path / "chosen")
        manager.clear_current()
        assert manager.get_current_path() is None
        assert manager.resolve().path == ipkg_home / "root"


class TestLogger:

    def test_component_loggers_are_children(self):
        assert get_logger("lifecycle").name == "ipkg.lifecycle"
        assert get_logger("ipkg.registry").name == "ipkg.registry"

    def test_file_logging(self, tmp_path):
        configured = IpkgLogger(name="ipkg-test", level="DEBUG", log_dir=tmp_path / "logs")
        configured.logger.info("hello from test")
        for handler in configured.logger.handlers:
            handler.flush()

        assert configured.log_file == tmp_path / "logs" / "ipkg-test.log"
        assert "hello from test" in configured.log_file.read_text()

        for handler in list(configured.logger.handlers):
            configured.logger.removeHandler(handler)
            handler.close()

    def test_set_level(self):
        configured = IpkgLogger(name="ipkg-level-test", level="INFO", file_output=False)
        configured.set_level("ERROR")
        assert configured.console_handler.level == logging.ERROR
