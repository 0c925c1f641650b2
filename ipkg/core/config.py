# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
ipkg Configuration System

Configuration is assembled from:
- ~/.ira/config.yaml
- .ipkg.yaml in the current directory
- an explicit config file
- IPKG_* environment variables

and validated with pydantic.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigError

logger = logging.getLogger("ipkg.config")

_TRUE_VALUES = ("1", "true", "yes", "on")


# ============================================================================
# Configuration Models
# ============================================================================


class PathsConfig(BaseModel):
    """Path configuration"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    ipkg_home: Path = Field(
        default_factory=lambda: Path.home() / ".ira",
        description="ipkg home directory",
    )
    root_dir: Optional[Path] = Field(
        default=None,
        description="Default package root (<ipkg_home>/root when unset)",
    )
    temp_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "ira" / "ipkg" / "install",
        description="Where package archives are unpacked",
    )
    log_dir: Optional[Path] = Field(
        default=None,
        description="Log files directory (<ipkg_home>/logs when unset)",
    )

    @field_validator("*", mode="before")
    @classmethod
    def ensure_path(cls, v):
        """Convert strings to Path objects"""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @model_validator(mode="after")
    def derive_from_home(self):
        if self.root_dir is None:
            self.root_dir = self.ipkg_home / "root"
        if self.log_dir is None:
            self.log_dir = self.ipkg_home / "logs"
        return self


class InstallConfig(BaseModel):
    """Package bundle configuration"""

    bundle_extension: str = Field(
        default=".ipkg", description="Extension of compressed package bundles"
    )

    @field_validator("bundle_extension")
    @classmethod
    def leading_dot(cls, v):
        if not v.startswith("."):
            v = "." + v
        return v


class ObservabilityConfig(BaseModel):
    """Logging configuration"""

    log_level: str = Field(default="INFO", description="Logging level")
    file_logging: bool = Field(default=True, description="Write rotating log files")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper


class IpkgConfig(BaseModel):
    """Complete ipkg configuration"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    paths: PathsConfig = Field(
        default_factory=PathsConfig, description="Path configuration"
    )
    install: InstallConfig = Field(
        default_factory=InstallConfig, description="Package layout configuration"
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Logging configuration",
    )


# ============================================================================
# Configuration Loader
# ============================================================================


class ConfigLoader:
    """Load configuration from multiple sources"""

    @staticmethod
    def load_from_env() -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config: Dict[str, Any] = {}

        env_paths = {
            "IPKG_HOME": "ipkg_home",
            "IPKG_ROOT": "root_dir",
            "IPKG_TEMP_DIR": "temp_dir",
            "IPKG_LOG_DIR": "log_dir",
        }
        for env_name, key in env_paths.items():
            value = os.getenv(env_name)
            if value:
                config.setdefault("paths", {})[key] = value

        log_level = os.getenv("IPKG_LOG_LEVEL")
        if log_level:
            config.setdefault("observability", {})["log_level"] = log_level

        no_file_logs = os.getenv("IPKG_NO_FILE_LOGS")
        if no_file_logs:
            config.setdefault("observability", {})["file_logging"] = (
                no_file_logs.lower() not in _TRUE_VALUES
            )

        return config

    @staticmethod
    def load_from_file(file_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file"""
        if not file_path.exists():
            return {}

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config file {file_path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Ignoring config file {file_path}: expected a mapping")
            return {}
        return data

    @staticmethod
    def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple configuration dictionaries"""
        result: Dict[str, Any] = {}
        for config in configs:
            for key, value in config.items():
                if (
                    key in result
                    and isinstance(result[key], dict)
                    and isinstance(value, dict)
                ):
                    result[key] = ConfigLoader.merge_configs(result[key], value)
                else:
                    result[key] = value
        return result


# ============================================================================
# Global Configuration Instance
# ============================================================================

_config: Optional[IpkgConfig] = None


def get_config() -> IpkgConfig:
    """
    Get global ipkg configuration

    Configuration is loaded from (in order of precedence):
    1. Environment variables (IPKG_*)
    2. .ipkg.yaml in current directory
    3. ~/.ira/config.yaml
    4. Default values
    """
    global _config

    if _config is None:
        _config = load_config()

    return _config


def load_config(
    config_file: Optional[Path] = None, env_override: bool = True
) -> IpkgConfig:
    """
    Load configuration from all sources

    Args:
        config_file: Optional specific config file to load
        env_override: Whether environment variables override file config

    Raises:
        ConfigError: merged configuration does not validate
    """
    configs = []

    home = os.getenv("IPKG_HOME")
    home_dir = Path(home).expanduser() if home else Path.home() / ".ira"
    default_locations = [
        home_dir / "config.yaml",
        Path.cwd() / ".ipkg.yaml",
    ]

    for location in default_locations:
        file_config = ConfigLoader.load_from_file(location)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {location}")

    if config_file:
        file_config = ConfigLoader.load_from_file(Path(config_file))
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_file}")

    if env_override:
        env_config = ConfigLoader.load_from_env()
        if env_config:
            configs.append(env_config)
            logger.debug("Loaded config from environment")

    merged = ConfigLoader.merge_configs(*configs) if configs else {}

    try:
        return IpkgConfig(**merged)
    except ValidationError as e:
        raise ConfigError(
            "invalid configuration",
            details={"errors": [err["msg"] for err in e.errors()]},
            cause=e,
        ) from e


def reload_config() -> IpkgConfig:
    """Reload global configuration"""
    global _config
    _config = load_config()
    logger.debug("Configuration reloaded")
    return _config
