# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Logging setup for ipkg.

Every component logs through a child of the ``ipkg`` logger
(``ipkg.lifecycle``, ``ipkg.registry``, ...). Configuring ``ipkg`` once
attaches a console handler on stderr and a rotating file handler, so the
package output on stdout stays clean for the CLI.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

ROOT_LOGGER = "ipkg"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class IpkgLogger:
    """
    Handler setup for one ipkg logger.

    Features:
    - Console logging to stderr
    - File logging with rotation (10MB, 5 backups)
    - Level changeable at runtime
    """

    def __init__(
        self,
        name: str = ROOT_LOGGER,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        console_output: bool = True,
        file_output: bool = True
    ):
        self.name = name
        self.logger = logging.getLogger(name)
        self.log_file: Optional[Path] = None

        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        console_formatter = logging.Formatter(
            fmt='[%(asctime)s] [%(name)s:%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_formatter = logging.Formatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        if console_output:
            self.console_handler = logging.StreamHandler(sys.stderr)
            self.console_handler.setFormatter(console_formatter)
            self.console_handler.setLevel(self._parse_level(level))
            self.logger.addHandler(self.console_handler)
        else:
            self.console_handler = None

        if file_output:
            if log_dir is None:
                log_dir = Path.home() / ".ira" / "logs"

            log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = log_dir / f"{name}.log"

            file_handler = RotatingFileHandler(
                self.log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setFormatter(file_formatter)
            file_handler.setLevel(logging.DEBUG)  # File gets everything
            self.logger.addHandler(file_handler)

    @staticmethod
    def _parse_level(level: str) -> int:
        """Convert string level to logging constant"""
        return _LEVELS.get(level.upper(), logging.INFO)

    def set_level(self, level: str):
        """Change console log level dynamically"""
        if self.console_handler is not None:
            self.console_handler.setLevel(self._parse_level(level))


_loggers: Dict[str, IpkgLogger] = {}


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[Path] = None,
    file_output: Optional[bool] = None,
) -> IpkgLogger:
    """
    (Re)configure the ``ipkg`` logger from explicit arguments, falling back
    to the loaded configuration.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for ipkg.log
        file_output: Write rotating log files
    """
    from .config import get_config

    observability = get_config().observability
    configured = IpkgLogger(
        name=ROOT_LOGGER,
        level=level or observability.log_level,
        log_dir=log_dir or get_config().paths.log_dir,
        file_output=observability.file_logging if file_output is None else file_output,
    )
    _loggers[ROOT_LOGGER] = configured
    return configured


def get_logger(name: str) -> logging.Logger:
    """
    Get a component logger.

    Args:
        name: Component name, e.g. "lifecycle" gives the "ipkg.lifecycle" logger
    """
    if ROOT_LOGGER not in _loggers:
        setup_logging()
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
