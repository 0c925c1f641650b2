# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Current Root Selection

The engine always receives an explicit PackageRoot. The CLI needs to know
which one to hand it between invocations, so the last root selected with
``ipkg root PATH`` is remembered in ``<ipkg_home>/current_root.json``.

Resolution order:
    1. an explicit path (``--root``)
    2. the remembered root
    3. the configured default root (created on first use)
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .config import get_config
from .exceptions import NotARootError, fs_errors
from .registry import PackageRoot

logger = logging.getLogger("ipkg.roots")

CURRENT_ROOT_FILE = "current_root.json"


class RootManager:
    """
    Remembers the current package root.

    Usage:
        manager = RootManager()
        manager.set_current("/opt/ira")
        root = manager.resolve()
    """

    def __init__(self, ipkg_home: Optional[Path] = None):
        config = get_config()
        self.ipkg_home = Path(ipkg_home) if ipkg_home else config.paths.ipkg_home
        self.default_root = config.paths.root_dir
        self._current_root_file = self.ipkg_home / CURRENT_ROOT_FILE

    def set_current(self, path: Union[str, Path]) -> PackageRoot:
        """Create-or-open the root at path and remember it."""
        root = PackageRoot.create(Path(path).expanduser().resolve())

        with fs_errors("saving current root", self._current_root_file):
            self.ipkg_home.mkdir(parents=True, exist_ok=True)
            self._current_root_file.write_text(json.dumps({
                "path": str(root.path),
                "selected_at": datetime.now().isoformat(),
            }, indent=2))

        logger.info(f"Current root set to {root.path}")
        return root

    def get_current_path(self) -> Optional[Path]:
        """Path of the remembered root without opening it"""
        if not self._current_root_file.exists():
            return None

        try:
            data = json.loads(self._current_root_file.read_text())
            return Path(data["path"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable {self._current_root_file}: {e}")
            return None

    def get_current(self) -> Optional[PackageRoot]:
        """Open the remembered root, or None if none is remembered."""
        path = self.get_current_path()
        if path is None:
            return None
        return PackageRoot.open(path)

    def clear_current(self) -> None:
        if self._current_root_file.exists():
            self._current_root_file.unlink()
            logger.info("Cleared current root")

    def resolve(self, explicit: Optional[Union[str, Path]] = None) -> PackageRoot:
        """
        Pick the root a command should operate on.

        An explicit or remembered root must already exist; the configured
        default root is created on demand.
        """
        if explicit is not None:
            return PackageRoot.open(Path(explicit).expanduser())

        current = self.get_current_path()
        if current is not None:
            try:
                return PackageRoot.open(current)
            except NotARootError:
                logger.warning(f"Remembered root {current} is gone, using default")

        return PackageRoot.create(self.default_root)
