# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
ipkg Package Root

A package root is a directory holding one installation directory per
installed package version (``<root>/<name>-$<version>``) and a SQLite
registry of what is installed (``<root>/db.sqlite3``).

The registry row is the single source of truth for "installed": an
installation directory without a row is an orphan left by a failed install
and can be reclaimed.
"""

import logging
import shutil
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .exceptions import (
    AlreadyInstalledError,
    IpkgError,
    NotARootError,
    PackageNotFoundError,
    RegistryError,
    fs_errors,
)
from .identity import SEPARATOR, PackageIdentity
from .manifest import DependencyMap, deserialize_dependencies

logger = logging.getLogger("ipkg.registry")

DB_FILE = "db.sqlite3"

_COLUMNS = "id, name, version, dependencies, installedByUser, usedBy"


@dataclass
class RegistryRecord:
    """One installed package version"""
    name: str
    version: str
    dependencies: str = ""
    installed_by_user: bool = True
    used_by: int = 0
    id: Optional[int] = None

    @property
    def identity(self) -> PackageIdentity:
        return PackageIdentity(self.name, self.version)

    @property
    def dependency_map(self) -> DependencyMap:
        return deserialize_dependencies(self.dependencies)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "dependencies": self.dependencies,
            "installed_by_user": self.installed_by_user,
            "used_by": self.used_by,
        }

    @classmethod
    def from_row(cls, row: tuple) -> "RegistryRecord":
        """Create RegistryRecord from database row"""
        return cls(
            id=row[0],
            name=row[1],
            version=row[2],
            dependencies=row[3],
            installed_by_user=bool(row[4]),
            used_by=row[5],
        )


class PackageRoot:
    """
    Registry of installed packages plus their on-disk tree.

    Usage:
        root = PackageRoot.create("/opt/ira")
        root.insert(RegistryRecord(name="testpkg", version="1.0"))
        record = root.find("testpkg", "1.0")
        root.increment_used_by("testpkg", "1.0")
    """

    def __init__(self, path: Union[str, Path]):
        """Use PackageRoot.open() or PackageRoot.create()."""
        self.path = Path(path)
        self.db_path = self.path / DB_FILE

    # ==========================================================================
    # Construction
    # ==========================================================================

    @classmethod
    def create(cls, path: Union[str, Path]) -> "PackageRoot":
        """Create a package root, or open it if it already exists."""
        path = Path(path)
        if path.exists() and not path.is_dir():
            raise NotARootError(
                f"incorrect path {path}: expected dir, found file", path=str(path)
            )
        with fs_errors("creating package root", path):
            path.mkdir(parents=True, exist_ok=True)

        root = cls(path)
        root._init_db()
        logger.debug(f"Package root ready at {path}")
        return root

    @classmethod
    def open(cls, path: Union[str, Path]) -> "PackageRoot":
        """Open an existing package root."""
        path = Path(path)
        if not path.exists():
            raise NotARootError(f"package root {path} doesn't exist", path=str(path))
        if not path.is_dir():
            raise NotARootError(
                f"incorrect path {path}: expected dir, found file", path=str(path)
            )
        if not (path / DB_FILE).is_file():
            raise NotARootError(f"directory {path} is not a package root", path=str(path))

        root = cls(path)
        root._init_db()
        return root

    def _init_db(self):
        """Initialize database schema"""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS packages (
                    id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    version TEXT NOT NULL,
                    dependencies TEXT NOT NULL,
                    installedByUser INTEGER NOT NULL DEFAULT 1,
                    usedBy INTEGER NOT NULL DEFAULT 0
                )
            """)

            # Roots created before use-counting only have the first four columns
            columns = {row[1] for row in conn.execute("PRAGMA table_info(packages)")}
            if "installedByUser" not in columns:
                conn.execute(
                    "ALTER TABLE packages ADD COLUMN installedByUser INTEGER NOT NULL DEFAULT 1"
                )
                logger.info(f"Upgraded registry {self.db_path}: added installedByUser")
            if "usedBy" not in columns:
                conn.execute(
                    "ALTER TABLE packages ADD COLUMN usedBy INTEGER NOT NULL DEFAULT 0"
                )
                logger.info(f"Upgraded registry {self.db_path}: added usedBy")

            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_packages_identity
                ON packages(name, version)
            """)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connection"""
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise RegistryError("opening database", cause=e, details={"db": str(self.db_path)}) from e
        try:
            yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise RegistryError("database failure", cause=e, details={"db": str(self.db_path)}) from e
        finally:
            conn.close()

    # ==========================================================================
    # Lookups
    # ==========================================================================

    def find(self, name: str, version: str) -> RegistryRecord:
        """Get record by exact (name, version); raises PackageNotFoundError."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM packages WHERE name = ? AND version = ?",
                (name, version),
            ).fetchone()
        if row is None:
            package_id = f"{name}{SEPARATOR}{version}"
            raise PackageNotFoundError(
                f"package {package_id} is not installed", package_id=package_id
            )
        return RegistryRecord.from_row(row)

    def exists(self, name: str, version: str) -> bool:
        try:
            self.find(name, version)
        except PackageNotFoundError:
            return False
        return True

    def find_all_by_name(self, name: str) -> List[RegistryRecord]:
        """All installed versions of a package"""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM packages WHERE name = ? ORDER BY id ASC",
                (name,),
            ).fetchall()
        return [RegistryRecord.from_row(row) for row in rows]

    def list(self, installed_by_user: Optional[bool] = None) -> List[RegistryRecord]:
        """
        List installed packages.

        Args:
            installed_by_user: True for user installs only, False for
                dependency installs only, None for everything
        """
        query = f"SELECT {_COLUMNS} FROM packages"
        params: List[Any] = []
        if installed_by_user is not None:
            query += " WHERE installedByUser = ?"
            params.append(int(installed_by_user))
        query += " ORDER BY id ASC"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [RegistryRecord.from_row(row) for row in rows]

    def required_by(self, name: str, version: str) -> List[RegistryRecord]:
        """Installed records that list (name, version) as a required dependency"""
        identity = PackageIdentity(name, version)
        return [
            record for record in self.list()
            if record.dependency_map.get(identity) is True
        ]

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM packages").fetchone()[0]

    def is_dependency_only(self, name: str, version: str) -> bool:
        """True when the package was pulled in only as a dependency"""
        return not self.find(name, version).installed_by_user

    def can_be_removed(self, name: str, version: str) -> bool:
        """True when no other installed package requires this one"""
        return self.find(name, version).used_by == 0

    # ==========================================================================
    # Mutations
    # ==========================================================================

    def insert(self, record: RegistryRecord) -> RegistryRecord:
        """Add an installed package; assigns record.id."""
        package_id = record.identity.key
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO packages
                    (name, version, dependencies, installedByUser, usedBy)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        record.name,
                        record.version,
                        record.dependencies,
                        int(record.installed_by_user),
                        record.used_by,
                    ),
                )
                conn.commit()
                record.id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise AlreadyInstalledError(
                f"package {package_id} is already installed",
                package_id=package_id,
                cause=e,
            ) from e
        logger.debug(f"Registered {package_id} (id={record.id})")
        return record

    def delete(self, name: str, version: str) -> None:
        self._update(
            "DELETE FROM packages WHERE name = ? AND version = ?",
            (name, version),
            name,
            version,
        )

    def set_installed_by_user(self, name: str, version: str, installed_by_user: bool) -> None:
        self._update(
            "UPDATE packages SET installedByUser = ? WHERE name = ? AND version = ?",
            (int(installed_by_user), name, version),
            name,
            version,
        )

    def increment_used_by(self, name: str, version: str) -> None:
        self._update(
            "UPDATE packages SET usedBy = usedBy + 1 WHERE name = ? AND version = ?",
            (name, version),
            name,
            version,
        )

    def decrement_used_by(self, name: str, version: str) -> None:
        self._update(
            "UPDATE packages SET usedBy = MAX(usedBy - 1, 0) WHERE name = ? AND version = ?",
            (name, version),
            name,
            version,
        )

    def _update(self, query: str, params: tuple, name: str, version: str) -> None:
        """Run a single-row statement; raises PackageNotFoundError if no row matched."""
        with self._connect() as conn:
            cursor = conn.execute(query, params)
            conn.commit()
            changed = cursor.rowcount
        if changed == 0:
            package_id = f"{name}{SEPARATOR}{version}"
            raise PackageNotFoundError(
                f"package {package_id} is not installed", package_id=package_id
            )

    # ==========================================================================
    # Filesystem Layout
    # ==========================================================================

    def package_dir(self, identity: PackageIdentity) -> Path:
        """Installation directory of a package version"""
        return self.path / identity.key

    def orphaned_dirs(self) -> List[Path]:
        """Installation directories that have no registry record."""
        installed = {record.identity for record in self.list()}
        orphans = []
        for entry in sorted(self.path.iterdir()):
            if not entry.is_dir() or entry.is_symlink():
                continue
            try:
                identity = PackageIdentity.parse(entry.name)
            except IpkgError:
                continue
            if identity not in installed:
                orphans.append(entry)
        return orphans

    def reclaim_orphans(self) -> List[Path]:
        """Delete orphaned installation directories; returns what was removed."""
        removed = []
        for orphan in self.orphaned_dirs():
            with fs_errors("removing orphaned installation", orphan):
                shutil.rmtree(orphan)
            logger.info(f"Reclaimed orphaned installation {orphan.name}")
            removed.append(orphan)
        return removed

    def __repr__(self) -> str:
        return f"PackageRoot({str(self.path)!r})"
