# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Package Archive Extraction

A compressed bundle (``name.ipkg``) is a zip archive. It is copied to
``<temp_dir>/name.zip`` and unpacked into ``<temp_dir>/name``.

Every entry is checked before anything is written: an entry whose resolved
path is not strictly inside the destination (``../`` segments, absolute
names) aborts the whole extraction with PathTraversalError.
"""

import logging
import os
import shutil
import stat
import zipfile
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .exceptions import ArchiveError, PathTraversalError, fs_errors

logger = logging.getLogger("ipkg.archive")

ARCHIVE_SUFFIX = ".zip"
_CHUNK_SIZE = 1024 * 1024


class ArchiveExtractor:
    """
    Unpacks package bundles into a temporary working directory.

    Usage:
        extractor = ArchiveExtractor()
        work_dir = extractor.unpack("downloads/testpkg.ipkg")
    """

    def __init__(
        self,
        temp_dir: Optional[Union[str, Path]] = None,
        bundle_extension: Optional[str] = None,
    ):
        if temp_dir is None or bundle_extension is None:
            from .config import get_config

            config = get_config()
            temp_dir = temp_dir or config.paths.temp_dir
            bundle_extension = bundle_extension or config.install.bundle_extension
        self.temp_dir = Path(temp_dir)
        self.bundle_extension = bundle_extension

    def is_bundle(self, path: Union[str, Path]) -> bool:
        return Path(path).name.endswith(self.bundle_extension)

    def prepare(self, bundle_path: Union[str, Path], temp_dir: Optional[Union[str, Path]] = None) -> Path:
        """Copy the bundle into temp_dir as ``<stem>.zip``; returns the copy."""
        bundle_path = Path(bundle_path)
        temp_dir = Path(temp_dir) if temp_dir is not None else self.temp_dir

        with fs_errors("making temporary dir", temp_dir):
            temp_dir.mkdir(parents=True, exist_ok=True)

        stem = bundle_path.name
        if stem.endswith(self.bundle_extension):
            stem = stem[: -len(self.bundle_extension)]
        archive_path = temp_dir / (stem + ARCHIVE_SUFFIX)

        with fs_errors(f"copying package {bundle_path} to {archive_path}", bundle_path):
            shutil.copyfile(bundle_path, archive_path)

        logger.debug(f"Prepared {bundle_path} as {archive_path}")
        return archive_path

    def extract(self, archive_path: Union[str, Path]) -> Path:
        """
        Unpack archive_path next to itself, without the ``.zip`` suffix.

        Raises:
            PathTraversalError: an entry would land outside the destination
            ArchiveError: the archive cannot be read
        """
        archive_path = Path(os.path.abspath(archive_path))
        name = archive_path.name
        if name.endswith(ARCHIVE_SUFFIX):
            name = name[: -len(ARCHIVE_SUFFIX)]
        destination = archive_path.with_name(name)

        try:
            with zipfile.ZipFile(archive_path) as archive:
                plan = self._plan(archive, destination)

                if destination.exists():
                    with fs_errors("clearing previous extraction", destination):
                        if destination.is_dir() and not destination.is_symlink():
                            shutil.rmtree(destination)
                        else:
                            destination.unlink()

                with fs_errors("unpacking archive", destination):
                    destination.mkdir(parents=True, exist_ok=True)
                    for info, target in plan:
                        self._write_entry(archive, info, target)
        except zipfile.BadZipFile as e:
            raise ArchiveError(
                f"opening {archive_path} as archive",
                details={"archive": str(archive_path)},
                cause=e,
            ) from e
        except FileNotFoundError as e:
            raise ArchiveError(
                f"archive {archive_path} not found",
                details={"archive": str(archive_path)},
                cause=e,
            ) from e

        logger.debug(f"Extracted {len(plan)} entries into {destination}")
        return destination

    def unpack(self, bundle_path: Union[str, Path]) -> Path:
        """prepare() into the configured temp dir, then extract()."""
        archive_path = self.prepare(bundle_path)
        return self.extract(archive_path)

    @staticmethod
    def _plan(archive: zipfile.ZipFile, destination: Path) -> List[Tuple[zipfile.ZipInfo, Path]]:
        """Resolve every entry's target, rejecting the archive on the first escape."""
        base = os.path.normpath(str(destination))
        plan = []
        for info in archive.infolist():
            if not info.filename:
                continue
            target = os.path.abspath(os.path.join(base, info.filename))
            if target == base and info.is_dir():
                continue
            if not target.startswith(base + os.sep):
                raise PathTraversalError(
                    f"invalid file path: {info.filename}",
                    entry=info.filename,
                    details={"destination": base},
                )
            plan.append((info, Path(target)))
        return plan

    @staticmethod
    def _write_entry(archive: zipfile.ZipFile, info: zipfile.ZipInfo, target: Path) -> None:
        if info.is_dir():
            target.mkdir(parents=True, exist_ok=True)
            return

        target.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(info, "r") as src, open(target, "wb") as out:
            shutil.copyfileobj(src, out, _CHUNK_SIZE)

        mode = stat.S_IMODE(info.external_attr >> 16)
        if mode:
            os.chmod(target, mode)
