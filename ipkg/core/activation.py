# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Activation Log

Every symlink created while installing a package version is recorded in
``<installdir>/.ira/activate.log``, one ``target path`` pair per line
(shell-quoted). Replaying the log recreates or removes those links, which is
how a version is toggled between active and inactive without touching its
payload. An inactive version has a ``deactivated`` marker next to the log.

Replay is best-effort: every readable entry is attempted, failures and corrupt
lines are collected in a ReplayReport and it is up to the caller to decide
what to do with them.
"""

import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple, Union

from .exceptions import FileSystemError, fs_errors

logger = logging.getLogger("ipkg.activation")

LOG_FILE = "activate.log"
DEACTIVATED_MARKER = "deactivated"


@dataclass(frozen=True)
class ActivationLogEntry:
    """A symlink at link_path pointing to link_target"""
    link_target: Path
    link_path: Path

    def to_line(self) -> str:
        return shlex.join([str(self.link_target), str(self.link_path)])

    @classmethod
    def from_line(cls, line: str) -> "ActivationLogEntry":
        parts = shlex.split(line)
        if len(parts) != 2:
            raise ValueError(f"expected 'target path', got {line!r}")
        return cls(Path(parts[0]), Path(parts[1]))


@dataclass
class ReplayReport:
    """Per-entry outcome of an activation log replay"""
    applied: List[ActivationLogEntry] = field(default_factory=list)
    skipped: List[Tuple[ActivationLogEntry, str]] = field(default_factory=list)
    failed: List[Tuple[ActivationLogEntry, str]] = field(default_factory=list)
    # problems reading the log itself (unreadable file, corrupt lines)
    errors: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.applied) + len(self.skipped) + len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.errors

    @property
    def all_failed(self) -> bool:
        return bool(self.failed or self.errors) and not self.applied and not self.skipped


def _points_to(link: Path, target: Path) -> bool:
    return os.readlink(link) == str(target)


class ActivationLog:
    """Activation log and deactivation marker of one installed version."""

    def __init__(self, metadata_dir: Union[str, Path]):
        self.metadata_dir = Path(metadata_dir)
        self.log_path = self.metadata_dir / LOG_FILE
        self.marker_path = self.metadata_dir / DEACTIVATED_MARKER

    # ==========================================================================
    # Log File
    # ==========================================================================

    def entries(self) -> List[ActivationLogEntry]:
        """Entries in creation order; a missing log means no links."""
        entries = []
        for lineno, line in self._lines():
            try:
                entries.append(ActivationLogEntry.from_line(line))
            except ValueError as e:
                raise FileSystemError(
                    f"corrupt activation log line {lineno}",
                    path=str(self.log_path),
                    cause=e,
                ) from e
        return entries

    def _lines(self) -> List[Tuple[int, str]]:
        if not self.log_path.exists():
            return []
        with fs_errors("reading activation log", self.log_path):
            lines = self.log_path.read_text(encoding="utf-8").splitlines()
        return [(lineno, line) for lineno, line in enumerate(lines, 1) if line.strip()]

    def _replay_entries(self, report: ReplayReport) -> List[ActivationLogEntry]:
        """Readable entries; unreadable or corrupt lines are recorded in the report."""
        try:
            lines = self._lines()
        except FileSystemError as e:
            report.errors.append(str(e))
            return []
        entries = []
        for lineno, line in lines:
            try:
                entries.append(ActivationLogEntry.from_line(line))
            except ValueError as e:
                report.errors.append(f"corrupt activation log line {lineno}: {e}")
        return entries

    def append(self, link_target: Union[str, Path], link_path: Union[str, Path]) -> ActivationLogEntry:
        entry = ActivationLogEntry(Path(link_target), Path(link_path))
        with fs_errors("writing activation log", self.log_path):
            self.metadata_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(entry.to_line() + "\n")
        return entry

    # ==========================================================================
    # State
    # ==========================================================================

    def is_active(self) -> bool:
        return not self.marker_path.exists()

    def mark_inactive(self) -> None:
        with fs_errors("writing deactivated marker", self.marker_path):
            self.metadata_dir.mkdir(parents=True, exist_ok=True)
            self.marker_path.touch()

    def mark_active(self) -> None:
        with fs_errors("removing deactivated marker", self.marker_path):
            self.marker_path.unlink(missing_ok=True)

    # ==========================================================================
    # Replay
    # ==========================================================================

    def link_all(self) -> ReplayReport:
        """Recreate every logged symlink."""
        report = ReplayReport()
        for entry in self._replay_entries(report):
            link = entry.link_path
            try:
                if link.is_symlink():
                    if _points_to(link, entry.link_target):
                        report.skipped.append((entry, "already linked"))
                        continue
                    link.unlink()
                elif link.exists():
                    report.failed.append((entry, "path exists and is not a symlink"))
                    continue
                link.parent.mkdir(parents=True, exist_ok=True)
                link.symlink_to(entry.link_target)
                report.applied.append(entry)
            except OSError as e:
                report.failed.append((entry, str(e)))
        return report

    def unlink_all(self) -> ReplayReport:
        """Remove every logged symlink that still points at its logged target."""
        report = ReplayReport()
        for entry in self._replay_entries(report):
            link = entry.link_path
            try:
                if not link.is_symlink():
                    reason = "missing" if not link.exists() else "not a symlink"
                    report.skipped.append((entry, reason))
                    continue
                if not _points_to(link, entry.link_target):
                    report.skipped.append((entry, "points elsewhere"))
                    continue
                link.unlink()
                report.applied.append(entry)
            except OSError as e:
                report.failed.append((entry, str(e)))
        return report
