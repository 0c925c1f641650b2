# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Tests for the activation log"""

import os
import sys
from pathlib import Path

import pytest

from ipkg.core.activation import ActivationLog, ActivationLogEntry
from ipkg.core.exceptions import FileSystemError

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX symlinks")


@pytest.fixture
def install_dir(tmp_path):
    path = tmp_path / "root" / "tool-$1.0"
    (path / "bin").mkdir(parents=True)
    (path / "bin" / "tool").write_text("tool")
    (path / "bin" / "helper").write_text("helper")
    return path


@pytest.fixture
def log(install_dir):
    return ActivationLog(install_dir / ".ira")


def test_missing_log_has_no_entries(log):
    assert log.entries() == []


def test_entries_round_trip_with_spaces(log, tmp_path):
    log.append(tmp_path / "my dir" / "tool", tmp_path / "links" / "tool link")
    log.append("/opt/a", "/usr/local/bin/a")

    assert log.entries() == [
        ActivationLogEntry(tmp_path / "my dir" / "tool", tmp_path / "links" / "tool link"),
        ActivationLogEntry(Path("/opt/a"), Path("/usr/local/bin/a")),
    ]


def test_corrupt_line(log):
    log.metadata_dir.mkdir(parents=True)
    log.log_path.write_text("only-one-field\n")
    with pytest.raises(FileSystemError):
        log.entries()


def test_replay_reports_corrupt_lines(log, install_dir, link_dir):
    tool = install_dir / "bin" / "tool"
    (link_dir / "tool").symlink_to(tool)
    log.append(tool, link_dir / "tool")
    with open(log.log_path, "a", encoding="utf-8") as f:
        f.write("'unterminated\n")

    report = log.unlink_all()

    assert not os.path.lexists(link_dir / "tool")
    assert report.applied == [ActivationLogEntry(tool, link_dir / "tool")]
    assert len(report.errors) == 1
    assert "line 2" in report.errors[0]
    assert not report.ok
    assert not report.all_failed


def test_marker(log):
    assert log.is_active()
    log.mark_inactive()
    assert log.is_active() is False
    assert log.marker_path.exists()
    log.mark_active()
    assert log.is_active()
    log.mark_active()


def test_unlink_then_link(log, install_dir, link_dir):
    target = install_dir / "bin" / "tool"
    link = link_dir / "tool"
    link.symlink_to(target)
    log.append(target, link)

    report = log.unlink_all()
    assert report.applied == log.entries()
    assert not os.path.lexists(link)

    report = log.link_all()
    assert report.ok
    assert len(report.applied) == 1
    assert os.readlink(link) == str(target)


def test_link_all_skips_existing_and_replaces_stale(log, install_dir, link_dir):
    tool = install_dir / "bin" / "tool"
    helper = install_dir / "bin" / "helper"
    (link_dir / "tool").symlink_to(tool)
    (link_dir / "helper").symlink_to(link_dir / "somewhere-else")
    log.append(tool, link_dir / "tool")
    log.append(helper, link_dir / "helper")

    report = log.link_all()

    assert [entry.link_path.name for entry, _ in report.skipped] == ["tool"]
    assert [entry.link_path.name for entry in report.applied] == ["helper"]
    assert os.readlink(link_dir / "helper") == str(helper)


def test_link_all_reports_regular_file(log, install_dir, link_dir):
    (link_dir / "tool").write_text("someone else's file")
    log.append(install_dir / "bin" / "tool", link_dir / "tool")

    report = log.link_all()

    assert not report.ok
    assert report.all_failed
    assert (link_dir / "tool").read_text() == "someone else's file"


def test_unlink_all_leaves_foreign_links(log, install_dir, link_dir, tmp_path):
    other = tmp_path / "other-version"
    other.write_text("other")
    (link_dir / "tool").symlink_to(other)
    log.append(install_dir / "bin" / "tool", link_dir / "tool")
    log.append(install_dir / "bin" / "helper", link_dir / "helper")

    report = log.unlink_all()

    assert report.applied == []
    assert {reason for _, reason in report.skipped} == {"points elsewhere", "missing"}
    assert os.readlink(link_dir / "tool") == str(other)
