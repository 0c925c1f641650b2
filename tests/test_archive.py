# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Tests for package archive extraction"""

import os
import sys
import zipfile

import pytest

from ipkg.core.archive import ArchiveExtractor
from ipkg.core.exceptions import ArchiveError, PathTraversalError


@pytest.fixture
def extractor(tmp_path):
    return ArchiveExtractor(temp_dir=tmp_path / "extract", bundle_extension=".ipkg")


def make_archive(path, entries):
    """entries: name -> bytes (None for a directory entry)"""
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in entries.items():
            if data is None:
                archive.writestr(zipfile.ZipInfo(name), b"")
            else:
                archive.writestr(name, data)
    return path


def test_prepare_copies_bundle_as_zip(extractor, tmp_path):
    bundle = make_archive(tmp_path / "testpkg.ipkg", {"a.txt": b"a"})

    archive_path = extractor.prepare(bundle)

    assert archive_path == tmp_path / "extract" / "testpkg.zip"
    assert archive_path.read_bytes() == bundle.read_bytes()


def test_extract_tree(extractor, tmp_path):
    archive = make_archive(tmp_path / "pkg.zip", {
        "docs/": None,
        ".ira/config.json": b"{}",
        "bin/tool": b"#!/bin/sh\n",
    })

    destination = extractor.extract(archive)

    assert destination == tmp_path / "pkg"
    assert (destination / "docs").is_dir()
    assert (destination / ".ira" / "config.json").read_bytes() == b"{}"
    assert (destination / "bin" / "tool").read_bytes() == b"#!/bin/sh\n"


def test_unpack(extractor, tmp_path):
    bundle = make_archive(tmp_path / "testpkg.ipkg", {".ira/iscript": b"install: []\n"})

    destination = extractor.unpack(bundle)

    assert destination == tmp_path / "extract" / "testpkg"
    assert (destination / ".ira" / "iscript").is_file()


@pytest.mark.parametrize("entry", ["../../evil.txt", "ok/../../evil.txt", "/tmp/ipkg-evil.txt"])
def test_traversal_rejected_before_writing(extractor, tmp_path, entry):
    archive = make_archive(tmp_path / "bad.zip", {"good.txt": b"fine", entry: b"evil"})

    with pytest.raises(PathTraversalError) as exc_info:
        extractor.extract(archive)

    assert exc_info.value.entry == entry
    assert not (tmp_path / "bad").exists()
    assert not (tmp_path.parent / "evil.txt").exists()


def test_previous_extraction_cleared(extractor, tmp_path):
    archive = make_archive(tmp_path / "pkg.zip", {"new.txt": b"new"})
    stale = tmp_path / "pkg" / "stale.txt"
    stale.parent.mkdir()
    stale.write_text("old")

    destination = extractor.extract(archive)

    assert (destination / "new.txt").exists()
    assert not stale.exists()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX file modes")
def test_mode_preserved(extractor, tmp_path):
    archive_path = tmp_path / "pkg.zip"
    with zipfile.ZipFile(archive_path, "w") as archive:
        info = zipfile.ZipInfo("bin/tool")
        info.external_attr = 0o755 << 16
        archive.writestr(info, b"#!/bin/sh\n")
        archive.writestr("plain.txt", b"x")

    destination = extractor.extract(archive_path)

    assert os.stat(destination / "bin" / "tool").st_mode & 0o777 == 0o755


def test_corrupt_archive(extractor, tmp_path):
    archive = tmp_path / "broken.zip"
    archive.write_bytes(b"this is not a zip file")

    with pytest.raises(ArchiveError):
        extractor.extract(archive)


def test_is_bundle(extractor):
    assert extractor.is_bundle("downloads/testpkg.ipkg")
    assert not extractor.is_bundle("downloads/testpkg.zip")
