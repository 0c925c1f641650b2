# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Shared fixtures: isolated ipkg home, package roots and bundle factories."""

import json
import os
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import yaml

from ipkg.core.archive import ArchiveExtractor
from ipkg.core.config import reload_config
from ipkg.core.lifecycle import LifecycleEngine
from ipkg.core.registry import PackageRoot


@pytest.fixture(autouse=True)
def ipkg_home(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.ira"""
    home = tmp_path / "ipkg-home"
    monkeypatch.setenv("IPKG_HOME", str(home))
    monkeypatch.setenv("IPKG_TEMP_DIR", str(tmp_path / "ipkg-tmp"))
    monkeypatch.setenv("IPKG_NO_FILE_LOGS", "true")
    for name in ("IPKG_ROOT", "IPKG_LOG_DIR", "IPKG_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    reload_config()
    yield home
    monkeypatch.undo()
    reload_config()


@pytest.fixture
def root(tmp_path) -> PackageRoot:
    return PackageRoot.create(tmp_path / "root")


@pytest.fixture
def link_dir(tmp_path) -> Path:
    path = tmp_path / "links"
    path.mkdir()
    return path


@pytest.fixture
def engine(root, tmp_path) -> LifecycleEngine:
    extractor = ArchiveExtractor(temp_dir=tmp_path / "extract", bundle_extension=".ipkg")
    return LifecycleEngine(root, extractor=extractor, host_os="Linux")


class BundleFactory:
    """Writes bundle directories laid out the way ipkg expects."""

    def __init__(self, base: Path, link_dir: Path):
        self.base = base
        self.link_dir = link_dir
        self.base.mkdir(parents=True, exist_ok=True)

    def __call__(
        self,
        name: str,
        version: str,
        dependencies: Optional[Dict[str, bool]] = None,
        support_linux: bool = True,
        support_windows: bool = False,
        build: bool = False,
        install_steps: Optional[List] = None,
        remove_steps: Optional[List] = None,
        build_script: Optional[str] = None,
        link: bool = True,
    ) -> Path:
        bundle = self.base / f"{name}-{version}"
        metadata = bundle / ".ira"
        metadata.mkdir(parents=True)

        (bundle / "payload.txt").write_text(f"{name} {version}\n")

        config = {
            "name": name,
            "version": version,
            "dependencies": dependencies or {},
            "supportLinux": support_linux,
            "supportWindows": support_windows,
            "build": build,
        }
        (metadata / "config.json").write_text(json.dumps(config))

        if install_steps is None:
            install_steps = [
                {"mkdir": "bin"},
                {"copy": {"from": "payload.txt", "to": f"bin/{name}"}},
            ]
            if link:
                install_steps.append(
                    {"link": {"target": f"bin/{name}", "path": str(self.link_dir / name)}}
                )
        script = {"install": install_steps, "remove": remove_steps or []}
        (metadata / "iscript").write_text(yaml.safe_dump(script))

        if build_script is not None:
            build_path = metadata / "build"
            build_path.write_text(build_script)
            build_path.chmod(0o755)

        return bundle


@pytest.fixture
def make_bundle(tmp_path, link_dir) -> BundleFactory:
    return BundleFactory(tmp_path / "bundles", link_dir)


def zip_bundle(bundle: Path, target: Path) -> Path:
    """Compress a bundle directory into an .ipkg archive"""
    with zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as archive:
        for dirpath, dirnames, filenames in os.walk(bundle):
            for dirname in dirnames:
                full = Path(dirpath) / dirname
                archive.write(full, full.relative_to(bundle).as_posix() + "/")
            for filename in filenames:
                full = Path(dirpath) / filename
                archive.write(full, full.relative_to(bundle).as_posix())
    return target


@pytest.fixture(name="zip_bundle")
def zip_bundle_fixture():
    return zip_bundle
