# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
ipkg Lifecycle Engine

Drives a package version through its states against one PackageRoot:

    Uninstalled --install--> Installed & Active
    Installed & Active <--deactivate/activate--> Installed & Inactive
    Installed (any) --remove--> Uninstalled

At most one version of a name is active at a time. Validation happens before
anything is written; once an install starts mutating the root there is no
rollback, and a failed install leaves an orphaned installation directory
that PackageRoot.reclaim_orphans() can clean up.
"""

import logging
import os
import platform
import shutil
import stat
from pathlib import Path
from typing import Optional, Union

from .activation import ActivationLog, ReplayReport
from .archive import ArchiveExtractor
from .builder import BuildRunner
from .exceptions import (
    AlreadyInstalledError,
    DependenciesNotSatisfiedError,
    IpkgError,
    NotAPackageError,
    PackageInUseError,
    PackageNotFoundError,
    PermissionDeniedError,
    ScriptFailedError,
    UnsupportedPlatformError,
    fs_errors,
)
from .identity import PackageIdentity
from .iscript import IScriptRunner, ScriptMode, ScriptRunner
from .manifest import Manifest
from .registry import PackageRoot, RegistryRecord

logger = logging.getLogger("ipkg.lifecycle")

METADATA_DIR = ".ira"
MANIFEST_FILE = "config.json"
SCRIPT_FILE = "iscript"


class LifecycleEngine:
    """
    Install, activate, deactivate and remove packages in a root.

    Usage:
        root = PackageRoot.create("/opt/ira")
        engine = LifecycleEngine(root)

        engine.install("testpkg/")
        engine.deactivate("testpkg", "1.0")
        engine.activate("testpkg", "1.0")
        engine.remove("testpkg", "1.0")
    """

    def __init__(
        self,
        root: PackageRoot,
        script_runner: Optional[ScriptRunner] = None,
        build_runner: Optional[BuildRunner] = None,
        extractor: Optional[ArchiveExtractor] = None,
        host_os: Optional[str] = None,
    ):
        self.root = root
        self.script_runner = script_runner or IScriptRunner(METADATA_DIR)
        self.build_runner = build_runner or BuildRunner(METADATA_DIR)
        self._extractor = extractor
        self.host_os = host_os or platform.system()

    @property
    def extractor(self) -> ArchiveExtractor:
        if self._extractor is None:
            self._extractor = ArchiveExtractor()
        return self._extractor

    # ==========================================================================
    # Paths
    # ==========================================================================

    def install_dir(self, name: str, version: str) -> Path:
        return self.root.package_dir(PackageIdentity(name, version))

    def activation_log(self, name: str, version: str) -> ActivationLog:
        return ActivationLog(self.install_dir(name, version) / METADATA_DIR)

    # ==========================================================================
    # Install
    # ==========================================================================

    def resolve_work_dir(self, path: Union[str, Path]) -> Path:
        """
        Turn an install argument into a bundle directory.

        A directory is used as-is; a compressed bundle is unpacked into the
        temporary directory first.
        """
        path = Path(path)
        try:
            info = os.stat(path)
        except FileNotFoundError as e:
            raise NotAPackageError(f"package {str(path)!r} doesn't exist", path=str(path)) from e
        except PermissionError as e:
            raise PermissionDeniedError(
                f"working with {path}: permission denied", path=str(path), cause=e
            ) from e
        except OSError as e:
            raise NotAPackageError(f"cannot stat {path}", path=str(path), cause=e) from e

        if stat.S_ISDIR(info.st_mode):
            return path
        if self.extractor.is_bundle(path):
            logger.info(f"Unpacking {path}")
            return self.extractor.unpack(path)
        raise NotAPackageError(f"file {path} is not an ipkg package", path=str(path))

    def install(self, path: Union[str, Path], as_dependency: bool = False) -> RegistryRecord:
        """
        Install the package at path (bundle directory or compressed bundle).

        Args:
            path: Bundle directory or ``.ipkg`` file
            as_dependency: Record the package as pulled in for another package

        Returns:
            The new registry record

        Raises:
            NotAPackageError, NoManifestError, MalformedManifestError,
            UnsupportedPlatformError, AlreadyInstalledError,
            DependenciesNotSatisfiedError, BuildFailedError, ScriptFailedError,
            FileSystemError
        """
        work_dir = self.resolve_work_dir(path)
        metadata = work_dir / METADATA_DIR
        manifest = Manifest.parse(metadata / MANIFEST_FILE)
        package_id = manifest.id

        if not manifest.supports(self.host_os):
            raise UnsupportedPlatformError(
                f"unsupported os: {self.host_os}",
                host_os=self.host_os,
                details={"package": package_id},
            )

        if self.root.exists(manifest.name, manifest.version):
            raise AlreadyInstalledError(
                f"package {package_id} is already installed", package_id=package_id
            )

        check = manifest.check_dependencies(self.root)
        if not check.satisfied:
            missing = [identity.key for identity in check.missing]
            raise DependenciesNotSatisfiedError(
                f"not all required dependencies satisfied: {', '.join(missing)}",
                missing=missing,
                details={"package": package_id},
            )

        if manifest.build:
            self.build_runner.run(work_dir, self.host_os)

        install_dir = self.root.package_dir(manifest.identity)
        with fs_errors("creating installation folder", install_dir):
            install_dir.mkdir(exist_ok=True)

        logger.info(f"Installing {package_id} into {install_dir}")
        try:
            self.script_runner.run(
                metadata / SCRIPT_FILE, work_dir, install_dir, ScriptMode.INSTALL
            )
        except ScriptFailedError:
            self._restore_active_links(manifest.name)
            raise

        installed_metadata = install_dir / METADATA_DIR
        with fs_errors("saving package metadata", installed_metadata):
            installed_metadata.mkdir(exist_ok=True)
            shutil.copyfile(metadata / SCRIPT_FILE, installed_metadata / SCRIPT_FILE)
            shutil.copyfile(metadata / MANIFEST_FILE, installed_metadata / MANIFEST_FILE)
        ActivationLog(installed_metadata).mark_active()

        # links of the new version already replaced the shared ones
        for other in self.root.find_all_by_name(manifest.name):
            if self.is_active(other.name, other.version):
                logger.info(f"Deactivating {other.identity.key} in favour of {package_id}")
                self.deactivate(other.name, other.version)

        # dependents left behind by a forced removal still count
        dependents = self.root.required_by(manifest.name, manifest.version)
        if dependents:
            logger.info(
                f"{package_id} is already required by "
                f"{', '.join(r.identity.key for r in dependents)}"
            )

        record = self.root.insert(RegistryRecord(
            name=manifest.name,
            version=manifest.version,
            dependencies=manifest.serialize_dependencies(),
            installed_by_user=not as_dependency,
            used_by=len(dependents),
        ))

        for identity, required in sorted(manifest.dependencies.items()):
            if required:
                self.root.increment_used_by(identity.name, identity.version)

        logger.info(f"Installed {package_id}")
        return record

    def _restore_active_links(self, name: str) -> None:
        """Relink active versions whose links a failed install may have taken over."""
        for other in self.root.find_all_by_name(name):
            log = self.activation_log(other.name, other.version)
            if log.is_active():
                report = log.link_all()
                self._log_report(f"restoring links of {other.identity.key}", report)

    # ==========================================================================
    # Activation
    # ==========================================================================

    def is_active(self, name: str, version: str) -> bool:
        self.root.find(name, version)
        return self.activation_log(name, version).is_active()

    def activate(self, name: str, version: str) -> Optional[ReplayReport]:
        """
        Make this version the active one.

        Returns the replay report, or None when the version was already active.
        """
        self.root.find(name, version)
        log = self.activation_log(name, version)
        if log.is_active():
            logger.debug(f"{name}-${version} is already active")
            return None

        for other in self.root.find_all_by_name(name):
            if other.version != version and self.is_active(other.name, other.version):
                self.deactivate(other.name, other.version)

        report = log.link_all()
        self._log_report(f"activating {name}-${version}", report)
        log.mark_active()
        logger.info(f"Activated {name}-${version}")
        return report

    def deactivate(self, name: str, version: str) -> Optional[ReplayReport]:
        """
        Remove this version's symlinks, keeping its files.

        Returns the replay report, or None when the version was already inactive.
        """
        self.root.find(name, version)
        log = self.activation_log(name, version)
        if not log.is_active():
            logger.debug(f"{name}-${version} is already inactive")
            return None

        report = log.unlink_all()
        self._log_report(f"deactivating {name}-${version}", report)
        log.mark_inactive()
        logger.info(f"Deactivated {name}-${version}")
        return report

    # ==========================================================================
    # Removal
    # ==========================================================================

    def remove(self, name: str, version: str, cascade: bool = True, force: bool = False) -> None:
        """
        Uninstall a package version.

        Args:
            cascade: Also remove dependencies that were installed only as
                dependencies and are no longer used by anything
            force: Remove even if other installed packages still require it

        Raises:
            PackageNotFoundError: not installed
            PackageInUseError: still required by other packages and not forced
        """
        record = self.root.find(name, version)
        package_id = record.identity.key

        if record.used_by != 0 and not force:
            raise PackageInUseError(
                f"package {package_id} is required by {record.used_by} installed package(s)",
                used_by=record.used_by,
                details={"package": package_id},
            )

        dependencies = record.dependency_map

        report = self.activation_log(name, version).unlink_all()
        self._log_report(f"removing links of {package_id}", report)

        self.root.delete(name, version)

        for identity, required in sorted(dependencies.items()):
            if not required:
                continue
            try:
                self.root.decrement_used_by(identity.name, identity.version)
            except PackageNotFoundError:
                logger.debug(f"Dependency {identity.key} of {package_id} is not installed")

        install_dir = self.install_dir(name, version)
        self._run_remove_script(package_id, install_dir)

        if install_dir.exists():
            with fs_errors("removing package files", install_dir):
                shutil.rmtree(install_dir)
        else:
            logger.debug(f"Installation folder {install_dir} already gone")

        logger.info(f"Removed {package_id}")

        if cascade:
            for identity in sorted(dependencies):
                self._remove_unused_dependency(package_id, identity)

    def _remove_unused_dependency(self, package_id: str, identity: PackageIdentity) -> None:
        try:
            dependency = self.root.find(identity.name, identity.version)
        except PackageNotFoundError:
            return
        if dependency.installed_by_user or dependency.used_by != 0:
            return

        logger.info(f"Removing unused dependency {identity.key} of {package_id}")
        try:
            self.remove(identity.name, identity.version, cascade=True)
        except IpkgError as e:
            e.message = f"removing dependency {identity.key}: {e.message}"
            e.details = dict(e.details, package=package_id)
            raise

    def _run_remove_script(self, package_id: str, install_dir: Path) -> None:
        script = install_dir / METADATA_DIR / SCRIPT_FILE
        if not script.is_file():
            logger.debug(f"No saved script for {package_id}, skipping remove steps")
            return
        try:
            self.script_runner.run(script, install_dir, install_dir, ScriptMode.REMOVE)
        except ScriptFailedError as e:
            logger.warning(f"Remove script of {package_id} failed: {e}")

    # ==========================================================================
    # Bookkeeping
    # ==========================================================================

    def set_installed_by_user(self, name: str, version: str, installed_by_user: bool) -> None:
        """Promote a dependency install to a user install, or demote it."""
        self.root.set_installed_by_user(name, version, installed_by_user)
        logger.info(
            f"{name}-${version} marked as "
            f"{'user-installed' if installed_by_user else 'dependency'}"
        )

    @staticmethod
    def _log_report(action: str, report: ReplayReport) -> None:
        for error in report.errors:
            logger.warning(f"{action}: {error}")
        for entry, reason in report.failed:
            logger.warning(f"{action}: {entry.link_path} -> {entry.link_target}: {reason}")
        for entry, reason in report.skipped:
            logger.debug(f"{action}: skipped {entry.link_path} ({reason})")
        if report.all_failed:
            logger.error(f"{action}: none of {report.total} link(s) could be processed")
