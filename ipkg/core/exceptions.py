# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
ipkg Exception Hierarchy

Exception Hierarchy:
    IpkgError (base)
    ├── ConfigError
    ├── RegistryError
    │   ├── NotARootError
    │   ├── PackageNotFoundError
    │   └── AlreadyInstalledError
    ├── PackageError
    │   ├── NotAPackageError
    │   ├── NoManifestError
    │   └── MalformedManifestError
    │       ├── MalformedIdentityError
    │       └── MalformedDependenciesError
    ├── UnsupportedPlatformError
    ├── DependenciesNotSatisfiedError
    ├── PackageInUseError
    ├── BuildFailedError
    ├── ScriptFailedError
    ├── ArchiveError
    │   └── PathTraversalError
    └── ResourceError
        └── FileSystemError
            └── PermissionDeniedError
"""

import errno
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

# ============================================================================
# Base Exceptions
# ============================================================================


class IpkgError(Exception):
    """Base exception for all ipkg errors"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        result = {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

        if self.cause:
            result["cause"] = {
                "type": self.cause.__class__.__name__,
                "message": str(self.cause),
            }

        return result

    def __str__(self):
        base = self.message
        if self.cause:
            base += f": {self.cause}"
        return base


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigError(IpkgError):
    """Configuration-related errors"""


# ============================================================================
# Registry Errors
# ============================================================================


class RegistryError(IpkgError):
    """Package root database failure"""


class NotARootError(RegistryError):
    """Directory is not (and cannot become) a package root"""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path
        if path:
            self.details.setdefault("path", path)


class PackageNotFoundError(RegistryError):
    """Package is not installed in the root"""

    def __init__(self, message: str, package_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.package_id = package_id
        if package_id:
            self.details.setdefault("package", package_id)


class AlreadyInstalledError(RegistryError):
    """Package version is already installed"""

    def __init__(self, message: str, package_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.package_id = package_id
        if package_id:
            self.details.setdefault("package", package_id)


# ============================================================================
# Package Input Errors
# ============================================================================


class PackageError(IpkgError):
    """Invalid package input"""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path
        if path:
            self.details.setdefault("path", path)


class NotAPackageError(PackageError):
    """Path is neither a bundle directory nor a package archive"""


class NoManifestError(PackageError):
    """Bundle has no manifest file"""


class MalformedManifestError(PackageError):
    """Manifest is not well-formed"""

    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["errors"] = self.errors
        return result


class MalformedIdentityError(MalformedManifestError):
    """Package id string does not parse into (name, version)"""


class MalformedDependenciesError(MalformedManifestError):
    """Serialized dependency string is corrupt"""


# ============================================================================
# Lifecycle Errors
# ============================================================================


class UnsupportedPlatformError(IpkgError):
    """Package does not support the host operating system"""

    def __init__(self, message: str, host_os: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.host_os = host_os
        if host_os:
            self.details.setdefault("os", host_os)


class DependenciesNotSatisfiedError(IpkgError):
    """Required dependencies are not installed"""

    def __init__(self, message: str, missing: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.missing = missing or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["missing"] = self.missing
        return result


class PackageInUseError(IpkgError):
    """Package is still required by other installed packages"""

    def __init__(self, message: str, used_by: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.used_by = used_by

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["used_by"] = self.used_by
        return result


class BuildFailedError(IpkgError):
    """Build script failed"""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        output: str = "",
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        self.output = output

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["exit_code"] = self.exit_code
        return result


class ScriptFailedError(IpkgError):
    """Install/remove script failed"""

    def __init__(self, message: str, step: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.step = step

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["step"] = self.step
        return result


# ============================================================================
# Archive Errors
# ============================================================================


class ArchiveError(IpkgError):
    """Package archive cannot be read or unpacked"""


class PathTraversalError(ArchiveError):
    """Archive entry escapes the destination directory"""

    def __init__(self, message: str, entry: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.entry = entry
        if entry:
            self.details.setdefault("entry", entry)


# ============================================================================
# Resource Errors
# ============================================================================


class ResourceError(IpkgError):
    """Resource access errors"""


class FileSystemError(ResourceError):
    """File system errors"""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["path"] = self.path
        return result


class PermissionDeniedError(FileSystemError):
    """Permission denied errors"""


# ============================================================================
# Error Translation
# ============================================================================


@contextmanager
def fs_errors(message: str, path: Optional[Any] = None) -> Iterator[None]:
    """
    Translate OSError raised inside the block into FileSystemError.

    Usage:
        with fs_errors("creating installation folder", install_dir):
            install_dir.mkdir()
    """
    try:
        yield
    except OSError as e:
        path_str = str(path) if path is not None else e.filename
        if e.errno in (errno.EACCES, errno.EPERM):
            raise PermissionDeniedError(message, path=path_str, cause=e) from e
        raise FileSystemError(message, path=path_str, cause=e) from e
