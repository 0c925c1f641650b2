# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
ipkg Core - Init file

Package root, manifests and the install/activate/remove lifecycle.
"""

from .activation import ActivationLog, ActivationLogEntry, ReplayReport
from .archive import ArchiveExtractor
from .builder import BuildRunner
from .config import IpkgConfig, get_config, load_config, reload_config
from .exceptions import (
    AlreadyInstalledError,
    ArchiveError,
    BuildFailedError,
    ConfigError,
    DependenciesNotSatisfiedError,
    FileSystemError,
    IpkgError,
    MalformedDependenciesError,
    MalformedIdentityError,
    MalformedManifestError,
    NoManifestError,
    NotAPackageError,
    NotARootError,
    PackageError,
    PackageInUseError,
    PackageNotFoundError,
    PathTraversalError,
    PermissionDeniedError,
    RegistryError,
    ResourceError,
    ScriptFailedError,
    UnsupportedPlatformError,
)
from .identity import SEPARATOR, PackageIdentity
from .iscript import IScriptRunner, ScriptMode, ScriptRunner
from .lifecycle import LifecycleEngine
from .manifest import (
    DependencyCheck,
    Manifest,
    dependency_listing,
    deserialize_dependencies,
    for_each_dependency,
    serialize_dependencies,
)
from .registry import PackageRoot, RegistryRecord
from .roots import RootManager
from .sorting import SORT_BY_NAME, SORT_BY_VERSION, SortMethod

__all__ = [
    # Identity & manifests
    "SEPARATOR",
    "PackageIdentity",
    "Manifest",
    "DependencyCheck",
    "serialize_dependencies",
    "deserialize_dependencies",
    "for_each_dependency",
    "dependency_listing",
    # Registry
    "PackageRoot",
    "RegistryRecord",
    "RootManager",
    # Lifecycle
    "LifecycleEngine",
    "ActivationLog",
    "ActivationLogEntry",
    "ReplayReport",
    "ArchiveExtractor",
    "BuildRunner",
    "IScriptRunner",
    "ScriptMode",
    "ScriptRunner",
    # Sorting
    "SortMethod",
    "SORT_BY_NAME",
    "SORT_BY_VERSION",
    # Config
    "IpkgConfig",
    "get_config",
    "load_config",
    "reload_config",
    # Errors
    "IpkgError",
    "ConfigError",
    "RegistryError",
    "NotARootError",
    "PackageNotFoundError",
    "AlreadyInstalledError",
    "PackageError",
    "NotAPackageError",
    "NoManifestError",
    "MalformedManifestError",
    "MalformedIdentityError",
    "MalformedDependenciesError",
    "UnsupportedPlatformError",
    "DependenciesNotSatisfiedError",
    "PackageInUseError",
    "BuildFailedError",
    "ScriptFailedError",
    "ArchiveError",
    "PathTraversalError",
    "ResourceError",
    "FileSystemError",
    "PermissionDeniedError",
]
