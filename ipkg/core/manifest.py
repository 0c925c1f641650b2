# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Package Manifest Model

The manifest lives at ``<bundle>/.ira/config.json``:

    {
        "name": "testpkg",
        "version": "1.0",
        "dependencies": {"libfoo-$2.1": true, "docs-$2.1": false},
        "supportWindows": false,
        "supportLinux": true,
        "build": false
    }

Only the dependency set outlives an install: it is flattened into the
registry's ``dependencies`` column as ``id(!);id(?);...`` where ``!`` marks a
required dependency and ``?`` an optional one.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any, Callable, Dict, List, Mapping, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PlainValidator,
    StrictBool,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import (
    FileSystemError,
    IpkgError,
    MalformedDependenciesError,
    MalformedManifestError,
    NoManifestError,
    PackageNotFoundError,
)
from .identity import PackageIdentity

if TYPE_CHECKING:
    from .registry import PackageRoot

logger = logging.getLogger("ipkg.manifest")

REQUIRED_FLAG = "(!)"
OPTIONAL_FLAG = "(?)"
_FLAG_LEN = 3

DependencyMap = Dict[PackageIdentity, bool]
DependencyVisitor = Callable[[str, str, bool], Any]


def _coerce_identity(value: Any) -> PackageIdentity:
    if isinstance(value, PackageIdentity):
        return value
    if not isinstance(value, str):
        raise ValueError(f"dependency id must be a string, got {type(value).__name__}")
    try:
        return PackageIdentity.parse(value)
    except IpkgError as e:
        raise ValueError(e.message) from e


IdentityKey = Annotated[PackageIdentity, PlainValidator(_coerce_identity)]


@dataclass
class DependencyCheck:
    """Outcome of checking a manifest's required dependencies against a root."""

    missing: List[PackageIdentity] = field(default_factory=list)

    @property
    def satisfied(self) -> bool:
        return not self.missing


class Manifest(BaseModel):
    """A package's declared identity, platform support, build flag and dependencies."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    version: str
    support_windows: StrictBool = Field(
        default=False,
        validation_alias=AliasChoices("supportWindows", "SupportWindows", "support_windows"),
    )
    support_linux: StrictBool = Field(
        default=False,
        validation_alias=AliasChoices("supportLinux", "SupportLinux", "support_linux"),
    )
    build: StrictBool = Field(
        default=False,
        validation_alias=AliasChoices("build", "Build"),
    )
    dependencies: Dict[IdentityKey, StrictBool] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("dependencies", "Dependencies"),
    )

    @field_validator("dependencies", mode="before")
    @classmethod
    def null_dependencies(cls, v):
        """``"dependencies": null`` means no dependencies"""
        return {} if v is None else v

    @model_validator(mode="after")
    def check_identity(self):
        try:
            PackageIdentity(self.name, self.version)
        except IpkgError as e:
            raise ValueError(e.message) from e
        return self

    @property
    def identity(self) -> PackageIdentity:
        return PackageIdentity(self.name, self.version)

    @property
    def id(self) -> str:
        return self.identity.key

    @classmethod
    def parse(cls, path: Union[str, Path]) -> "Manifest":
        """
        Parse a manifest file.

        Raises:
            NoManifestError: file does not exist
            MalformedManifestError: file is not a valid manifest
        """
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise NoManifestError("package has no config file", path=str(path), cause=e) from e
        except OSError as e:
            raise FileSystemError("reading config file", path=str(path), cause=e) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedManifestError(
                "parsing config as JSON", path=str(path), cause=e
            ) from e

        if not isinstance(data, dict):
            raise MalformedManifestError(
                "config must be a JSON object", path=str(path)
            )

        try:
            manifest = cls.model_validate(data)
        except ValidationError as e:
            errors = [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            raise MalformedManifestError(
                f"invalid config: {errors[0]['loc']}: {errors[0]['msg']}",
                errors=errors,
                path=str(path),
            ) from e

        logger.debug(f"Parsed manifest {manifest.id} from {path}")
        return manifest

    def supports(self, host_os: str) -> bool:
        """Linux and Windows are the only recognised OS families"""
        if host_os == "Linux":
            return self.support_linux
        if host_os == "Windows":
            return self.support_windows
        return False

    def check_dependencies(self, root: "PackageRoot") -> DependencyCheck:
        """
        Look up every required dependency in the root.

        Absent dependencies are collected, optional ones are never looked up.
        Registry failures other than "not found" propagate.
        """
        check = DependencyCheck()
        for identity, required in sorted(self.dependencies.items()):
            if not required:
                continue
            try:
                root.find(identity.name, identity.version)
            except PackageNotFoundError:
                check.missing.append(identity)
        return check

    def serialize_dependencies(self) -> str:
        return serialize_dependencies(self.dependencies)

    def for_each_dependency(self, visitor: DependencyVisitor) -> None:
        for_each_dependency(self.dependencies, visitor)


# ============================================================================
# Dependency Serialization
# ============================================================================


def serialize_dependencies(dependencies: Mapping[PackageIdentity, bool]) -> str:
    """Flatten a dependency map to ``id(!);id(?);...``; empty map gives ``""``."""
    return ";".join(
        identity.key + (REQUIRED_FLAG if required else OPTIONAL_FLAG)
        for identity, required in sorted(dependencies.items())
    )


def deserialize_dependencies(serialized: str) -> DependencyMap:
    """Inverse of serialize_dependencies."""
    result: DependencyMap = {}
    if serialized == "":
        return result

    for entry in serialized.split(";"):
        if len(entry) <= _FLAG_LEN:
            raise MalformedDependenciesError(
                f"corrupt dependency entry {entry!r}",
                details={"serialized": serialized},
            )
        flag = entry[-_FLAG_LEN:]
        if flag not in (REQUIRED_FLAG, OPTIONAL_FLAG):
            raise MalformedDependenciesError(
                f"unknown dependency flag in {entry!r}",
                details={"serialized": serialized},
            )
        identity = PackageIdentity.parse(entry[:-_FLAG_LEN])
        result[identity] = flag == REQUIRED_FLAG

    return result


def for_each_dependency(
    dependencies: Mapping[PackageIdentity, bool], visitor: DependencyVisitor
) -> None:
    """
    Call ``visitor(name, version, required)`` for every dependency.

    The first exception raised by the visitor stops the walk and propagates.
    """
    for identity, required in list(dependencies.items()):
        visitor(identity.name, identity.version, required)


def dependency_listing(dependencies: Mapping[PackageIdentity, bool]) -> Dict[str, List[str]]:
    """Human-readable required/optional listing derived from a dependency map."""
    listing: Dict[str, List[str]] = {"required": [], "optional": []}
    for identity, required in sorted(dependencies.items()):
        listing["required" if required else "optional"].append(identity.key)
    return listing
