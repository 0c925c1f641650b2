# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Structured package identity and its single flat serialization."""

from dataclasses import dataclass

from .exceptions import MalformedIdentityError

# Joins name and version in directory names and in the registry dependency column
SEPARATOR = "-$"

_FORBIDDEN = (";", "(", ")", "/", "\\")

_RESERVED = (".", "..")


def _check_part(kind: str, value: str, source: str) -> None:
    if not value:
        raise MalformedIdentityError(
            f"invalid package id {source!r}: empty {kind}",
            details={"id": source},
        )
    if value in _RESERVED:
        raise MalformedIdentityError(
            f"invalid package id {source!r}: {kind} may not be {value!r}",
            details={"id": source},
        )
    if SEPARATOR in value or any(ch.isspace() for ch in value):
        raise MalformedIdentityError(
            f"invalid package id {source!r}: bad character in {kind}",
            details={"id": source},
        )
    if any(ch in value for ch in _FORBIDDEN):
        raise MalformedIdentityError(
            f"invalid package id {source!r}: {kind} contains one of {''.join(_FORBIDDEN)}",
            details={"id": source},
        )


@dataclass(frozen=True, order=True)
class PackageIdentity:
    """(name, version) pair. Versions are opaque and compared for equality only."""

    name: str
    version: str

    def __post_init__(self):
        source = f"{self.name}{SEPARATOR}{self.version}"
        _check_part("name", self.name, source)
        _check_part("version", self.version, source)

    @classmethod
    def parse(cls, text: str) -> "PackageIdentity":
        """Parse ``name-$version``."""
        name, sep, version = text.partition(SEPARATOR)
        if not sep:
            raise MalformedIdentityError(
                f"invalid package id {text!r}: expected name{SEPARATOR}version",
                details={"id": text},
            )
        return cls(name, version)

    @property
    def key(self) -> str:
        return f"{self.name}{SEPARATOR}{self.version}"

    def __str__(self) -> str:
        return self.key
