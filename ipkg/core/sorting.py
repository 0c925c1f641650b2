# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Package ordering for listings.

Works on anything exposing ``name`` and ``version`` (manifests, registry
records). Ordering is for presentation only: version resolution is always
an exact match.
"""

from functools import cmp_to_key
from typing import Any, Callable, List, Optional, Tuple

from packaging.version import InvalidVersion, Version

LessFunc = Callable[[Any, Any], bool]


class SortMethod:
    """A less-than predicate over packages that can sort a list in place."""

    def __init__(self, less: LessFunc, name: str = ""):
        self.less = less
        self.name = name or getattr(less, "__name__", "custom")

    def __call__(self, first: Any, second: Any) -> bool:
        return self.less(first, second)

    def _compare(self, first: Any, second: Any) -> int:
        if self.less(first, second):
            return -1
        if self.less(second, first):
            return 1
        return 0

    def sort(self, items: List[Any], reverse: bool = False) -> None:
        """Stable in-place sort; reverse flips the order."""
        items.sort(key=cmp_to_key(self._compare), reverse=reverse)

    def __repr__(self) -> str:
        return f"SortMethod({self.name!r})"


def _version_key(version: str) -> Tuple[int, Optional[Version], str]:
    try:
        return (1, Version(version), version)
    except InvalidVersion:
        return (0, None, version)


def _by_name(first: Any, second: Any) -> bool:
    return first.name < second.name


def _by_version(first: Any, second: Any) -> bool:
    a = _version_key(first.version)
    b = _version_key(second.version)
    if a[0] != b[0]:
        return a[0] < b[0]
    if a[0] == 0:
        return a[2] < b[2]
    return a[1] < b[1]


SORT_BY_NAME = SortMethod(_by_name, "name")
SORT_BY_VERSION = SortMethod(_by_version, "version")

SORT_METHODS = {
    "name": SORT_BY_NAME,
    "version": SORT_BY_VERSION,
}
