"""Uniform forward-slash path handling.

Canonical paths never start with a separator, never contain empty, ``.`` or
``..`` segments, and keep a trailing separator only when they denote a
directory. The root is the empty string. Every classification here is purely
syntactic; nothing in this module touches a backend.
"""

import posixpath
from dataclasses import dataclass
from typing import Iterable

SEPARATOR = "/"


@dataclass(frozen=True)
class PathParts:
    """A path split into its root container and the remainder below it."""

    container: str
    relative: str

    @property
    def is_container_root(self) -> bool:
        return bool(self.container) and not self.relative


def normalize(path: str) -> str:
    """Convert backslashes, collapse redundant separators and resolve dot segments."""
    if not path:
        return ""

    unified = path.replace("\\", SEPARATOR)
    trailing = unified.endswith(SEPARATOR)

    segments = []
    for segment in unified.split(SEPARATOR):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)

    if not segments:
        return ""

    canonical = SEPARATOR.join(segments)
    # "dir/." and "dir/.." still name directories
    last = unified.rstrip(SEPARATOR).rsplit(SEPARATOR, 1)[-1]
    if trailing or last in (".", ".."):
        canonical += SEPARATOR
    return canonical


def is_root(path: str) -> bool:
    return normalize(path) == ""


def is_directory(path: str) -> bool:
    canonical = normalize(path)
    return canonical == "" or canonical.endswith(SEPARATOR)


def is_file(path: str) -> bool:
    return not is_directory(path)


def split(path: str) -> PathParts:
    """Split a path into its root container (first segment) and the remainder.

    A root path yields two empty strings, which callers treat as a request
    spanning every container.
    """
    canonical = normalize(path)
    if not canonical:
        return PathParts("", "")

    index = canonical.find(SEPARATOR)
    if index < 0:
        return PathParts(canonical, "")
    return PathParts(canonical[:index], canonical[index + 1:])


def combine(*parts: str) -> str:
    """Join path fragments; the result is a directory when the last fragment is."""
    fragments = [part for part in parts if part]
    if not fragments:
        return ""
    return normalize(SEPARATOR.join(fragments))


def as_directory(path: str) -> str:
    canonical = normalize(path)
    if canonical and not canonical.endswith(SEPARATOR):
        canonical += SEPARATOR
    return canonical


def parent(path: str) -> str:
    """Return the directory containing ``path`` (the root for top-level entries)."""
    canonical = normalize(path).rstrip(SEPARATOR)
    if SEPARATOR not in canonical:
        return ""
    return canonical.rsplit(SEPARATOR, 1)[0] + SEPARATOR


def name(path: str) -> str:
    """Return the last segment of a path without any trailing separator."""
    return normalize(path).rstrip(SEPARATOR).rsplit(SEPARATOR, 1)[-1]


def extension(path: str) -> str:
    return posixpath.splitext(name(path))[1]


def relative_to(path: str, base: str) -> str:
    """Return ``path`` relative to the directory ``base``.

    Raises ValueError when ``path`` does not live below ``base``.
    """
    canonical = normalize(path)
    prefix = as_directory(base)
    if not prefix:
        return canonical
    if not canonical.startswith(prefix):
        raise ValueError(f"'{path}' is not below '{base}'")
    return canonical[len(prefix):]


def ancestors(path: str) -> Iterable[str]:
    """Yield every directory above ``path``, nearest first, excluding the root."""
    current = parent(path)
    while current:
        yield current
        current = parent(current)
