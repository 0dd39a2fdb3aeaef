"""
The allowed-path set: directory prefixes inside which access is permitted.
"""

import logging
import os
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from conduit_fs.security.permissions import find_allowed_ancestor, is_path_allowed
from conduit_fs.security.resolver import expand_home

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_PATHS = "~:/tmp"


def _normalize(path: str) -> str:
    normalized = os.path.normpath(path)
    # normpath keeps a POSIX double leading slash
    if normalized.startswith("//") and not normalized.startswith("///"):
        normalized = normalized[1:]
    return normalized


@dataclass(frozen=True)
class AllowedPathSet:
    """
    Ordered, immutable set of absolute directory prefixes.

    Built once at startup and shared read-only by every validation.
    Entries are absolute and carry no trailing separator (the filesystem
    root excepted).

    Usage:
        allowed = AllowedPathSet.from_string("~/projects:/tmp")
        allowed.contains("/tmp/build/out.txt")  # True
    """

    paths: tuple[str, ...] = ()

    @classmethod
    def from_string(
        cls,
        raw: str,
        home: Optional[str] = None,
        cwd: Optional[str] = None,
    ) -> "AllowedPathSet":
        """
        Build the set from a colon-separated list.

        Each entry is tilde-expanded, absolutized against ``cwd`` and
        normalized. Existing entries that are reached through a symlink
        also contribute their canonical form, so canonical paths under
        them match.

        Args:
            raw: Colon-separated directory list, e.g. ``"~:/tmp"``
            home: Home directory for ``~`` (default: current user's home)
            cwd: Base for relative entries (default: process cwd)
        """
        return cls.from_paths(raw.split(":"), home=home, cwd=cwd)

    @classmethod
    def from_paths(
        cls,
        entries: Iterable[str],
        home: Optional[str] = None,
        cwd: Optional[str] = None,
    ) -> "AllowedPathSet":
        """Build the set from individual directory entries."""
        home = home or os.path.expanduser("~")
        cwd = cwd or os.getcwd()

        paths: list[str] = []
        for entry in entries:
            entry = str(entry).strip()
            if not entry:
                continue
            absolute = _normalize(os.path.join(cwd, expand_home(entry, home)))
            candidates = [absolute]
            if os.path.exists(absolute):
                canonical = os.path.realpath(absolute)
                if canonical != absolute:
                    candidates.append(canonical)
            for candidate in candidates:
                if candidate not in paths:
                    paths.append(candidate)

        if not paths:
            logger.error(
                "Allowed paths resolved to an empty list; all filesystem access will be denied."
            )
        else:
            logger.debug(f"Allowed paths: {paths}")

        return cls(paths=tuple(paths))

    def contains(self, path: str) -> bool:
        """True if ``path`` equals or lies below an allowed entry."""
        return is_path_allowed(path, self.paths)

    def is_entry(self, path: str) -> bool:
        """True if ``path`` is one of the allowed entries itself."""
        return path in self.paths

    def allowed_ancestor(self, path: str) -> Optional[str]:
        """First ancestor of ``path`` (itself included) that is allowed."""
        return find_allowed_ancestor(path, self.paths)

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths)

    def __len__(self) -> int:
        return len(self.paths)

    def __bool__(self) -> bool:
        return bool(self.paths)

    def as_list(self) -> list[str]:
        return list(self.paths)
