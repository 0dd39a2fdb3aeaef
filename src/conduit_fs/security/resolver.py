"""
Path resolution: tilde expansion, absolutization and symlink canonicalization.
"""

import errno
import logging
import os
from typing import Optional

from conduit_fs.security.exceptions import (
    InvalidPathError,
    SymlinkResolutionError,
    TildeExpansionDisabledError,
)

logger = logging.getLogger(__name__)


def expand_home(path: str, home: str) -> str:
    """Replace a leading ``~`` with ``home``. Anything else is returned as is."""
    if not path.startswith("~"):
        return path
    rest = path[1:].lstrip("/" + os.sep)
    return os.path.join(home, rest) if rest else home


class PathResolver:
    """
    Turns raw caller input into absolute and canonical paths.

    Usage:
        resolver = PathResolver(workspace_root="/srv/work", home="/home/agent")
        absolute = resolver.to_absolute("notes/todo.txt")
        canonical = resolver.resolve_symlinks(absolute)
    """

    def __init__(
        self,
        workspace_root: str,
        home: Optional[str] = None,
        allow_tilde_expansion: bool = True,
    ):
        """
        Initialize the resolver.

        Args:
            workspace_root: Directory relative inputs are anchored to
            home: Home directory used for ``~`` (default: current user's home)
            allow_tilde_expansion: If False, ``~`` input is rejected
        """
        self.workspace_root = os.path.abspath(workspace_root)
        self.home = os.path.abspath(home or os.path.expanduser("~"))
        self.allow_tilde_expansion = allow_tilde_expansion

    def expand_tilde(self, path: str) -> str:
        """
        Expand a leading ``~`` to the configured home directory.

        Raises:
            TildeExpansionDisabledError: If input starts with ``~`` and
                expansion is disabled
        """
        if not path.startswith("~"):
            return path
        if not self.allow_tilde_expansion:
            raise TildeExpansionDisabledError(path)
        return expand_home(path, self.home)

    def to_absolute(self, path: str) -> str:
        """
        Expand ``~`` and make ``path`` absolute and normalized.

        Relative input is anchored at the workspace root. Never touches
        the filesystem.
        """
        expanded = self.expand_tilde(path)
        if "\x00" in expanded:
            raise InvalidPathError(path, "Path must not contain NUL characters.")
        if os.path.isabs(expanded):
            return os.path.normpath(expanded)
        return os.path.normpath(os.path.join(self.workspace_root, expanded))

    def resolve_symlinks(
        self, absolute_path: str, original_path: Optional[str] = None
    ) -> Optional[str]:
        """
        Canonicalize ``absolute_path`` by resolving every symlink.

        Args:
            absolute_path: Absolute path to canonicalize
            original_path: Caller input, used in error messages

        Returns:
            The canonical path, or None if the path does not exist

        Raises:
            SymlinkResolutionError: On symlink cycles and any other OS error
        """
        original = original_path or absolute_path
        try:
            return os.path.realpath(absolute_path, strict=True)
        except OSError as e:
            if e.errno in (errno.ENOENT, errno.ENOTDIR):
                return None
            if e.errno == errno.ELOOP:
                logger.error(f"Too many symbolic links for {absolute_path}: {e}")
                raise SymlinkResolutionError(
                    original,
                    f"Too many symbolic links encountered while resolving path: {original}",
                    resolved_path=absolute_path,
                )
            logger.error(f"Failed to resolve real path for {absolute_path}: {e}")
            raise SymlinkResolutionError(
                original,
                f"Failed to resolve real path for: {original}. {e.strerror or e}",
                resolved_path=absolute_path,
            )
