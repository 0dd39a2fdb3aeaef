"""
Existence checks used after resolution.
"""

import os

from conduit_fs.security.exceptions import PathNotFoundError


def path_exists(path: str) -> bool:
    """Non-raising existence check. Dangling symlinks count as missing."""
    try:
        return os.path.exists(path)
    except ValueError:
        # Embedded NUL and similar
        return False


def ensure_exists(path: str, original_path: str, required: bool = True) -> None:
    """
    Raise ``PathNotFoundError`` if ``required`` and ``path`` does not exist.

    Args:
        path: Resolved path to check
        original_path: Caller input, used in the error message
        required: Whether existence is mandatory
    """
    if required and not path_exists(path):
        raise PathNotFoundError(
            original_path,
            f"Path not found: {original_path} (resolved to {path})",
            resolved_path=path,
        )
