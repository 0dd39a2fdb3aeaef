"""
Allowed-path membership checks.

Pure string logic over absolute, normalized paths. Nothing here touches
the filesystem.
"""

import os
from typing import Iterable, Optional


def is_path_allowed(path: str, allowed_paths: Iterable[str]) -> bool:
    """
    Check whether ``path`` equals an allowed entry or lies strictly below one.

    A plain prefix test is not enough: ``/allowed-evil`` must not match
    ``/allowed``, so the character following the prefix has to be the
    path separator.

    Args:
        path: Absolute, normalized path to check
        allowed_paths: Absolute allowed entries without trailing separators

    Returns:
        True if the path is inside the allowed set
    """
    for allowed in allowed_paths:
        if path == allowed:
            return True
        if not path.startswith(allowed):
            continue
        # Filesystem root is the only entry that ends with a separator
        if allowed.endswith(os.sep):
            return True
        if path[len(allowed)] == os.sep:
            return True
    return False


def find_allowed_ancestor(path: str, allowed_paths: Iterable[str]) -> Optional[str]:
    """
    Walk from ``path`` up to the filesystem root and return the first
    ancestor (``path`` itself included) that is allowed.

    Args:
        path: Absolute, normalized path
        allowed_paths: Allowed entries

    Returns:
        The first allowed ancestor, or None
    """
    allowed = tuple(allowed_paths)
    current = path
    while True:
        if is_path_allowed(current, allowed):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent
