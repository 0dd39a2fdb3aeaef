"""
Path resolution and access control.

Every filesystem operation passes its raw path through ``PathValidator``
before touching the filesystem. The validator expands ``~``, anchors
relative input at the workspace root, resolves symlinks where the intent
calls for it, and checks the result against the allowed-path set.
"""

from conduit_fs.security.allowed_paths import DEFAULT_ALLOWED_PATHS, AllowedPathSet
from conduit_fs.security.existence import ensure_exists, path_exists
from conduit_fs.security.exceptions import (
    DirectoryNotFoundError,
    InvalidPathError,
    PathNotFoundError,
    PathPermissionDeniedError,
    PathValidationError,
    SymlinkResolutionError,
    TildeExpansionDisabledError,
)
from conduit_fs.security.permissions import find_allowed_ancestor, is_path_allowed
from conduit_fs.security.resolver import PathResolver
from conduit_fs.security.types import (
    PUBLIC_INTENTS,
    FailureKind,
    ResolutionIntent,
    ValidationResult,
)
from conduit_fs.security.validator import PathValidator

__all__ = [
    # Types
    "ResolutionIntent",
    "FailureKind",
    "ValidationResult",
    "PUBLIC_INTENTS",
    # Exceptions
    "PathValidationError",
    "InvalidPathError",
    "TildeExpansionDisabledError",
    "PathNotFoundError",
    "DirectoryNotFoundError",
    "PathPermissionDeniedError",
    "SymlinkResolutionError",
    # Components
    "AllowedPathSet",
    "DEFAULT_ALLOWED_PATHS",
    "PathResolver",
    "PathValidator",
    "is_path_allowed",
    "find_allowed_ancestor",
    "path_exists",
    "ensure_exists",
]
