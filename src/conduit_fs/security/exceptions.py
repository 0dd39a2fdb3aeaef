"""
Exceptions raised by path validation.

Each exception carries the classified ``FailureKind`` so callers can
branch on the kind without inspecting messages or OS error codes.
"""

from typing import Optional

from conduit_fs.security.types import FailureKind


class PathValidationError(Exception):
    """Base exception for path validation failures."""

    kind: FailureKind = FailureKind.INVALID_PATH

    def __init__(
        self,
        path: str,
        message: str,
        *,
        resolved_path: Optional[str] = None,
    ):
        self.path = path
        self.resolved_path = resolved_path
        self.message = message
        super().__init__(message)


class InvalidPathError(PathValidationError):
    """Raised when the raw input is empty, blank or otherwise malformed."""

    kind = FailureKind.INVALID_PATH


class TildeExpansionDisabledError(InvalidPathError):
    """Raised when input starts with ``~`` but tilde expansion is disabled."""

    def __init__(self, path: str):
        super().__init__(
            path, "Tilde (~) expansion is not allowed by server configuration."
        )


class PathNotFoundError(PathValidationError):
    """Raised when a path that must exist does not."""

    kind = FailureKind.NOT_FOUND


class DirectoryNotFoundError(PathValidationError):
    """Raised when the parent directory of a creation target is missing."""

    kind = FailureKind.DIRECTORY_NOT_FOUND


class PathPermissionDeniedError(PathValidationError):
    """Raised when a path lies outside every allowed directory."""

    kind = FailureKind.PERMISSION_DENIED


class SymlinkResolutionError(PathValidationError):
    """Raised on symlink cycles and other OS-level resolution errors."""

    kind = FailureKind.SYMLINK_RESOLUTION_FAILED

