"""
Types for path validation.

Defines the resolution intents a caller can declare, the classified
failure kinds the validator can report, and the tagged result returned
by non-raising checks.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ResolutionIntent(str, Enum):
    """Declared purpose of a path validation call."""

    READ = "read"
    """Target must exist and its canonical path must be allowed."""

    WRITE = "write"
    """Target or one of its ancestors must be allowed. Existence not required."""

    CREATE = "create"
    """Target must be allowed, or its parent must exist and be allowed."""

    UNCHECKED = "unchecked"
    """Skip the permission check. Internal call sites only."""


# Intents that may be selected by callers at the system boundary.
PUBLIC_INTENTS = (ResolutionIntent.READ, ResolutionIntent.WRITE, ResolutionIntent.CREATE)


class FailureKind(str, Enum):
    """Classified reasons a validation can fail."""

    INVALID_PATH = "InvalidPath"
    """Malformed input, or a policy-forbidden form such as a disabled tilde."""

    NOT_FOUND = "NotFound"
    """Read target (or required existence) missing."""

    DIRECTORY_NOT_FOUND = "DirectoryNotFound"
    """Parent directory of a creation target missing."""

    PERMISSION_DENIED = "PermissionDenied"
    """Path falls outside the allowed-path set."""

    SYMLINK_RESOLUTION_FAILED = "SymlinkResolutionFailed"
    """Symlink cycle or another OS-level resolution error."""


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of a validation that does not raise.

    Exactly one of ``path`` and ``failure`` is set.
    """

    path: Optional[str] = None
    failure: Optional[FailureKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, path: str) -> "ValidationResult":
        return cls(path=path)

    @classmethod
    def failed(cls, failure: FailureKind, message: str) -> "ValidationResult":
        return cls(failure=failure, message=message)

    def to_dict(self) -> dict:
        if self.ok:
            return {"ok": True, "path": self.path}
        return {"ok": False, "failure": self.failure.value, "message": self.message}
