"""
Path validation strategy.

``PathValidator`` is the single chokepoint every filesystem operation
passes through. Given a raw caller-supplied path and a declared
``ResolutionIntent`` it either returns a canonical absolute path that is
safe to hand to raw filesystem calls, or raises a classified
``PathValidationError``.
"""

import asyncio
import logging
import os
from typing import Any

from conduit_fs.security.allowed_paths import AllowedPathSet
from conduit_fs.security.existence import ensure_exists
from conduit_fs.security.exceptions import (
    DirectoryNotFoundError,
    InvalidPathError,
    PathNotFoundError,
    PathPermissionDeniedError,
    PathValidationError,
)
from conduit_fs.security.resolver import PathResolver
from conduit_fs.security.types import ResolutionIntent, ValidationResult

logger = logging.getLogger(__name__)


class PathValidator:
    """
    Resolves and authorizes caller-supplied paths.

    Holds only immutable state, so one instance can be shared by any
    number of concurrent validations.

    Usage:
        validator = PathValidator(
            allowed_paths=AllowedPathSet.from_string("~/work:/tmp"),
            resolver=PathResolver(workspace_root="/home/agent/work"),
        )

        try:
            path = validator.validate("notes.txt", ResolutionIntent.READ)
        except PathValidationError as e:
            print(f"{e.kind.value}: {e}")
    """

    def __init__(
        self,
        allowed_paths: AllowedPathSet,
        resolver: PathResolver,
        strict_write_check: bool = True,
    ):
        """
        Initialize the validator.

        Args:
            allowed_paths: Directories inside which access is permitted
            resolver: Resolver bound to the workspace root and home directory
            strict_write_check: Also authorize the canonical form of the
                nearest existing component for the write intent
        """
        self.allowed_paths = allowed_paths
        self.resolver = resolver
        self.strict_write_check = strict_write_check

    def validate(
        self,
        raw_path: Any,
        intent: ResolutionIntent = ResolutionIntent.READ,
        *,
        must_exist: bool = False,
    ) -> str:
        """
        Validate ``raw_path`` for ``intent``.

        Args:
            raw_path: Untrusted caller input
            intent: Declared purpose of the access
            must_exist: Require existence (unchecked intent only; read
                always requires existence)

        Returns:
            Canonical absolute path authorized for ``intent``

        Raises:
            PathValidationError: Subclass matching the failure kind
            ValueError: If ``must_exist`` is combined with write or create
        """
        intent = ResolutionIntent(intent)
        if must_exist and intent in (ResolutionIntent.WRITE, ResolutionIntent.CREATE):
            raise ValueError(f"must_exist is not supported for the {intent.value} intent")

        self._require_non_empty(raw_path)

        if intent is ResolutionIntent.READ:
            return self.validate_for_reading(raw_path)
        if intent is ResolutionIntent.WRITE:
            return self.validate_for_writing(raw_path)
        if intent is ResolutionIntent.CREATE:
            return self.validate_for_creation(raw_path)
        return self.validate_unchecked(raw_path, must_exist=must_exist)

    def check(
        self,
        raw_path: Any,
        intent: ResolutionIntent = ResolutionIntent.READ,
        *,
        must_exist: bool = False,
    ) -> ValidationResult:
        """
        Like ``validate`` but returns a ``ValidationResult`` instead of raising.
        """
        try:
            path = self.validate(raw_path, intent, must_exist=must_exist)
        except PathValidationError as e:
            return ValidationResult.failed(e.kind, e.message)
        return ValidationResult.success(path)

    async def validate_async(
        self,
        raw_path: Any,
        intent: ResolutionIntent = ResolutionIntent.READ,
        *,
        must_exist: bool = False,
    ) -> str:
        """Run ``validate`` in a worker thread. Safe to cancel."""
        return await asyncio.to_thread(
            self.validate, raw_path, intent, must_exist=must_exist
        )

    def validate_for_reading(self, raw_path: str) -> str:
        """Target must exist; its canonical path must be allowed."""
        self._require_non_empty(raw_path)
        absolute = self.resolver.to_absolute(raw_path)
        canonical = self.resolver.resolve_symlinks(absolute, raw_path)

        if canonical is None:
            logger.debug(f"Path not found for reading: {raw_path} (resolved to {absolute})")
            raise PathNotFoundError(
                raw_path,
                f"Path not found: {raw_path} (resolved to {absolute})",
                resolved_path=absolute,
            )

        if not self.allowed_paths.contains(canonical):
            logger.warning(
                f"Access denied for reading: {raw_path} (resolved to {canonical})"
            )
            raise PathPermissionDeniedError(
                raw_path,
                f"Access to path is denied: {raw_path}",
                resolved_path=canonical,
            )

        ensure_exists(canonical, raw_path, required=True)
        return canonical

    def validate_for_writing(self, raw_path: str) -> str:
        """
        Target or an ancestor must be allowed. The target need not exist
        and the unresolved absolute path is returned.
        """
        self._require_non_empty(raw_path)
        absolute = self.resolver.to_absolute(raw_path)

        ancestor = self.allowed_paths.allowed_ancestor(absolute)
        if ancestor is None:
            logger.warning(
                f"No allowed ancestor found for writing: {raw_path} (resolved to {absolute})"
            )
            raise PathPermissionDeniedError(
                raw_path,
                f"Access to path is denied: {raw_path}",
                resolved_path=absolute,
            )

        if self.strict_write_check:
            self._check_existing_component(raw_path, absolute)

        return absolute

    def validate_for_creation(self, raw_path: str) -> str:
        """
        Target must be an allowed entry itself, or its parent must exist, resolve
        and be allowed. Returns the absolute target, not the parent.
        """
        self._require_non_empty(raw_path)
        absolute = self.resolver.to_absolute(raw_path)

        # Creating directly onto an allowed root, e.g. extracting into it
        if self.allowed_paths.is_entry(absolute):
            return absolute

        parent = os.path.dirname(absolute)
        if parent == absolute:
            logger.warning(f"Root directory access denied for creation: {raw_path}")
            raise PathPermissionDeniedError(
                raw_path,
                f"Access to root directory is denied: {raw_path}",
                resolved_path=absolute,
            )

        real_parent = self.resolver.resolve_symlinks(parent, raw_path)
        if real_parent is None:
            # Intermediate directories may be created by the caller as long
            # as the nearest existing ancestor is real and allowed.
            ancestor = self._nearest_existing(parent)
            real_ancestor = self.resolver.resolve_symlinks(ancestor, raw_path)
            if real_ancestor is None or not self.allowed_paths.contains(real_ancestor):
                logger.warning(f"Parent directory not found for creation: {parent}")
                raise DirectoryNotFoundError(
                    raw_path,
                    f"Parent directory not found for creation: {raw_path} (parent: {parent})",
                    resolved_path=absolute,
                )
            return absolute

        if not self.allowed_paths.contains(real_parent):
            logger.warning(
                f"Parent directory access denied for creation: {raw_path} (parent: {real_parent})"
            )
            raise PathPermissionDeniedError(
                raw_path,
                f"Parent directory access denied for creation: {raw_path}",
                resolved_path=real_parent,
            )

        if not os.path.isdir(real_parent):
            raise DirectoryNotFoundError(
                raw_path,
                f"Parent path is not a directory: {raw_path} (parent: {parent})",
                resolved_path=real_parent,
            )

        # An existing target may itself be a symlink pointing elsewhere
        if self.strict_write_check and os.path.islink(absolute):
            self._check_existing_component(raw_path, absolute)

        return absolute

    def validate_entry_location(self, raw_path: str) -> str:
        """
        Canonical location of the entry itself, without following a final
        symlink.

        Used where the operation acts on a link rather than on its target
        (e.g. unlinking it). The parent is canonicalized and the entry's
        own location must exist and be allowed.

        Raises:
            PathNotFoundError: If the parent or the entry does not exist
            PathPermissionDeniedError: If the location is not allowed
        """
        self._require_non_empty(raw_path)
        absolute = self.resolver.to_absolute(raw_path)
        parent = os.path.dirname(absolute)
        if parent == absolute:
            location = absolute
        else:
            real_parent = self.resolver.resolve_symlinks(parent, raw_path)
            if real_parent is None:
                raise PathNotFoundError(
                    raw_path,
                    f"Path not found: {raw_path} (resolved to {absolute})",
                    resolved_path=absolute,
                )
            location = os.path.join(real_parent, os.path.basename(absolute))

        if not os.path.lexists(location):
            raise PathNotFoundError(
                raw_path,
                f"Path not found: {raw_path} (resolved to {location})",
                resolved_path=location,
            )

        if not self.allowed_paths.contains(location):
            logger.warning(f"Access denied for entry: {raw_path} (located at {location})")
            raise PathPermissionDeniedError(
                raw_path,
                f"Access to path is denied: {raw_path}",
                resolved_path=location,
            )
        return location

    def validate_unchecked(self, raw_path: str, must_exist: bool = False) -> str:
        """
        Resolve without any permission check.

        Only for internal call sites that established trust by other
        means. Never reachable from tool input.
        """
        self._require_non_empty(raw_path)
        absolute = self.resolver.to_absolute(raw_path)
        canonical = self.resolver.resolve_symlinks(absolute, raw_path) or absolute
        ensure_exists(canonical, raw_path, required=must_exist)
        return canonical

    def _check_existing_component(self, raw_path: str, absolute: str) -> None:
        """
        Authorize the canonical form of the nearest existing component of
        ``absolute`` when it lies inside an allowed directory, so a symlink
        under an allowed root cannot redirect a write elsewhere.
        """
        existing = self._nearest_existing(absolute)
        if not self.allowed_paths.contains(existing):
            # Everything below this point is yet to be created
            return

        canonical = self.resolver.resolve_symlinks(existing, raw_path)
        if canonical is None:
            # Dangling symlink: follow it as far as it goes
            canonical = os.path.realpath(existing)

        if not self.allowed_paths.contains(canonical):
            logger.warning(
                f"Access denied for writing through symlink: {raw_path} "
                f"({existing} resolves to {canonical})"
            )
            raise PathPermissionDeniedError(
                raw_path,
                f"Access to path is denied: {raw_path}",
                resolved_path=canonical,
            )

    @staticmethod
    def _nearest_existing(path: str) -> str:
        """Closest ancestor of ``path`` (itself included) present on disk."""
        current = path
        while not os.path.lexists(current):
            parent = os.path.dirname(current)
            if parent == current:
                break
            current = parent
        return current

    @staticmethod
    def _require_non_empty(raw_path: Any) -> None:
        if not isinstance(raw_path, str) or not raw_path.strip():
            raise InvalidPathError(
                "" if raw_path is None else str(raw_path),
                "Path must be a non-empty string.",
            )

    def __repr__(self) -> str:
        return (
            f"PathValidator(allowed_paths={len(self.allowed_paths)}, "
            f"workspace_root={self.resolver.workspace_root!r})"
        )
