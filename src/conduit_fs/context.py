"""
Per-process server context.

Built once from ``ConduitSettings`` at startup and passed explicitly to
every tool collaborator. Holds no mutable state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from conduit_fs import __version__
from conduit_fs.security import AllowedPathSet, PathResolver, PathValidator
from conduit_fs.settings import ConduitSettings

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ConduitContext:
    """
    Settings plus the immutable objects derived from them.

    Usage:
        context = ConduitContext.from_settings(ConduitSettings())
        path = context.validator.validate("notes.txt", ResolutionIntent.READ)
    """

    settings: ConduitSettings
    allowed_paths: AllowedPathSet
    validator: PathValidator
    server_start_time_iso: str = field(default_factory=_now_iso)
    version: str = __version__

    @classmethod
    def from_settings(
        cls,
        settings: Optional[ConduitSettings] = None,
        home: Optional[str] = None,
    ) -> "ConduitContext":
        """
        Build the allowed-path set and validator from settings.

        Args:
            settings: Server settings (default: read from the environment)
            home: Home directory override for ``~`` (mainly for tests)

        Returns:
            A ready context
        """
        settings = settings or ConduitSettings()
        allowed = AllowedPathSet.from_string(settings.allowed_paths, home=home)
        resolver = PathResolver(
            workspace_root=str(settings.workspace_root),
            home=home,
            allow_tilde_expansion=settings.allow_tilde_expansion,
        )
        validator = PathValidator(
            allowed_paths=allowed,
            resolver=resolver,
            strict_write_check=settings.strict_write_check,
        )
        logger.info(
            f"Conduit context ready: {len(allowed)} allowed path(s), "
            f"workspace root {resolver.workspace_root}"
        )
        return cls(settings=settings, allowed_paths=allowed, validator=validator)
