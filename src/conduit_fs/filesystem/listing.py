"""
List tool operations: directory entries and system information.
"""

import logging
import os
import platform
import shutil
from typing import Any, Optional

from conduit_fs.context import ConduitContext
from conduit_fs.filesystem.archive import ARCHIVE_FORMATS
from conduit_fs.filesystem.entries import EntryInfo, calculate_recursive_size, create_entry_info
from conduit_fs.filesystem.exceptions import (
    ErrorCode,
    FileSystemError,
    InvalidParameterError,
    error_item,
    from_os_error,
)
from conduit_fs.security import PathValidationError, ResolutionIntent
from conduit_fs.settings import SUPPORTED_CHECKSUM_ALGORITHMS

logger = logging.getLogger(__name__)


class DirectoryLister:
    """
    Implements the list tool.

    Usage:
        lister = DirectoryLister(context)
        result = lister.list_entries("src", recursive_depth=1)
        for entry in result["entries"]:
            print(entry["name"], entry["type"])
    """

    def __init__(self, context: ConduitContext):
        self.context = context
        self.validator = context.validator
        self.settings = context.settings

    def list_entries(
        self,
        path: str,
        recursive_depth: int = 0,
        calculate_recursive_size: bool = False,
    ) -> dict[str, Any]:
        """
        List the entries of a directory.

        Args:
            path: Directory to list
            recursive_depth: Levels of children to include (capped by
                ``max_recursive_depth``)
            calculate_recursive_size: Report total sizes for directories

        Returns:
            ``{"status": "success", "path": ..., "entries": [...]}`` or an error item
        """
        try:
            if isinstance(recursive_depth, bool) or not isinstance(recursive_depth, int) or recursive_depth < 0:
                raise InvalidParameterError("'recursive_depth' must be a non-negative integer")

            base = self.validator.validate(path, ResolutionIntent.READ)
            if not os.path.isdir(base):
                raise FileSystemError(
                    ErrorCode.FS_PATH_IS_FILE,
                    f"Provided path is a file, not a directory: {path}",
                )

            depth = min(recursive_depth, self.settings.max_recursive_depth)
            if depth < recursive_depth:
                logger.info(
                    f"Recursive depth {recursive_depth} capped at {depth} for {path}"
                )

            try:
                names = sorted(os.listdir(base))
            except OSError as e:
                raise from_os_error(e, ErrorCode.FS_DIR_LIST_FAILED, path)

            entries = self._list(base, names, 0, depth, calculate_recursive_size)
            return {
                "status": "success",
                "path": base,
                "effective_recursive_depth": depth,
                "entries": [entry.to_dict() for entry in entries],
            }
        except (FileSystemError, PathValidationError) as e:
            logger.warning(f"list entries failed for {path}: {e}")
            return error_item(e, path=path)
        except Exception as e:
            return error_item(e, path=path)

    def _list(
        self,
        directory: str,
        names: list[str],
        current_depth: int,
        max_depth: int,
        calculate_size: bool,
    ) -> list[EntryInfo]:
        entries = []
        for name in names:
            entry_path = os.path.join(directory, name)
            try:
                entry = create_entry_info(entry_path, name)
            except OSError as e:
                logger.warning(f"Could not stat {entry_path}: {e}. Skipping entry.")
                continue

            if entry.type == "directory":
                if calculate_size:
                    size, note = calculate_recursive_size(
                        entry_path,
                        self.settings.max_recursive_depth,
                        self.settings.recursive_size_timeout_ms,
                    )
                    entry.size_bytes = size
                    entry.recursive_size_calculation_note = note
                if current_depth < max_depth:
                    entry.children = self._children(
                        entry_path, current_depth + 1, max_depth, calculate_size
                    )
            entries.append(entry)
        return entries

    def _children(
        self, directory: str, current_depth: int, max_depth: int, calculate_size: bool
    ) -> list[EntryInfo]:
        try:
            names = sorted(os.listdir(directory))
        except OSError as e:
            logger.warning(f"Error listing directory {directory}: {e}. Skipping this directory.")
            return []
        return self._list(directory, names, current_depth, max_depth, calculate_size)

    def system_info(self, path: Optional[str] = None) -> dict[str, Any]:
        """
        Report server capabilities and filesystem statistics.

        Args:
            path: Path whose filesystem is measured (default: workspace root)
        """
        capabilities = {
            "server_version": self.context.version,
            "server_start_time_iso": self.context.server_start_time_iso,
            "platform": platform.system(),
            "python_version": platform.python_version(),
            "active_configuration": self.settings.summary(),
            "allowed_paths": self.context.allowed_paths.as_list(),
            "supported_checksum_algorithms": list(SUPPORTED_CHECKSUM_ALGORITHMS),
            "supported_archive_formats": list(ARCHIVE_FORMATS),
        }
        return {
            "status": "success",
            "server_capabilities": capabilities,
            "filesystem_stats": self.filesystem_stats(
                path or str(self.settings.workspace_root)
            ),
        }

    def filesystem_stats(self, path: str) -> dict[str, Any]:
        """Disk usage of the filesystem holding ``path``."""
        try:
            resolved = self.validator.validate(path, ResolutionIntent.READ)
            try:
                usage = shutil.disk_usage(resolved)
            except OSError as e:
                raise from_os_error(e, ErrorCode.FS_READ_FAILED, path)
            return {
                "status": "success",
                "path_queried": resolved,
                "total_bytes": usage.total,
                "used_bytes": usage.used,
                "free_bytes": usage.free,
            }
        except (FileSystemError, PathValidationError) as e:
            logger.warning(f"filesystem stats failed for {path}: {e}")
            return error_item(e, path_queried=path)
