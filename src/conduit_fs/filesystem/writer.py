"""
Write tool operations: put, mkdir, copy, move, delete and touch.

Each action takes a batch of entries and returns one result item per
entry. A failing entry never aborts the batch.
"""

import base64
import binascii
import errno
import logging
import os
import shutil
from typing import Any, Callable, Optional

from conduit_fs.context import ConduitContext
from conduit_fs.filesystem.exceptions import (
    ErrorCode,
    FileSystemError,
    InvalidParameterError,
    error_item,
    from_os_error,
)
from conduit_fs.filesystem.reader import file_checksum
from conduit_fs.security import (
    DirectoryNotFoundError,
    PathValidationError,
    ResolutionIntent,
)

logger = logging.getLogger(__name__)

WRITE_MODES = ("overwrite", "append", "error_if_exists")
INPUT_ENCODINGS = ("text", "base64")


class FileWriter:
    """
    Implements the batch actions of the write tool.

    Usage:
        writer = FileWriter(context)
        results = writer.put([
            {"path": "out/report.txt", "content": "done\\n"},
        ])
        assert results[0]["status"] == "success"
    """

    def __init__(self, context: ConduitContext):
        """
        Initialize the file writer.

        Args:
            context: Server context
        """
        self.context = context
        self.validator = context.validator
        self.settings = context.settings

    def validate_for_output(self, raw_path: str) -> str:
        """
        Authorize a path that will be created, possibly together with its
        missing parent directories.

        Tries the create intent first and falls back to the write intent
        when the parent chain does not exist yet.
        """
        try:
            return self.validator.validate(raw_path, ResolutionIntent.CREATE)
        except DirectoryNotFoundError:
            logger.debug(f"Parent missing for {raw_path}, validating for writing")
            return self.validator.validate(raw_path, ResolutionIntent.WRITE)

    def put(self, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Write content to files.

        Entry keys: ``path``, ``content``, ``input_encoding`` (text or
        base64), ``write_mode`` (overwrite, append or error_if_exists).
        """
        return self._run_batch("put", entries, self._put_one)

    def _put_one(self, entry: dict[str, Any]) -> dict[str, Any]:
        raw_path = _require(entry, "path")
        content = entry.get("content")
        if not isinstance(content, str):
            raise InvalidParameterError("'content' must be a string")
        encoding = entry.get("input_encoding", "text")
        write_mode = entry.get("write_mode", "overwrite")

        if encoding not in INPUT_ENCODINGS:
            raise FileSystemError(
                ErrorCode.INVALID_ENCODING, f"Unsupported input_encoding: {encoding}"
            )
        if write_mode not in WRITE_MODES:
            raise FileSystemError(
                ErrorCode.INVALID_WRITE_MODE, f"Unsupported write_mode: {write_mode}"
            )

        if encoding == "base64":
            try:
                data = base64.b64decode(content, validate=True)
            except (binascii.Error, ValueError) as e:
                raise FileSystemError(
                    ErrorCode.INVALID_ENCODING, f"Invalid base64 content: {e}"
                )
        else:
            data = content.encode("utf-8")

        path = self.validate_for_output(raw_path)

        if os.path.isdir(path):
            raise FileSystemError(
                ErrorCode.FS_PATH_IS_DIR, f"Path is a directory, not a file: {raw_path}"
            )
        if write_mode == "error_if_exists" and os.path.lexists(path):
            raise FileSystemError(
                ErrorCode.FS_ALREADY_EXISTS, f"File already exists: {raw_path}"
            )

        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "ab" if write_mode == "append" else "wb") as f:
                f.write(data)
            checksum = file_checksum(path, self.settings.default_checksum_algorithm)
        except OSError as e:
            raise from_os_error(e, ErrorCode.FS_WRITE_FAILED, raw_path)

        logger.info(f"Wrote {len(data)} bytes to {path} ({write_mode})")
        return {
            "status": "success",
            "action_performed": "put",
            "path": path,
            "bytes_written": len(data),
            "checksum": checksum,
            "checksum_algorithm_used": self.settings.default_checksum_algorithm,
        }

    def mkdir(self, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Create directories.

        Entry keys: ``path``, ``recursive`` (create missing parents).
        Existing directories are reported as success.
        """
        return self._run_batch("mkdir", entries, self._mkdir_one)

    def _mkdir_one(self, entry: dict[str, Any]) -> dict[str, Any]:
        raw_path = _require(entry, "path")
        recursive = bool(entry.get("recursive", False))

        intent = ResolutionIntent.WRITE if recursive else ResolutionIntent.CREATE
        path = self.validator.validate(raw_path, intent)

        if os.path.isdir(path):
            return {
                "status": "success",
                "action_performed": "mkdir",
                "path": path,
                "message": "Directory already exists.",
            }
        if os.path.lexists(path):
            raise FileSystemError(
                ErrorCode.FS_PATH_IS_FILE,
                f"Path exists but is not a directory: {raw_path}",
            )

        try:
            if recursive:
                os.makedirs(path, exist_ok=True)
            else:
                os.mkdir(path)
        except FileNotFoundError:
            raise FileSystemError(
                ErrorCode.FS_DIR_NOT_FOUND,
                f"Parent directory does not exist: {raw_path} (use recursive=true)",
            )
        except OSError as e:
            raise from_os_error(e, ErrorCode.FS_DIR_CREATE_FAILED, raw_path)

        logger.info(f"Created directory {path}")
        return {
            "status": "success",
            "action_performed": "mkdir",
            "path": path,
            "message": "Directory created.",
        }

    def copy(self, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Copy files or directory trees.

        Entry keys: ``source_path``, ``destination_path``, ``overwrite``
        (default True). A file copied onto an existing directory needs a
        trailing separator on ``destination_path``.
        """
        return self._run_batch("copy", entries, self._copy_one)

    def _copy_one(self, entry: dict[str, Any]) -> dict[str, Any]:
        source, destination = self._transfer_paths(entry)
        try:
            if os.path.isdir(source):
                shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
            else:
                os.makedirs(os.path.dirname(destination), exist_ok=True)
                shutil.copy2(source, destination, follow_symlinks=False)
        except OSError as e:
            raise from_os_error(e, ErrorCode.FS_COPY_FAILED, entry.get("source_path", ""))

        logger.info(f"Copied {source} to {destination}")
        return {
            "status": "success",
            "action_performed": "copy",
            "source_path": source,
            "destination_path": destination,
        }

    def move(self, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Move or rename files and directories.

        Same entry keys and destination rules as ``copy``.
        """
        return self._run_batch("move", entries, self._move_one)

    def _move_one(self, entry: dict[str, Any]) -> dict[str, Any]:
        source, destination = self._transfer_paths(entry)
        try:
            if os.path.isdir(destination) and os.path.isdir(source):
                shutil.rmtree(destination)
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            shutil.move(source, destination)
        except OSError as e:
            raise from_os_error(e, ErrorCode.FS_MOVE_FAILED, entry.get("source_path", ""))

        logger.info(f"Moved {source} to {destination}")
        return {
            "status": "success",
            "action_performed": "move",
            "source_path": source,
            "destination_path": destination,
        }

    def _transfer_paths(self, entry: dict[str, Any]) -> tuple[str, str]:
        raw_source = _require(entry, "source_path")
        raw_destination = _require(entry, "destination_path")
        overwrite = bool(entry.get("overwrite", True))

        source = self.validator.validate(raw_source, ResolutionIntent.READ)
        destination = self.validate_for_output(raw_destination)

        into_directory = raw_destination.endswith(("/", os.sep))
        if os.path.isdir(destination) and not os.path.isdir(source):
            if not into_directory:
                raise FileSystemError(
                    ErrorCode.FS_PATH_IS_DIR,
                    f"Destination is a directory; add a trailing '/' to place the "
                    f"file inside it: {raw_destination}",
                )
            target = os.path.join(raw_destination, os.path.basename(source))
            destination = self.validator.validate(target, ResolutionIntent.CREATE)

        if destination == source:
            raise FileSystemError(
                ErrorCode.INVALID_PARAMETER,
                f"Source and destination are the same: {raw_source}",
            )
        if os.path.isdir(source) and (destination + os.sep).startswith(source + os.sep):
            raise FileSystemError(
                ErrorCode.INVALID_PARAMETER,
                f"Cannot copy or move a directory into itself: {raw_destination}",
            )
        if os.path.lexists(destination) and not overwrite:
            raise FileSystemError(
                ErrorCode.FS_DESTINATION_EXISTS,
                f"Destination already exists: {raw_destination}",
            )
        if os.path.isdir(source) and os.path.lexists(destination) and not os.path.isdir(destination):
            raise FileSystemError(
                ErrorCode.FS_PATH_IS_FILE,
                f"Cannot replace a file with a directory: {raw_destination}",
            )
        return source, destination

    def delete(self, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Delete files and directories.

        Entry keys: ``path``, ``recursive`` (required for non-empty
        directories). A symlink is removed itself, never its target.
        """
        return self._run_batch("delete", entries, self._delete_one)

    def _delete_one(self, entry: dict[str, Any]) -> dict[str, Any]:
        raw_path = _require(entry, "path")
        recursive = bool(entry.get("recursive", False))

        path = self.validator.validate(raw_path, ResolutionIntent.READ)
        # The target being allowed says nothing about where the link itself lives
        location = self.validator.validate_entry_location(raw_path)

        try:
            if os.path.islink(location):
                os.unlink(location)
                path = location
            elif os.path.isdir(path):
                if recursive:
                    shutil.rmtree(path)
                else:
                    os.rmdir(path)
            else:
                os.remove(path)
        except OSError as e:
            if e.errno in (errno.ENOTEMPTY, errno.EEXIST):
                raise FileSystemError(
                    ErrorCode.FS_DIR_NOT_EMPTY,
                    f"Directory is not empty: {raw_path} (use recursive=true)",
                )
            raise from_os_error(e, ErrorCode.FS_DELETE_FAILED, raw_path)

        logger.info(f"Deleted {path}")
        return {"status": "success", "action_performed": "delete", "path": path}

    def touch(self, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Create empty files or update the modification time of existing ones."""
        return self._run_batch("touch", entries, self._touch_one)

    def _touch_one(self, entry: dict[str, Any]) -> dict[str, Any]:
        raw_path = _require(entry, "path")
        path = self.validator.validate(raw_path, ResolutionIntent.CREATE)

        if not os.path.isdir(os.path.dirname(path)):
            raise FileSystemError(
                ErrorCode.FS_DIR_NOT_FOUND, f"Parent directory does not exist: {raw_path}"
            )

        try:
            if os.path.exists(path):
                os.utime(path, None)
                message = "Timestamp updated."
            else:
                with open(path, "a"):
                    pass
                message = "File created."
        except OSError as e:
            raise from_os_error(e, ErrorCode.FS_TOUCH_FAILED, raw_path)

        return {"status": "success", "action_performed": "touch", "path": path, "message": message}

    def _run_batch(
        self,
        action: str,
        entries: Optional[list[dict[str, Any]]],
        handler: Callable[[dict[str, Any]], dict[str, Any]],
    ) -> list[dict[str, Any]]:
        if not entries:
            return [
                error_item(
                    FileSystemError(
                        ErrorCode.MISSING_ENTRIES_FOR_BATCH,
                        f"'entries' array is missing or empty for {action} operation.",
                    ),
                    action_performed=action,
                )
            ]

        results = []
        for entry in entries:
            ident = _entry_ident(entry)
            try:
                results.append(handler(entry))
            except (FileSystemError, PathValidationError) as e:
                logger.warning(f"write {action} failed for {ident}: {e}")
                results.append(error_item(e, action_performed=action, **ident))
            except Exception as e:
                results.append(error_item(e, action_performed=action, **ident))
        return results


def _require(entry: dict[str, Any], key: str) -> str:
    value = entry.get(key) if isinstance(entry, dict) else None
    if not isinstance(value, str) or not value.strip():
        raise InvalidParameterError(f"'{key}' must be a non-empty string")
    return value


def _entry_ident(entry: Any) -> dict[str, Any]:
    if not isinstance(entry, dict):
        return {}
    return {
        k: entry[k]
        for k in ("path", "source_path", "destination_path")
        if isinstance(entry.get(k), str)
    }
