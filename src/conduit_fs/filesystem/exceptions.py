"""
Exceptions and error codes for filesystem tool operations.

Tool collaborators never let an exception escape a batch: every failure
is converted into an error item via ``error_item``.
"""

import logging
from enum import Enum
from typing import Any, Optional

from conduit_fs.security import FailureKind, PathValidationError

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Machine-readable error codes reported in tool results."""

    # Path validation
    FS_INVALID_PATH = "ERR_FS_INVALID_PATH"
    FS_NOT_FOUND = "ERR_FS_NOT_FOUND"
    FS_DIR_NOT_FOUND = "ERR_FS_DIR_NOT_FOUND"
    FS_PERMISSION_DENIED = "ERR_FS_PERMISSION_DENIED"
    FS_PATH_RESOLUTION_FAILED = "ERR_FS_PATH_RESOLUTION_FAILED"

    # Filesystem operations
    FS_READ_FAILED = "ERR_FS_READ_FAILED"
    FS_WRITE_FAILED = "ERR_FS_WRITE_FAILED"
    FS_ALREADY_EXISTS = "ERR_FS_ALREADY_EXISTS"
    FS_PATH_IS_FILE = "ERR_FS_PATH_IS_FILE"
    FS_PATH_IS_DIR = "ERR_FS_PATH_IS_DIR"
    FS_DIR_CREATE_FAILED = "ERR_FS_DIR_CREATE_FAILED"
    FS_DIR_NOT_EMPTY = "ERR_FS_DIR_NOT_EMPTY"
    FS_DIR_LIST_FAILED = "ERR_FS_DIR_LIST_FAILED"
    FS_COPY_FAILED = "ERR_FS_COPY_FAILED"
    FS_MOVE_FAILED = "ERR_FS_MOVE_FAILED"
    FS_DELETE_FAILED = "ERR_FS_DELETE_FAILED"
    FS_TOUCH_FAILED = "ERR_FS_TOUCH_FAILED"
    FS_DESTINATION_EXISTS = "ERR_FS_DESTINATION_EXISTS"

    # Content
    CANNOT_REPRESENT_BINARY_AS_TEXT = "ERR_CANNOT_REPRESENT_BINARY_AS_TEXT"
    RESOURCE_LIMIT_EXCEEDED = "ERR_RESOURCE_LIMIT_EXCEEDED"
    INVALID_BYTE_RANGE = "ERR_INVALID_BYTE_RANGE"
    INVALID_ENCODING = "ERR_INVALID_ENCODING"
    INVALID_WRITE_MODE = "ERR_INVALID_WRITE_MODE"
    UNSUPPORTED_CHECKSUM_ALGORITHM = "ERR_UNSUPPORTED_CHECKSUM_ALGORITHM"
    DIFF_TARGET_NOT_TEXT = "ERR_DIFF_TARGET_NOT_TEXT"

    # HTTP
    HTTP_INVALID_URL = "ERR_HTTP_INVALID_URL"
    HTTP_TIMEOUT = "ERR_HTTP_TIMEOUT"
    HTTP_STATUS_ERROR = "ERR_HTTP_STATUS_ERROR"
    HTTP_REQUEST_FAILED = "ERR_HTTP_REQUEST_FAILED"

    # Archives
    ARCHIVE_NOT_FOUND = "ERR_ARCHIVE_NOT_FOUND"
    ARCHIVE_NO_SOURCES = "ERR_ARCHIVE_NO_SOURCES"
    ARCHIVE_FORMAT_NOT_SUPPORTED = "ERR_ARCHIVE_FORMAT_NOT_SUPPORTED"
    ARCHIVE_CREATION_FAILED = "ERR_ARCHIVE_CREATION_FAILED"
    ARCHIVE_EXTRACTION_FAILED = "ERR_ARCHIVE_EXTRACTION_FAILED"
    ARCHIVE_PATH_INVALID = "ERR_ARCHIVE_PATH_INVALID"

    # Listing and search
    FIND_INVALID_CRITERIA = "ERR_FIND_INVALID_CRITERIA"

    # Requests
    INVALID_PARAMETER = "ERR_INVALID_PARAMETER"
    MISSING_ENTRIES_FOR_BATCH = "ERR_MISSING_ENTRIES_FOR_BATCH"
    UNKNOWN_OPERATION_ACTION = "ERR_UNKNOWN_OPERATION_ACTION"
    UNKNOWN_TOOL = "ERR_UNKNOWN_TOOL"
    MCP_INVALID_REQUEST = "ERR_MCP_INVALID_REQUEST"
    INTERNAL_SERVER_ERROR = "ERR_INTERNAL_SERVER_ERROR"


FAILURE_KIND_CODES: dict[FailureKind, ErrorCode] = {
    FailureKind.INVALID_PATH: ErrorCode.FS_INVALID_PATH,
    FailureKind.NOT_FOUND: ErrorCode.FS_NOT_FOUND,
    FailureKind.DIRECTORY_NOT_FOUND: ErrorCode.FS_DIR_NOT_FOUND,
    FailureKind.PERMISSION_DENIED: ErrorCode.FS_PERMISSION_DENIED,
    FailureKind.SYMLINK_RESOLUTION_FAILED: ErrorCode.FS_PATH_RESOLUTION_FAILED,
}


class FileSystemError(Exception):
    """Base exception for filesystem tool operations."""

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidParameterError(FileSystemError):
    """Raised when a tool argument is missing or malformed."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(ErrorCode.INVALID_PARAMETER, message, details)


class FileSizeLimitExceededError(FileSystemError):
    """Raised when a file or download exceeds a configured size limit."""

    def __init__(self, path: str, size: int, limit: int):
        self.path = path
        self.size = size
        self.limit = limit
        super().__init__(
            ErrorCode.RESOURCE_LIMIT_EXCEEDED,
            f"File too large ({size} bytes > {limit} bytes): {path}",
            {"size": size, "limit": limit},
        )


class ArchiveError(FileSystemError):
    """Raised when an archive cannot be created or extracted."""

    pass


class ArchivePathError(ArchiveError):
    """Raised when an archive member would escape the destination."""

    def __init__(self, member: str, destination: str):
        self.member = member
        super().__init__(
            ErrorCode.ARCHIVE_PATH_INVALID,
            f"Archive member escapes destination: {member} (destination: {destination})",
            {"member": member},
        )


class HttpFetchError(FileSystemError):
    """Raised when fetching a URL source fails."""

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.status_code = status_code
        details = {"status_code": status_code} if status_code is not None else None
        super().__init__(error_code, message, details)


def from_validation_error(error: PathValidationError) -> FileSystemError:
    """Translate a path validation failure into a ``FileSystemError``."""
    details = {"path": error.path}
    if error.resolved_path:
        details["resolved_path"] = error.resolved_path
    return FileSystemError(FAILURE_KIND_CODES[error.kind], error.message, details)


def from_os_error(error: OSError, fallback: ErrorCode, path: str) -> FileSystemError:
    """Classify an OS error raised after validation succeeded."""
    if isinstance(error, FileNotFoundError):
        code = ErrorCode.FS_NOT_FOUND
    elif isinstance(error, PermissionError):
        code = ErrorCode.FS_PERMISSION_DENIED
    elif isinstance(error, FileExistsError):
        code = ErrorCode.FS_ALREADY_EXISTS
    elif isinstance(error, IsADirectoryError):
        code = ErrorCode.FS_PATH_IS_DIR
    elif isinstance(error, NotADirectoryError):
        code = ErrorCode.FS_PATH_IS_FILE
    else:
        code = fallback
    return FileSystemError(code, f"{error.strerror or error}: {path}", {"path": path})


def error_item(error: Exception, **fields: Any) -> dict[str, Any]:
    """
    Build a per-item error result.

    Args:
        error: The failure to report
        **fields: Extra keys identifying the item (e.g. ``path``)

    Returns:
        ``{"status": "error", "error_code": ..., "error_message": ..., **fields}``
    """
    if isinstance(error, PathValidationError):
        error = from_validation_error(error)

    if isinstance(error, FileSystemError):
        code, message = error.error_code, error.message
    else:
        logger.error(f"Unexpected error: {error}", exc_info=error)
        code, message = ErrorCode.INTERNAL_SERVER_ERROR, f"Unexpected error: {error}"

    item = dict(fields)
    item.update(
        {"status": "error", "error_code": code.value, "error_message": message}
    )
    return item
