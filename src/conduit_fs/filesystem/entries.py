"""
Filesystem entry descriptions shared by the read, list and find tools.
"""

import logging
import mimetypes
import os
import stat
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


def iso_utc(timestamp: float) -> str:
    """Format a POSIX timestamp as ISO-8601 UTC with a ``Z`` suffix."""
    return (
        datetime.fromtimestamp(timestamp, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def guess_mime_type(path: str) -> Optional[str]:
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type


@dataclass
class EntryInfo:
    """Description of one filesystem entry."""

    name: str
    path: str
    type: str  # file, directory, symlink or other
    size_bytes: Optional[int] = None
    mime_type: Optional[str] = None
    created_at: Optional[str] = None
    modified_at: Optional[str] = None
    last_accessed_at: Optional[str] = None
    is_readonly: Optional[bool] = None
    symlink_target: Optional[str] = None
    permissions_octal: Optional[str] = None
    permissions_string: Optional[str] = None
    children: Optional[list["EntryInfo"]] = None
    recursive_size_calculation_note: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize, dropping unset fields."""
        data = asdict(self)
        extra = data.pop("extra")
        if self.children is not None:
            data["children"] = [child.to_dict() for child in self.children]
        result = {k: v for k, v in data.items() if v is not None}
        result.update(extra)
        return result


def _entry_type(mode: int) -> str:
    if stat.S_ISLNK(mode):
        return "symlink"
    if stat.S_ISDIR(mode):
        return "directory"
    if stat.S_ISREG(mode):
        return "file"
    return "other"


def create_entry_info(path: str, name: Optional[str] = None) -> EntryInfo:
    """
    Describe the entry at ``path`` without following a final symlink.

    For symlinks the size and MIME type describe the link target when the
    target is a regular file.

    Args:
        path: Absolute, already validated path
        name: Display name (default: basename of ``path``)

    Returns:
        EntryInfo for the entry

    Raises:
        OSError: If the entry cannot be stat'ed
    """
    st = os.lstat(path)
    entry_type = _entry_type(st.st_mode)
    created = getattr(st, "st_birthtime", st.st_ctime)

    info = EntryInfo(
        name=name or os.path.basename(path) or path,
        path=path,
        type=entry_type,
        created_at=iso_utc(created),
        modified_at=iso_utc(st.st_mtime),
        last_accessed_at=iso_utc(st.st_atime),
        is_readonly=not os.access(path, os.W_OK),
        permissions_octal=f"{stat.S_IMODE(st.st_mode):04o}",
        permissions_string=stat.filemode(st.st_mode)[1:],
    )

    if entry_type == "file":
        info.size_bytes = st.st_size
        info.mime_type = guess_mime_type(path)
    elif entry_type == "symlink":
        info.symlink_target = os.readlink(path)
        try:
            target_st = os.stat(path)
        except OSError:
            # Dangling link
            target_st = None
        if target_st is not None and stat.S_ISREG(target_st.st_mode):
            info.size_bytes = target_st.st_size
            info.mime_type = guess_mime_type(path)

    return info


def calculate_recursive_size(
    path: str,
    max_depth: int,
    timeout_ms: int,
) -> tuple[int, Optional[str]]:
    """
    Sum the sizes of regular files below ``path``.

    Directory symlinks are not followed. Traversal stops at ``max_depth``
    levels or when the time budget runs out; the partial sum is returned
    together with a note.

    Args:
        path: Directory to measure
        max_depth: Maximum nesting depth to descend into
        timeout_ms: Time budget in milliseconds

    Returns:
        Tuple of (size_bytes, note or None)
    """
    deadline = time.monotonic() + timeout_ms / 1000
    total = 0
    note: Optional[str] = None
    stack = [(path, 0)]

    while stack:
        current, depth = stack.pop()
        if time.monotonic() > deadline:
            note = "Calculation timed out due to server limit"
            break
        try:
            with os.scandir(current) as it:
                for entry in it:
                    try:
                        if entry.is_file(follow_symlinks=False):
                            total += entry.stat(follow_symlinks=False).st_size
                        elif entry.is_dir(follow_symlinks=False):
                            if depth < max_depth:
                                stack.append((entry.path, depth + 1))
                            else:
                                note = "Partial size: depth limit reached"
                    except OSError as e:
                        logger.debug(f"Skipping {entry.path} in size calculation: {e}")
        except OSError as e:
            logger.warning(f"Cannot read directory {current} for size calculation: {e}")

    return total, note
