"""
Find tool: criteria-based search below a base directory.
"""

import fnmatch
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Optional

from conduit_fs.context import ConduitContext
from conduit_fs.filesystem.entries import EntryInfo, create_entry_info
from conduit_fs.filesystem.exceptions import (
    ErrorCode,
    FileSystemError,
    error_item,
)
from conduit_fs.security import PathValidationError, ResolutionIntent

logger = logging.getLogger(__name__)

ENTRY_TYPE_FILTERS = ("file", "directory", "any")

METADATA_ATTRIBUTES = (
    "name",
    "size_bytes",
    "created_at_iso",
    "modified_at_iso",
    "entry_type",
    "mime_type",
)

STRING_OPERATORS = ("equals", "not_equals", "contains", "starts_with", "ends_with", "matches_regex")
NUMERIC_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte")
DATE_OPERATORS = ("before", "after", "on_date")

TEXT_MIME_TYPES = (
    "application/json",
    "application/xml",
    "application/javascript",
    "application/x-sh",
    "application/toml",
    "image/svg+xml",
)


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def matches_string(
    value: Optional[str], operator: str, expected: str, case_sensitive: bool = False
) -> bool:
    if value is None:
        return False
    if operator == "matches_regex":
        flags = 0 if case_sensitive else re.IGNORECASE
        return re.search(expected, value, flags) is not None
    if not case_sensitive:
        value, expected = value.lower(), expected.lower()
    if operator == "equals":
        return value == expected
    if operator == "not_equals":
        return value != expected
    if operator == "contains":
        return expected in value
    if operator == "starts_with":
        return value.startswith(expected)
    if operator == "ends_with":
        return value.endswith(expected)
    return False


def matches_number(value: Optional[int], operator: str, expected: float) -> bool:
    if value is None:
        return False
    return {
        "eq": value == expected,
        "neq": value != expected,
        "gt": value > expected,
        "gte": value >= expected,
        "lt": value < expected,
        "lte": value <= expected,
    }.get(operator, False)


def matches_date(value_iso: Optional[str], operator: str, expected: str) -> bool:
    if value_iso is None:
        return False
    value = _parse_iso(value_iso)
    if operator == "on_date":
        return value.date().isoformat() == expected[:10]
    expected_dt = _parse_iso(expected)
    if operator == "before":
        return value < expected_dt
    if operator == "after":
        return value > expected_dt
    return False


class EntryFinder:
    """
    Implements the find tool.

    Criteria are AND-combined. Directory symlinks are never followed, and
    every file is re-validated before its content is read.

    Usage:
        finder = EntryFinder(context)
        result = finder.find(
            "src",
            [{"type": "name_pattern", "pattern": "*.py"}],
            recursive=True,
        )
    """

    def __init__(self, context: ConduitContext):
        self.context = context
        self.validator = context.validator
        self.settings = context.settings

    def find(
        self,
        base_path: str,
        match_criteria: list[dict[str, Any]],
        entry_type_filter: str = "any",
        recursive: bool = True,
        recursive_depth: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Search below ``base_path``.

        Args:
            base_path: Directory to search in
            match_criteria: name_pattern, content_pattern and metadata_filter criteria
            entry_type_filter: file, directory or any
            recursive: Descend into subdirectories
            recursive_depth: Maximum depth (capped by ``max_recursive_depth``)

        Returns:
            ``{"status": "success", "results": [...]}`` or an error item
        """
        try:
            self._check_criteria(match_criteria, entry_type_filter)
            base = self.validator.validate(base_path, ResolutionIntent.READ)
            if not os.path.isdir(base):
                raise FileSystemError(
                    ErrorCode.FS_PATH_IS_FILE, f"Base path is not a directory: {base_path}"
                )

            max_depth = self.settings.max_recursive_depth
            if recursive_depth is not None:
                max_depth = min(max(recursive_depth, 0), max_depth)
            if not recursive:
                max_depth = 0

            matches: list[EntryInfo] = []
            self._walk(base, match_criteria, entry_type_filter, 0, max_depth, matches)
            logger.info(f"find in {base} matched {len(matches)} entries")
            return {
                "status": "success",
                "base_path": base,
                "results": [entry.to_dict() for entry in matches],
            }
        except (FileSystemError, PathValidationError) as e:
            logger.warning(f"find failed for {base_path}: {e}")
            return error_item(e, base_path=base_path)
        except Exception as e:
            return error_item(e, base_path=base_path)

    def _walk(
        self,
        directory: str,
        criteria: list[dict[str, Any]],
        entry_type_filter: str,
        depth: int,
        max_depth: int,
        matches: list[EntryInfo],
    ) -> None:
        try:
            names = sorted(os.listdir(directory))
        except OSError as e:
            logger.warning(f"Cannot list directory {directory} during find: {e}")
            return

        for name in names:
            full = os.path.join(directory, name)
            try:
                entry = create_entry_info(full, name)
            except OSError as e:
                logger.warning(f"Error processing path {full} during find: {e}")
                continue

            type_ok = entry_type_filter == "any" or entry.type == entry_type_filter
            if type_ok and all(self._matches(entry, c) for c in criteria):
                matches.append(entry)

            if entry.type == "directory" and depth < max_depth:
                self._walk(full, criteria, entry_type_filter, depth + 1, max_depth, matches)

    def _matches(self, entry: EntryInfo, criterion: dict[str, Any]) -> bool:
        kind = criterion["type"]
        if kind == "name_pattern":
            return fnmatch.fnmatch(entry.name.lower(), criterion["pattern"].lower())
        if kind == "content_pattern":
            return self._content_matches(entry, criterion)
        return self._metadata_matches(entry, criterion)

    def _content_matches(self, entry: EntryInfo, criterion: dict[str, Any]) -> bool:
        if entry.type not in ("file", "symlink"):
            return False

        extensions = criterion.get("file_types_to_search")
        if extensions:
            ext = os.path.splitext(entry.name)[1].lower()
            if ext not in {e.lower() if e.startswith(".") else f".{e.lower()}" for e in extensions}:
                return False
        else:
            mime = entry.mime_type or ""
            if not (mime.startswith("text/") or mime in TEXT_MIME_TYPES):
                logger.debug(f"Skipping content search for non-text file {entry.path}")
                return False

        # Entries may be symlinks; only read what the validator approves
        result = self.validator.check(entry.path, ResolutionIntent.READ)
        if not result.ok:
            logger.debug(f"Skipping content search for {entry.path}: {result.message}")
            return False
        if not os.path.isfile(result.path):
            return False

        try:
            with open(result.path, "rb") as f:
                data = f.read(self.settings.max_file_read_bytes_find)
        except OSError as e:
            logger.warning(f"Could not read {entry.path} for content search: {e}")
            return False

        text = data.decode("utf-8", errors="replace")
        pattern = criterion["pattern"]
        case_sensitive = criterion.get("case_sensitive", False)
        if criterion.get("is_regex", False):
            flags = 0 if case_sensitive else re.IGNORECASE
            return re.search(pattern, text, flags) is not None
        if case_sensitive:
            return pattern in text
        return pattern.lower() in text.lower()

    @staticmethod
    def _metadata_matches(entry: EntryInfo, criterion: dict[str, Any]) -> bool:
        attribute = criterion["attribute"]
        operator = criterion["operator"]
        value = criterion["value"]
        case_sensitive = criterion.get("case_sensitive", False)

        if attribute == "size_bytes":
            return matches_number(entry.size_bytes, operator, float(value))
        if attribute == "created_at_iso":
            return matches_date(entry.created_at, operator, str(value))
        if attribute == "modified_at_iso":
            return matches_date(entry.modified_at, operator, str(value))
        if attribute == "entry_type":
            return matches_string(entry.type, operator, str(value), case_sensitive=True)
        if attribute == "mime_type":
            return matches_string(entry.mime_type, operator, str(value), case_sensitive)
        return matches_string(entry.name, operator, str(value), case_sensitive)

    @staticmethod
    def _check_criteria(criteria: Any, entry_type_filter: str) -> None:
        """Reject malformed criteria before touching the filesystem."""

        def invalid(message: str) -> FileSystemError:
            return FileSystemError(ErrorCode.FIND_INVALID_CRITERIA, message)

        if entry_type_filter not in ENTRY_TYPE_FILTERS:
            raise invalid(f"Invalid entry_type_filter: {entry_type_filter}")
        if not isinstance(criteria, list):
            raise invalid("'match_criteria' must be a list")

        for criterion in criteria:
            if not isinstance(criterion, dict):
                raise invalid(f"Criterion must be an object: {criterion!r}")
            kind = criterion.get("type")
            if kind in ("name_pattern", "content_pattern"):
                if not isinstance(criterion.get("pattern"), str) or not criterion["pattern"]:
                    raise invalid(f"{kind} requires a non-empty 'pattern'")
                if kind == "content_pattern" and criterion.get("is_regex"):
                    try:
                        re.compile(criterion["pattern"])
                    except re.error as e:
                        raise invalid(f"Invalid regular expression: {e}")
            elif kind == "metadata_filter":
                attribute = criterion.get("attribute")
                operator = criterion.get("operator")
                value = criterion.get("value")
                if attribute not in METADATA_ATTRIBUTES:
                    raise invalid(f"Invalid metadata attribute: {attribute}")
                if value is None:
                    raise invalid("metadata_filter requires a 'value'")
                if attribute == "size_bytes":
                    allowed = NUMERIC_OPERATORS
                    try:
                        float(value)
                    except (TypeError, ValueError):
                        raise invalid(f"size_bytes value must be numeric: {value!r}")
                elif attribute in ("created_at_iso", "modified_at_iso"):
                    allowed = DATE_OPERATORS
                    try:
                        _parse_iso(str(value))
                    except ValueError:
                        raise invalid(f"Invalid ISO-8601 date: {value!r}")
                else:
                    allowed = STRING_OPERATORS
                if operator not in allowed:
                    raise invalid(f"Invalid operator '{operator}' for {attribute}")
                if operator == "matches_regex":
                    try:
                        re.compile(str(value))
                    except re.error as e:
                        raise invalid(f"Invalid regular expression: {e}")
            else:
                raise invalid(f"Unknown criterion type: {kind!r}")
