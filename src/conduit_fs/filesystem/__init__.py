"""
Filesystem tools for LLM access.

Each collaborator authorizes every caller-supplied path through the
context's ``PathValidator`` before touching the filesystem, and reports
failures as per-item error results.
"""

from conduit_fs.filesystem.archive import ArchiveManager
from conduit_fs.filesystem.entries import EntryInfo, create_entry_info
from conduit_fs.filesystem.exceptions import (
    ErrorCode,
    FileSizeLimitExceededError,
    FileSystemError,
    InvalidParameterError,
    error_item,
)
from conduit_fs.filesystem.fetcher import WebFetcher
from conduit_fs.filesystem.listing import DirectoryLister
from conduit_fs.filesystem.reader import ContentReader
from conduit_fs.filesystem.search import EntryFinder
from conduit_fs.filesystem.tools import ConduitTools
from conduit_fs.filesystem.writer import FileWriter

__all__ = [
    "ErrorCode",
    "FileSystemError",
    "FileSizeLimitExceededError",
    "InvalidParameterError",
    "error_item",
    "EntryInfo",
    "create_entry_info",
    "WebFetcher",
    "ContentReader",
    "FileWriter",
    "ArchiveManager",
    "DirectoryLister",
    "EntryFinder",
    "ConduitTools",
]
