"""
Unified tool interface for LLM agents.

Exposes the read, write, list and find tools through function calling
schemas (OpenAI format) and a single ``execute_tool`` dispatcher.
"""

import logging
from typing import Any, Optional

from conduit_fs.context import ConduitContext
from conduit_fs.filesystem.archive import ARCHIVE_FORMATS, ArchiveManager
from conduit_fs.filesystem.exceptions import (
    ErrorCode,
    FileSystemError,
    InvalidParameterError,
    error_item,
)
from conduit_fs.filesystem.fetcher import WebFetcher
from conduit_fs.filesystem.listing import DirectoryLister
from conduit_fs.filesystem.reader import CONTENT_FORMATS, ContentReader
from conduit_fs.filesystem.search import ENTRY_TYPE_FILTERS, EntryFinder
from conduit_fs.filesystem.writer import INPUT_ENCODINGS, WRITE_MODES, FileWriter
from conduit_fs.settings import SUPPORTED_CHECKSUM_ALGORITHMS

logger = logging.getLogger(__name__)

TOOL_NAMES = ("read", "write", "list", "find")

READ_OPERATIONS = ("content", "metadata", "diff")
WRITE_ACTIONS = ("put", "mkdir", "copy", "move", "delete", "touch", "archive", "unarchive")
LIST_OPERATIONS = ("entries", "system_info")


class ConduitTools:
    """
    Filesystem tools for LLM function calling.

    Every path argument is authorized by the context's ``PathValidator``
    before any filesystem call is made.

    Usage:
        context = ConduitContext.from_settings(ConduitSettings())
        tools = ConduitTools(context)

        # Get tool schemas for LLM
        schemas = tools.get_tool_schemas()

        # Execute tool call
        result = await tools.execute_tool(
            tool_name="read",
            arguments={"operation": "content", "sources": ["notes.txt"]},
        )
    """

    def __init__(self, context: ConduitContext, fetcher: Optional[WebFetcher] = None):
        """
        Initialize the tools.

        Args:
            context: Server context
            fetcher: URL fetcher for read sources (default: built from settings)
        """
        self.context = context
        self.reader = ContentReader(context, fetcher=fetcher)
        self.writer = FileWriter(context)
        self.archives = ArchiveManager(context, writer=self.writer)
        self.lister = DirectoryLister(context)
        self.finder = EntryFinder(context)
        self._notice_sent = False

    def get_tool_schemas(self) -> list[dict[str, Any]]:
        """
        Get OpenAI function calling schemas for all available tools.

        Returns:
            List of tool schemas in OpenAI format
        """
        return [
            {
                "type": "function",
                "function": {
                    "name": "read",
                    "description": "Read files or URLs. 'content' returns text, base64 or a checksum; "
                    "'metadata' describes each source; 'diff' compares two local text files.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "operation": {"type": "string", "enum": list(READ_OPERATIONS)},
                            "sources": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "File paths (relative to the workspace or absolute) or http(s) URLs",
                            },
                            "format": {
                                "type": "string",
                                "enum": list(CONTENT_FORMATS),
                                "description": "Output format for 'content' (default: text)",
                            },
                            "checksum_algorithm": {
                                "type": "string",
                                "enum": list(SUPPORTED_CHECKSUM_ALGORITHMS),
                            },
                            "offset": {"type": "integer", "description": "Byte offset to start reading at"},
                            "length": {"type": "integer", "description": "Number of bytes to read"},
                            "context_lines": {
                                "type": "integer",
                                "description": "Context lines for 'diff' (default: 3)",
                            },
                        },
                        "required": ["operation", "sources"],
                    },
                },
            },
            {
                "type": "function",
                "function": {
                    "name": "write",
                    "description": "Modify the filesystem: put, mkdir, copy, move, delete and touch "
                    "take a batch of 'entries'; archive and unarchive take their own parameters.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "action": {"type": "string", "enum": list(WRITE_ACTIONS)},
                            "entries": {
                                "type": "array",
                                "description": "Batch entries. put: path, content, input_encoding "
                                f"({'/'.join(INPUT_ENCODINGS)}), write_mode ({'/'.join(WRITE_MODES)}). "
                                "mkdir: path, recursive. copy/move: source_path, destination_path, "
                                "overwrite. delete: path, recursive. touch: path.",
                                "items": {"type": "object"},
                            },
                            "source_paths": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "archive: files and directories to include",
                            },
                            "archive_path": {"type": "string", "description": "archive/unarchive: archive file"},
                            "destination_path": {"type": "string", "description": "unarchive: target directory"},
                            "format": {"type": "string", "enum": list(ARCHIVE_FORMATS)},
                            "prefix": {"type": "string", "description": "archive: directory to nest entries under"},
                            "filter_paths": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "unarchive: only extract these members",
                            },
                            "strip_components": {"type": "integer"},
                            "overwrite": {"type": "boolean"},
                        },
                        "required": ["action"],
                    },
                },
            },
            {
                "type": "function",
                "function": {
                    "name": "list",
                    "description": "List directory entries, or report server capabilities and disk usage.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "operation": {"type": "string", "enum": list(LIST_OPERATIONS)},
                            "path": {"type": "string", "description": "Directory to list"},
                            "recursive_depth": {
                                "type": "integer",
                                "description": "Levels of children to include (default: 0)",
                            },
                            "calculate_recursive_size": {"type": "boolean"},
                            "info_type": {
                                "type": "string",
                                "enum": ["server_capabilities", "filesystem_stats"],
                            },
                        },
                        "required": ["operation"],
                    },
                },
            },
            {
                "type": "function",
                "function": {
                    "name": "find",
                    "description": "Find entries below a directory matching all given criteria "
                    "(name_pattern, content_pattern, metadata_filter).",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "base_path": {"type": "string"},
                            "match_criteria": {"type": "array", "items": {"type": "object"}},
                            "entry_type_filter": {"type": "string", "enum": list(ENTRY_TYPE_FILTERS)},
                            "recursive": {"type": "boolean"},
                            "recursive_depth": {"type": "integer"},
                        },
                        "required": ["base_path", "match_criteria"],
                    },
                },
            },
        ]

    async def execute_tool(
        self, tool_name: str, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Execute a tool call from an LLM.

        Args:
            tool_name: Name of the tool to execute
            arguments: Tool arguments (from LLM function call)

        Returns:
            Tool execution result as a dict

        Raises:
            ValueError: If tool name is unknown
        """
        arguments = arguments or {}
        if tool_name == "read":
            response = await self._read(arguments)
        elif tool_name == "write":
            response = self._write(arguments)
        elif tool_name == "list":
            response = self._list(arguments)
        elif tool_name == "find":
            response = self._find(arguments)
        else:
            raise ValueError(f"Unknown tool: {tool_name}")
        return self._attach_notice(response)

    async def _read(self, args: dict[str, Any]) -> dict[str, Any]:
        """Read tool implementation."""
        operation = args.get("operation")
        sources = args.get("sources")
        try:
            if operation not in READ_OPERATIONS:
                raise FileSystemError(
                    ErrorCode.UNKNOWN_OPERATION_ACTION, f"Unknown read operation: {operation}"
                )
            if not isinstance(sources, list) or not sources:
                raise InvalidParameterError("'sources' must be a non-empty list")
        except FileSystemError as e:
            return {"tool_name": "read", "results": [error_item(e)]}

        if operation == "content":
            results = await self.reader.read_content(
                sources,
                format=args.get("format", "text"),
                checksum_algorithm=args.get("checksum_algorithm"),
                offset=args.get("offset"),
                length=args.get("length"),
            )
        elif operation == "metadata":
            results = await self.reader.read_metadata(sources)
        else:
            results = [await self.reader.read_diff(sources, args.get("context_lines", 3))]
        return {"tool_name": "read", "results": results}

    def _write(self, args: dict[str, Any]) -> dict[str, Any]:
        """Write tool implementation."""
        action = args.get("action")
        if action == "archive":
            results = [
                self.archives.create(
                    args.get("source_paths") or [],
                    args.get("archive_path"),
                    format=args.get("format"),
                    prefix=args.get("prefix"),
                    overwrite=args.get("overwrite", False),
                )
            ]
        elif action == "unarchive":
            results = [
                self.archives.extract(
                    args.get("archive_path"),
                    args.get("destination_path"),
                    format=args.get("format"),
                    filter_paths=args.get("filter_paths"),
                    strip_components=args.get("strip_components", 0),
                    overwrite=args.get("overwrite", False),
                )
            ]
        elif action in WRITE_ACTIONS:
            handler = getattr(self.writer, action)
            results = handler(args.get("entries"))
        else:
            results = [
                error_item(
                    FileSystemError(
                        ErrorCode.UNKNOWN_OPERATION_ACTION, f"Unknown write action: {action}"
                    )
                )
            ]
        return {"tool_name": "write", "results": results}

    def _list(self, args: dict[str, Any]) -> dict[str, Any]:
        """List tool implementation."""
        operation = args.get("operation")
        if operation == "entries":
            path = args.get("path")
            if not isinstance(path, str):
                result = error_item(InvalidParameterError("'path' must be a string"))
            else:
                result = self.lister.list_entries(
                    path,
                    recursive_depth=args.get("recursive_depth", 0),
                    calculate_recursive_size=args.get("calculate_recursive_size", False),
                )
        elif operation == "system_info":
            info = self.lister.system_info(args.get("path"))
            info_type = args.get("info_type")
            if info_type in ("server_capabilities", "filesystem_stats"):
                result = {"status": "success", info_type: info[info_type]}
            else:
                result = info
        else:
            result = error_item(
                FileSystemError(
                    ErrorCode.UNKNOWN_OPERATION_ACTION, f"Unknown list operation: {operation}"
                )
            )
        return {"tool_name": "list", **result}

    def _find(self, args: dict[str, Any]) -> dict[str, Any]:
        """Find tool implementation."""
        base_path = args.get("base_path")
        if not isinstance(base_path, str):
            result = error_item(InvalidParameterError("'base_path' must be a string"))
        else:
            result = self.finder.find(
                base_path,
                args.get("match_criteria", []),
                entry_type_filter=args.get("entry_type_filter", "any"),
                recursive=args.get("recursive", True),
                recursive_depth=args.get("recursive_depth"),
            )
        return {"tool_name": "find", **result}

    def _attach_notice(self, response: dict[str, Any]) -> dict[str, Any]:
        """Add the default-paths notice to the first response if paths were not configured."""
        if self._notice_sent or self.context.settings.allowed_paths_explicit:
            return response
        self._notice_sent = True
        response["info_notice"] = {
            "type": "info_notice",
            "notice_code": "DEFAULT_PATHS_USED",
            "message": "No CONDUIT_ALLOWED_PATHS configured; using the default allowed paths. "
            "Set CONDUIT_ALLOWED_PATHS to restrict or extend filesystem access.",
            "details": {
                "server_version": self.context.version,
                "server_start_time_iso": self.context.server_start_time_iso,
                "default_paths_used": self.context.allowed_paths.as_list(),
            },
        }
        return response

    async def close(self) -> None:
        """Release network resources."""
        await self.reader.fetcher.close()

    def get_summary(self) -> dict[str, Any]:
        """
        Get a summary of the access configuration.

        Returns:
            Dict with configuration summary
        """
        return {
            "allowed_paths": self.context.allowed_paths.as_list(),
            "allowed_paths_explicit": self.context.settings.allowed_paths_explicit,
            "workspace_root": str(self.context.settings.workspace_root),
            "allow_tilde_expansion": self.context.settings.allow_tilde_expansion,
            "strict_write_check": self.context.settings.strict_write_check,
            "max_file_read_mb": self.context.settings.max_file_read_bytes / (1024 * 1024),
            "max_recursive_depth": self.context.settings.max_recursive_depth,
            "tools": list(TOOL_NAMES),
        }
