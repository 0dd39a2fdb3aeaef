"""
Read tool operations: content, metadata and diff.

Every local source is validated with the read intent before it is
opened; URL sources go through ``WebFetcher``.
"""

import base64
import difflib
import hashlib
import logging
import os
from typing import Any, Optional

from conduit_fs.context import ConduitContext
from conduit_fs.filesystem.entries import create_entry_info
from conduit_fs.filesystem.exceptions import (
    ErrorCode,
    FileSizeLimitExceededError,
    FileSystemError,
    InvalidParameterError,
    error_item,
    from_os_error,
)
from conduit_fs.filesystem.fetcher import WebFetcher, is_url
from conduit_fs.security import PathValidationError, ResolutionIntent
from conduit_fs.settings import SUPPORTED_CHECKSUM_ALGORITHMS

logger = logging.getLogger(__name__)

CONTENT_FORMATS = ("text", "base64", "checksum")

_CHUNK_SIZE = 64 * 1024


def compute_checksum(data: bytes, algorithm: str) -> str:
    """Hex digest of ``data``."""
    if algorithm not in SUPPORTED_CHECKSUM_ALGORITHMS:
        raise FileSystemError(
            ErrorCode.UNSUPPORTED_CHECKSUM_ALGORITHM,
            f"Unsupported checksum algorithm: {algorithm}",
        )
    return hashlib.new(algorithm, data).hexdigest()


def file_checksum(path: str, algorithm: str) -> str:
    """Hex digest of a file, read in chunks."""
    if algorithm not in SUPPORTED_CHECKSUM_ALGORITHMS:
        raise FileSystemError(
            ErrorCode.UNSUPPORTED_CHECKSUM_ALGORITHM,
            f"Unsupported checksum algorithm: {algorithm}",
        )
    digest = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class ContentReader:
    """
    Implements the read tool.

    Usage:
        reader = ContentReader(context)
        items = await reader.read_content(["notes.txt"], format="text")
        for item in items:
            print(item["status"], item.get("content"))
    """

    def __init__(self, context: ConduitContext, fetcher: Optional[WebFetcher] = None):
        """
        Initialize the reader.

        Args:
            context: Server context
            fetcher: URL fetcher (default: built from settings)
        """
        self.context = context
        self.validator = context.validator
        self.settings = context.settings
        self.fetcher = fetcher or WebFetcher(
            timeout_ms=self.settings.http_timeout_ms,
            max_bytes=self.settings.max_url_download_size_bytes,
        )

    async def read_content(
        self,
        sources: list[str],
        format: str = "text",
        checksum_algorithm: Optional[str] = None,
        offset: Optional[int] = None,
        length: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Read each source; failures become error items.

        Args:
            sources: File paths or http(s) URLs
            format: ``text``, ``base64`` or ``checksum``
            checksum_algorithm: Algorithm for ``checksum`` (default from settings)
            offset: Byte offset to start at
            length: Number of bytes to read

        Returns:
            One result item per source
        """
        results = []
        for source in sources:
            try:
                if format not in CONTENT_FORMATS:
                    raise InvalidParameterError(
                        f"Invalid format '{format}', expected one of {', '.join(CONTENT_FORMATS)}"
                    )
                _check_range(offset, length)
                if is_url(source):
                    item = await self._read_url(source, format, checksum_algorithm, offset, length)
                else:
                    item = self._read_file(source, format, checksum_algorithm, offset, length)
                results.append(item)
            except (FileSystemError, PathValidationError) as e:
                logger.warning(f"read content failed for {source}: {e}")
                results.append(error_item(e, source=source, source_type=_source_type(source)))
            except Exception as e:
                results.append(error_item(e, source=source, source_type=_source_type(source)))
        return results

    def _read_file(
        self,
        source: str,
        format: str,
        checksum_algorithm: Optional[str],
        offset: Optional[int],
        length: Optional[int],
    ) -> dict[str, Any]:
        path = self.validator.validate(source, ResolutionIntent.READ)

        if os.path.isdir(path):
            raise FileSystemError(
                ErrorCode.FS_PATH_IS_DIR, f"Path is a directory, not a file: {source}"
            )

        try:
            file_size = os.path.getsize(path)
            start = min(offset or 0, file_size)
            to_read = file_size - start if length is None else min(length, file_size - start)

            if format == "checksum" and offset is None and length is None:
                algorithm = checksum_algorithm or self.settings.default_checksum_algorithm
                return self._success_item(
                    source,
                    "file",
                    path=path,
                    checksum=file_checksum(path, algorithm),
                    checksum_algorithm_used=algorithm,
                    size_bytes=file_size,
                    output_format_used="checksum",
                )

            if to_read > self.settings.max_file_read_bytes:
                logger.warning(
                    f"File too large: {path} ({to_read} bytes > "
                    f"{self.settings.max_file_read_bytes} bytes)"
                )
                raise FileSizeLimitExceededError(
                    path, to_read, self.settings.max_file_read_bytes
                )

            with open(path, "rb") as f:
                f.seek(start)
                data = f.read(to_read)
        except OSError as e:
            raise from_os_error(e, ErrorCode.FS_READ_FAILED, source)

        item = self._encode(data, format, checksum_algorithm)
        item.update(
            path=path,
            mime_type=create_entry_info(path).mime_type,
            size_bytes=len(data),
        )
        if offset is not None or length is not None:
            item["range_request_status"] = "native"
            item["range_offset"] = start
        return self._success_item(source, "file", **item)

    async def _read_url(
        self,
        source: str,
        format: str,
        checksum_algorithm: Optional[str],
        offset: Optional[int],
        length: Optional[int],
    ) -> dict[str, Any]:
        fetched = await self.fetcher.fetch(source)
        data = fetched.content or b""
        if offset is not None or length is not None:
            start = offset or 0
            data = data[start : None if length is None else start + length]

        item = self._encode(data, format, checksum_algorithm)
        item.update(
            final_url=fetched.final_url,
            http_status_code=fetched.status_code,
            mime_type=fetched.mime_type,
            size_bytes=len(data),
        )
        if offset is not None or length is not None:
            item["range_request_status"] = "simulated"
        return self._success_item(source, "url", **item)

    def _encode(
        self, data: bytes, format: str, checksum_algorithm: Optional[str]
    ) -> dict[str, Any]:
        if format == "checksum":
            algorithm = checksum_algorithm or self.settings.default_checksum_algorithm
            return {
                "checksum": compute_checksum(data, algorithm),
                "checksum_algorithm_used": algorithm,
                "output_format_used": "checksum",
            }
        if format == "base64":
            return {
                "content": base64.b64encode(data).decode("ascii"),
                "output_format_used": "base64",
            }
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            raise FileSystemError(
                ErrorCode.CANNOT_REPRESENT_BINARY_AS_TEXT,
                "Content is not valid UTF-8 text; request format 'base64' instead.",
            )
        return {"content": text, "output_format_used": "text"}

    async def read_metadata(self, sources: list[str]) -> list[dict[str, Any]]:
        """
        Describe each source.

        Files get full entry metadata; URLs get status, headers and size
        from a HEAD request.
        """
        results = []
        for source in sources:
            try:
                if is_url(source):
                    fetched = await self.fetcher.fetch(source, metadata_only=True)
                    metadata = {
                        "final_url": fetched.final_url,
                        "http_status_code": fetched.status_code,
                        "mime_type": fetched.mime_type,
                        "size_bytes": fetched.size_bytes,
                        "headers": fetched.headers,
                    }
                    results.append(self._success_item(source, "url", metadata=metadata))
                else:
                    path = self.validator.validate(source, ResolutionIntent.READ)
                    try:
                        metadata = create_entry_info(path).to_dict()
                    except OSError as e:
                        raise from_os_error(e, ErrorCode.FS_READ_FAILED, source)
                    results.append(self._success_item(source, "file", metadata=metadata))
            except (FileSystemError, PathValidationError) as e:
                logger.warning(f"read metadata failed for {source}: {e}")
                results.append(error_item(e, source=source, source_type=_source_type(source)))
            except Exception as e:
                results.append(error_item(e, source=source, source_type=_source_type(source)))
        return results

    async def read_diff(self, sources: list[str], context_lines: int = 3) -> dict[str, Any]:
        """
        Unified diff of two local text files.

        Returns:
            A single success or error item
        """
        try:
            if len(sources) != 2:
                raise InvalidParameterError(
                    f"diff requires exactly two sources, got {len(sources)}"
                )
            texts = []
            paths = []
            for source in sources:
                if is_url(source):
                    raise InvalidParameterError(f"diff supports local files only: {source}")
                path = self.validator.validate(source, ResolutionIntent.READ)
                if os.path.isdir(path):
                    raise FileSystemError(
                        ErrorCode.FS_PATH_IS_DIR, f"Path is a directory, not a file: {source}"
                    )
                try:
                    with open(path, "rb") as f:
                        data = f.read()
                except OSError as e:
                    raise from_os_error(e, ErrorCode.FS_READ_FAILED, source)
                try:
                    texts.append(data.decode("utf-8"))
                except UnicodeDecodeError:
                    raise FileSystemError(
                        ErrorCode.DIFF_TARGET_NOT_TEXT, f"Cannot diff binary file: {source}"
                    )
                paths.append(path)

            diff = difflib.unified_diff(
                texts[0].splitlines(keepends=True),
                texts[1].splitlines(keepends=True),
                fromfile=sources[0],
                tofile=sources[1],
                n=context_lines,
            )
            return {
                "status": "success",
                "sources_compared": list(sources),
                "diff_format_used": "unified",
                "diff_content": "".join(diff),
            }
        except (FileSystemError, PathValidationError) as e:
            logger.warning(f"read diff failed: {e}")
            return error_item(e, sources_compared=list(sources))
        except Exception as e:
            return error_item(e, sources_compared=list(sources))

    @staticmethod
    def _success_item(source: str, source_type: str, **fields: Any) -> dict[str, Any]:
        item = {"source": source, "source_type": source_type, "status": "success"}
        item.update({k: v for k, v in fields.items() if v is not None})
        return item


def _source_type(source: str) -> str:
    return "url" if is_url(source) else "file"


def _check_range(offset: Optional[int], length: Optional[int]) -> None:
    if offset is not None and (isinstance(offset, bool) or not isinstance(offset, int) or offset < 0):
        raise FileSystemError(
            ErrorCode.INVALID_BYTE_RANGE, f"offset must be a non-negative integer, got {offset!r}"
        )
    if length is not None and (isinstance(length, bool) or not isinstance(length, int) or length < 0):
        raise FileSystemError(
            ErrorCode.INVALID_BYTE_RANGE, f"length must be a non-negative integer, got {length!r}"
        )
