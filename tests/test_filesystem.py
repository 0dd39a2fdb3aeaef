"""
Tests for the read, write, list and find tools.
"""

import base64
import hashlib
import io
import os
import tarfile
import tempfile
import zipfile
from pathlib import Path

import httpx
import pytest

from conduit_fs.context import ConduitContext
from conduit_fs.filesystem import (
    ArchiveManager,
    ConduitTools,
    ContentReader,
    DirectoryLister,
    EntryFinder,
    FileWriter,
    WebFetcher,
)
from conduit_fs.settings import ConduitSettings


def _can_symlink() -> bool:
    with tempfile.TemporaryDirectory() as tmpdir:
        try:
            os.symlink(tmpdir, os.path.join(tmpdir, "link"))
        except (OSError, NotImplementedError):
            return False
    return True


requires_symlinks = pytest.mark.skipif(
    not _can_symlink(), reason="Platform cannot create symlinks"
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove CONDUIT_* variables so tests see defaults."""
    for key in list(os.environ.keys()):
        if key.startswith("CONDUIT_"):
            monkeypatch.delenv(key)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(os.path.realpath(tmpdir))


@pytest.fixture
def workspace(temp_dir):
    """The allowed directory, also used as workspace root."""
    path = temp_dir / "work"
    path.mkdir()
    return path


@pytest.fixture
def outside(temp_dir):
    """A directory outside the allowed set."""
    path = temp_dir / "outside"
    path.mkdir()
    (path / "secret.txt").write_text("the needle is secret\n")
    return path


def make_context(workspace: Path, **overrides) -> ConduitContext:
    settings = ConduitSettings(
        allowed_paths=str(workspace),
        workspace_root=workspace,
        **overrides,
    )
    return ConduitContext.from_settings(settings)


@pytest.fixture
def context(workspace):
    """Context allowing only the workspace, with a small read limit."""
    return make_context(workspace, max_file_read_bytes=1000)


@pytest.fixture
def reader(context):
    return ContentReader(context)


@pytest.fixture
def writer(context):
    return FileWriter(context)


@pytest.fixture
def archives(context):
    return ArchiveManager(context)


@pytest.fixture
def lister(context):
    return DirectoryLister(context)


@pytest.fixture
def finder(context):
    return EntryFinder(context)


@pytest.fixture
def tools(context):
    return ConduitTools(context)


@pytest.fixture
def source_tree(workspace):
    """workspace/src with x.txt and sub/y.txt."""
    src = workspace / "src"
    (src / "sub").mkdir(parents=True)
    (src / "x.txt").write_text("xxx")
    (src / "sub" / "y.txt").write_text("yyyy")
    return src


def mock_fetcher(handler, max_bytes: int = 100) -> WebFetcher:
    return WebFetcher(
        timeout_ms=1000,
        max_bytes=max_bytes,
        transport=httpx.MockTransport(handler),
    )


class TestContentReader:
    """Test the read tool's content operation."""

    @pytest.mark.asyncio
    async def test_read_text(self, workspace, reader):
        """Test reading a text file relative to the workspace."""
        (workspace / "a.txt").write_text("hello\n")

        [item] = await reader.read_content(["a.txt"])
        assert item["status"] == "success"
        assert item["source_type"] == "file"
        assert item["content"] == "hello\n"
        assert item["output_format_used"] == "text"
        assert item["path"] == str(workspace / "a.txt")
        assert item["size_bytes"] == 6
        assert item["mime_type"] == "text/plain"

    @pytest.mark.asyncio
    async def test_read_base64(self, workspace, reader):
        """Test reading binary content as base64."""
        data = b"\x00\x01\xff"
        (workspace / "blob.bin").write_bytes(data)

        [item] = await reader.read_content(["blob.bin"], format="base64")
        assert item["status"] == "success"
        assert base64.b64decode(item["content"]) == data

    @pytest.mark.asyncio
    async def test_binary_as_text_rejected(self, workspace, reader):
        """Test that binary content cannot be returned as text."""
        (workspace / "blob.bin").write_bytes(b"\x00\x01\xff")

        [item] = await reader.read_content(["blob.bin"], format="text")
        assert item["status"] == "error"
        assert item["error_code"] == "ERR_CANNOT_REPRESENT_BINARY_AS_TEXT"

    @pytest.mark.asyncio
    async def test_read_checksum(self, workspace, reader):
        """Test checksums with the default and an explicit algorithm."""
        (workspace / "a.txt").write_text("hello\n")

        [item] = await reader.read_content(["a.txt"], format="checksum")
        assert item["checksum"] == hashlib.sha256(b"hello\n").hexdigest()
        assert item["checksum_algorithm_used"] == "sha256"

        [item] = await reader.read_content(["a.txt"], format="checksum", checksum_algorithm="md5")
        assert item["checksum"] == hashlib.md5(b"hello\n").hexdigest()

    @pytest.mark.asyncio
    async def test_unsupported_checksum_algorithm(self, workspace, reader):
        (workspace / "a.txt").write_text("hello\n")

        [item] = await reader.read_content(["a.txt"], format="checksum", checksum_algorithm="crc32")
        assert item["error_code"] == "ERR_UNSUPPORTED_CHECKSUM_ALGORITHM"

    @pytest.mark.asyncio
    async def test_read_range(self, workspace, reader):
        """Test reading a byte range."""
        (workspace / "digits.txt").write_text("0123456789")

        [item] = await reader.read_content(["digits.txt"], offset=2, length=3)
        assert item["content"] == "234"
        assert item["range_request_status"] == "native"
        assert item["range_offset"] == 2

    @pytest.mark.asyncio
    async def test_invalid_range(self, workspace, reader):
        (workspace / "digits.txt").write_text("0123456789")

        [item] = await reader.read_content(["digits.txt"], offset=-1)
        assert item["error_code"] == "ERR_INVALID_BYTE_RANGE"

    @pytest.mark.asyncio
    async def test_boolean_range_rejected(self, workspace, reader):
        (workspace / "digits.txt").write_text("0123456789")

        [item] = await reader.read_content(["digits.txt"], offset=True)
        assert item["error_code"] == "ERR_INVALID_BYTE_RANGE"

        [item] = await reader.read_content(["digits.txt"], length=False)
        assert item["error_code"] == "ERR_INVALID_BYTE_RANGE"

    @pytest.mark.asyncio
    async def test_size_limit(self, workspace, reader):
        """Test that files above the read limit are rejected unless a range is given."""
        (workspace / "large.txt").write_text("x" * 2000)

        [item] = await reader.read_content(["large.txt"])
        assert item["error_code"] == "ERR_RESOURCE_LIMIT_EXCEEDED"

        [item] = await reader.read_content(["large.txt"], offset=0, length=10)
        assert item["content"] == "x" * 10

    @pytest.mark.asyncio
    async def test_read_directory(self, workspace, reader):
        (workspace / "sub").mkdir()

        [item] = await reader.read_content(["sub"])
        assert item["error_code"] == "ERR_FS_PATH_IS_DIR"

    @pytest.mark.asyncio
    async def test_read_not_found(self, reader):
        [item] = await reader.read_content(["missing.txt"])
        assert item["status"] == "error"
        assert item["error_code"] == "ERR_FS_NOT_FOUND"
        assert item["source"] == "missing.txt"
        assert item["source_type"] == "file"

    @pytest.mark.asyncio
    async def test_read_outside_denied(self, outside, reader):
        """Test that files outside the allowed set are denied."""
        [item] = await reader.read_content([str(outside / "secret.txt")])
        assert item["error_code"] == "ERR_FS_PERMISSION_DENIED"
        assert "content" not in item

    @requires_symlinks
    @pytest.mark.asyncio
    async def test_read_symlink_escape_denied(self, workspace, outside, reader):
        """Test that a symlink inside the workspace cannot expose outside files."""
        os.symlink(outside / "secret.txt", workspace / "leak.txt")

        [item] = await reader.read_content(["leak.txt"])
        assert item["error_code"] == "ERR_FS_PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_batch_keeps_order(self, workspace, reader):
        """Test that one failing source does not abort the batch."""
        (workspace / "a.txt").write_text("a")
        (workspace / "b.txt").write_text("b")

        items = await reader.read_content(["a.txt", "missing.txt", "b.txt"])
        assert [item["status"] for item in items] == ["success", "error", "success"]
        assert items[2]["content"] == "b"


class TestUrlSources:
    """Test URL sources through a mocked transport."""

    @pytest.mark.asyncio
    async def test_read_url(self, context):
        def handler(request):
            return httpx.Response(
                200, content=b"remote", headers={"content-type": "text/plain; charset=utf-8"}
            )

        fetcher = mock_fetcher(handler)
        reader = ContentReader(context, fetcher=fetcher)
        try:
            [item] = await reader.read_content(["https://example.com/a.txt"])
        finally:
            await fetcher.close()

        assert item["status"] == "success"
        assert item["source_type"] == "url"
        assert item["content"] == "remote"
        assert item["http_status_code"] == 200
        assert item["mime_type"] == "text/plain"

    @pytest.mark.asyncio
    async def test_url_range_is_simulated(self, context):
        fetcher = mock_fetcher(lambda request: httpx.Response(200, content=b"0123456789"))
        reader = ContentReader(context, fetcher=fetcher)
        try:
            [item] = await reader.read_content(["https://example.com/d"], offset=3, length=2)
        finally:
            await fetcher.close()

        assert item["content"] == "34"
        assert item["range_request_status"] == "simulated"

    @pytest.mark.asyncio
    async def test_url_status_error(self, context):
        fetcher = mock_fetcher(lambda request: httpx.Response(404))
        reader = ContentReader(context, fetcher=fetcher)
        try:
            [item] = await reader.read_content(["https://example.com/missing"])
        finally:
            await fetcher.close()

        assert item["error_code"] == "ERR_HTTP_STATUS_ERROR"
        assert item["source_type"] == "url"

    @pytest.mark.asyncio
    async def test_url_too_large(self, context):
        fetcher = mock_fetcher(lambda request: httpx.Response(200, content=b"x" * 200))
        reader = ContentReader(context, fetcher=fetcher)
        try:
            [item] = await reader.read_content(["https://example.com/big"])
        finally:
            await fetcher.close()

        assert item["error_code"] == "ERR_RESOURCE_LIMIT_EXCEEDED"

    @pytest.mark.asyncio
    async def test_url_timeout(self, context):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        fetcher = mock_fetcher(handler)
        reader = ContentReader(context, fetcher=fetcher)
        try:
            [item] = await reader.read_content(["https://example.com/slow"])
        finally:
            await fetcher.close()

        assert item["error_code"] == "ERR_HTTP_TIMEOUT"

    @pytest.mark.asyncio
    async def test_url_metadata(self, context):
        methods = []

        def handler(request):
            methods.append(request.method)
            return httpx.Response(200, headers={"content-type": "application/json"})

        fetcher = mock_fetcher(handler)
        reader = ContentReader(context, fetcher=fetcher)
        try:
            [item] = await reader.read_metadata(["https://example.com/data.json"])
        finally:
            await fetcher.close()

        assert methods == ["HEAD"]
        assert item["status"] == "success"
        assert item["metadata"]["http_status_code"] == 200
        assert item["metadata"]["mime_type"] == "application/json"


class TestMetadataAndDiff:
    """Test the read tool's metadata and diff operations."""

    @pytest.mark.asyncio
    async def test_file_metadata(self, workspace, reader):
        (workspace / "a.txt").write_text("hello\n")

        [item] = await reader.read_metadata(["a.txt"])
        metadata = item["metadata"]
        assert metadata["name"] == "a.txt"
        assert metadata["type"] == "file"
        assert metadata["size_bytes"] == 6
        assert metadata["modified_at"].endswith("Z")
        assert len(metadata["permissions_octal"]) == 4

    @pytest.mark.asyncio
    async def test_metadata_not_found(self, reader):
        [item] = await reader.read_metadata(["missing.txt"])
        assert item["error_code"] == "ERR_FS_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_diff(self, workspace, reader):
        """Test a unified diff between two files."""
        (workspace / "a.txt").write_text("one\ntwo\n")
        (workspace / "b.txt").write_text("one\nthree\n")

        item = await reader.read_diff(["a.txt", "b.txt"])
        assert item["status"] == "success"
        assert item["diff_format_used"] == "unified"
        assert "-two" in item["diff_content"]
        assert "+three" in item["diff_content"]

    @pytest.mark.asyncio
    async def test_diff_identical(self, workspace, reader):
        (workspace / "a.txt").write_text("same\n")
        (workspace / "b.txt").write_text("same\n")

        item = await reader.read_diff(["a.txt", "b.txt"])
        assert item["diff_content"] == ""

    @pytest.mark.asyncio
    async def test_diff_requires_two_sources(self, workspace, reader):
        (workspace / "a.txt").write_text("one\n")

        item = await reader.read_diff(["a.txt"])
        assert item["error_code"] == "ERR_INVALID_PARAMETER"

    @pytest.mark.asyncio
    async def test_diff_binary(self, workspace, reader):
        (workspace / "a.txt").write_text("one\n")
        (workspace / "blob.bin").write_bytes(b"\xff\xfe\x00")

        item = await reader.read_diff(["a.txt", "blob.bin"])
        assert item["error_code"] == "ERR_DIFF_TARGET_NOT_TEXT"


class TestFileWriter:
    """Test the write tool's batch actions."""

    def test_put_text(self, workspace, writer):
        [item] = writer.put([{"path": "a.txt", "content": "hello\n"}])
        assert item["status"] == "success"
        assert item["bytes_written"] == 6
        assert item["checksum"] == hashlib.sha256(b"hello\n").hexdigest()
        assert (workspace / "a.txt").read_text() == "hello\n"

    def test_put_creates_parents(self, workspace, writer):
        """Test that missing parent directories inside the workspace are created."""
        [item] = writer.put([{"path": "new/sub/file.txt", "content": "x"}])
        assert item["status"] == "success"
        assert (workspace / "new" / "sub" / "file.txt").read_text() == "x"

    def test_put_base64(self, workspace, writer):
        data = b"\x00\x10\xff"
        [item] = writer.put(
            [{"path": "blob.bin", "content": base64.b64encode(data).decode(), "input_encoding": "base64"}]
        )
        assert item["status"] == "success"
        assert (workspace / "blob.bin").read_bytes() == data

    def test_put_invalid_base64(self, writer):
        [item] = writer.put([{"path": "blob.bin", "content": "!!!", "input_encoding": "base64"}])
        assert item["error_code"] == "ERR_INVALID_ENCODING"

    def test_put_append(self, workspace, writer):
        (workspace / "log.txt").write_text("one\n")
        writer.put([{"path": "log.txt", "content": "two\n", "write_mode": "append"}])
        assert (workspace / "log.txt").read_text() == "one\ntwo\n"

    def test_put_error_if_exists(self, workspace, writer):
        (workspace / "a.txt").write_text("keep")
        [item] = writer.put([{"path": "a.txt", "content": "new", "write_mode": "error_if_exists"}])
        assert item["error_code"] == "ERR_FS_ALREADY_EXISTS"
        assert (workspace / "a.txt").read_text() == "keep"

    def test_put_invalid_write_mode(self, writer):
        [item] = writer.put([{"path": "a.txt", "content": "x", "write_mode": "sometimes"}])
        assert item["error_code"] == "ERR_INVALID_WRITE_MODE"

    def test_put_outside_denied(self, outside, writer):
        [item] = writer.put([{"path": str(outside / "evil.txt"), "content": "x"}])
        assert item["error_code"] == "ERR_FS_PERMISSION_DENIED"
        assert not (outside / "evil.txt").exists()

    @requires_symlinks
    def test_put_through_symlinked_dir_denied(self, workspace, outside, writer):
        """Test that a directory symlink cannot redirect a write outside."""
        os.symlink(outside, workspace / "link")

        [item] = writer.put([{"path": "link/evil.txt", "content": "x"}])
        assert item["error_code"] == "ERR_FS_PERMISSION_DENIED"
        assert not (outside / "evil.txt").exists()

    @requires_symlinks
    def test_put_onto_symlink_denied(self, workspace, outside, writer):
        """Test that overwriting a file symlink cannot modify its outside target."""
        os.symlink(outside / "secret.txt", workspace / "leak.txt")

        [item] = writer.put([{"path": "leak.txt", "content": "overwritten"}])
        assert item["error_code"] == "ERR_FS_PERMISSION_DENIED"
        assert (outside / "secret.txt").read_text() == "the needle is secret\n"

    def test_empty_batch(self, writer):
        [item] = writer.put([])
        assert item["error_code"] == "ERR_MISSING_ENTRIES_FOR_BATCH"
        assert item["action_performed"] == "put"

    def test_batch_continues_after_failure(self, workspace, outside, writer):
        items = writer.put(
            [
                {"path": str(outside / "evil.txt"), "content": "x"},
                {"path": "ok.txt", "content": "y"},
            ]
        )
        assert [item["status"] for item in items] == ["error", "success"]
        assert items[0]["path"] == str(outside / "evil.txt")
        assert (workspace / "ok.txt").read_text() == "y"

    def test_missing_path(self, writer):
        [item] = writer.put([{"content": "x"}])
        assert item["error_code"] == "ERR_INVALID_PARAMETER"

    def test_mkdir(self, workspace, writer):
        [item] = writer.mkdir([{"path": "newdir"}])
        assert item["status"] == "success"
        assert (workspace / "newdir").is_dir()

        [item] = writer.mkdir([{"path": "newdir"}])
        assert item["message"] == "Directory already exists."

    def test_mkdir_needs_recursive_for_missing_parents(self, workspace, writer):
        [item] = writer.mkdir([{"path": "a/b/c"}])
        assert item["error_code"] == "ERR_FS_DIR_NOT_FOUND"

        [item] = writer.mkdir([{"path": "a/b/c", "recursive": True}])
        assert item["status"] == "success"
        assert (workspace / "a" / "b" / "c").is_dir()

    def test_mkdir_over_file(self, workspace, writer):
        (workspace / "a.txt").write_text("x")
        [item] = writer.mkdir([{"path": "a.txt"}])
        assert item["error_code"] == "ERR_FS_PATH_IS_FILE"

    def test_copy_file(self, workspace, writer):
        (workspace / "a.txt").write_text("data")
        [item] = writer.copy([{"source_path": "a.txt", "destination_path": "b.txt"}])
        assert item["status"] == "success"
        assert (workspace / "b.txt").read_text() == "data"
        assert (workspace / "a.txt").exists()

    def test_copy_into_directory_needs_trailing_slash(self, workspace, writer):
        (workspace / "a.txt").write_text("data")
        (workspace / "sub").mkdir()

        [item] = writer.copy([{"source_path": "a.txt", "destination_path": "sub"}])
        assert item["error_code"] == "ERR_FS_PATH_IS_DIR"

        [item] = writer.copy([{"source_path": "a.txt", "destination_path": "sub/"}])
        assert item["status"] == "success"
        assert item["destination_path"] == str(workspace / "sub" / "a.txt")
        assert (workspace / "sub" / "a.txt").read_text() == "data"

    def test_copy_without_overwrite(self, workspace, writer):
        (workspace / "a.txt").write_text("new")
        (workspace / "b.txt").write_text("old")

        [item] = writer.copy(
            [{"source_path": "a.txt", "destination_path": "b.txt", "overwrite": False}]
        )
        assert item["error_code"] == "ERR_FS_DESTINATION_EXISTS"
        assert (workspace / "b.txt").read_text() == "old"

    def test_copy_directory(self, workspace, source_tree, writer):
        [item] = writer.copy([{"source_path": "src", "destination_path": "dst"}])
        assert item["status"] == "success"
        assert (workspace / "dst" / "x.txt").read_text() == "xxx"
        assert (workspace / "dst" / "sub" / "y.txt").read_text() == "yyyy"

    def test_copy_directory_into_itself(self, source_tree, writer):
        [item] = writer.copy([{"source_path": "src", "destination_path": "src/inner"}])
        assert item["error_code"] == "ERR_INVALID_PARAMETER"

    def test_copy_source_outside_denied(self, outside, writer):
        [item] = writer.copy(
            [{"source_path": str(outside / "secret.txt"), "destination_path": "stolen.txt"}]
        )
        assert item["error_code"] == "ERR_FS_PERMISSION_DENIED"

    def test_move(self, workspace, writer):
        (workspace / "a.txt").write_text("data")
        [item] = writer.move([{"source_path": "a.txt", "destination_path": "moved/a.txt"}])
        assert item["status"] == "success"
        assert not (workspace / "a.txt").exists()
        assert (workspace / "moved" / "a.txt").read_text() == "data"

    def test_move_onto_itself(self, workspace, writer):
        (workspace / "a.txt").write_text("data")
        [item] = writer.move([{"source_path": "a.txt", "destination_path": "./a.txt"}])
        assert item["error_code"] == "ERR_INVALID_PARAMETER"

    def test_delete_file(self, workspace, writer):
        (workspace / "a.txt").write_text("x")
        [item] = writer.delete([{"path": "a.txt"}])
        assert item["status"] == "success"
        assert not (workspace / "a.txt").exists()

    def test_delete_non_empty_directory(self, workspace, source_tree, writer):
        [item] = writer.delete([{"path": "src"}])
        assert item["error_code"] == "ERR_FS_DIR_NOT_EMPTY"
        assert source_tree.exists()

        [item] = writer.delete([{"path": "src", "recursive": True}])
        assert item["status"] == "success"
        assert not source_tree.exists()

    @requires_symlinks
    def test_delete_symlink_keeps_target(self, workspace, writer):
        (workspace / "a.txt").write_text("x")
        os.symlink("a.txt", workspace / "alias.txt")

        [item] = writer.delete([{"path": "alias.txt"}])
        assert item["status"] == "success"
        assert not os.path.lexists(workspace / "alias.txt")
        assert (workspace / "a.txt").exists()

    @requires_symlinks
    def test_delete_link_outside_denied(self, workspace, outside, writer):
        """Test that a link living outside is kept even when it points inside."""
        (workspace / "target.txt").write_text("keep")
        os.symlink(workspace / "target.txt", outside / "victim")

        [item] = writer.delete([{"path": str(outside / "victim")}])
        assert item["error_code"] == "ERR_FS_PERMISSION_DENIED"
        assert os.path.lexists(outside / "victim")
        assert (workspace / "target.txt").exists()

    @requires_symlinks
    def test_delete_link_through_symlinked_dir_denied(self, workspace, outside, writer):
        (workspace / "target.txt").write_text("keep")
        os.symlink(outside, workspace / "linkdir")
        os.symlink(workspace / "target.txt", outside / "victim")

        [item] = writer.delete([{"path": "linkdir/victim"}])
        assert item["error_code"] == "ERR_FS_PERMISSION_DENIED"
        assert os.path.lexists(outside / "victim")

    def test_delete_not_found(self, writer):
        [item] = writer.delete([{"path": "missing.txt"}])
        assert item["error_code"] == "ERR_FS_NOT_FOUND"

    def test_touch(self, workspace, writer):
        [item] = writer.touch([{"path": "new.txt"}])
        assert item["message"] == "File created."
        assert (workspace / "new.txt").exists()

        os.utime(workspace / "new.txt", (0, 0))
        [item] = writer.touch([{"path": "new.txt"}])
        assert item["message"] == "Timestamp updated."
        assert (workspace / "new.txt").stat().st_mtime > 0

    def test_touch_missing_parent(self, writer):
        [item] = writer.touch([{"path": "nowhere/new.txt"}])
        assert item["error_code"] == "ERR_FS_DIR_NOT_FOUND"


class TestArchiveManager:
    """Test the archive and unarchive actions."""

    def test_create_zip(self, workspace, source_tree, archives):
        result = archives.create(["src"], "out.zip")
        assert result["status"] == "success"
        assert result["format_used"] == "zip"
        assert result["entries_processed"] == 4
        assert result["checksum_sha256"] == hashlib.sha256(
            (workspace / "out.zip").read_bytes()
        ).hexdigest()

        with zipfile.ZipFile(workspace / "out.zip") as zf:
            names = zf.namelist()
        assert "src/x.txt" in names
        assert "src/sub/y.txt" in names

    def test_create_with_prefix(self, workspace, source_tree, archives):
        archives.create(["src"], "out.tar", prefix="release")

        with tarfile.open(workspace / "out.tar") as tf:
            names = tf.getnames()
        assert "release/src/x.txt" in names

    def test_tar_gz_round_trip(self, workspace, source_tree, archives):
        archives.create(["src"], "out.tar.gz")

        result = archives.extract("out.tar.gz", "restore")
        assert result["status"] == "success"
        assert result["format_used"] == "tar.gz"
        assert result["files_extracted_count"] == 2
        assert (workspace / "restore" / "src" / "x.txt").read_text() == "xxx"
        assert (workspace / "restore" / "src" / "sub" / "y.txt").read_text() == "yyyy"

    def test_extract_strip_components(self, workspace, source_tree, archives):
        archives.create(["src"], "out.zip")

        result = archives.extract("out.zip", "restore", strip_components=1)
        assert result["files_extracted_count"] == 2
        assert (workspace / "restore" / "x.txt").read_text() == "xxx"
        assert (workspace / "restore" / "sub" / "y.txt").exists()

    def test_extract_filter_paths(self, workspace, source_tree, archives):
        archives.create(["src"], "out.tar")

        result = archives.extract("out.tar", "restore", filter_paths=["src/sub"])
        assert result["files_extracted_count"] == 1
        assert (workspace / "restore" / "src" / "sub" / "y.txt").exists()
        assert not (workspace / "restore" / "src" / "x.txt").exists()

    def test_extract_existing_without_overwrite(self, workspace, source_tree, archives):
        archives.create(["src"], "out.zip")
        archives.extract("out.zip", "restore")

        result = archives.extract("out.zip", "restore")
        assert result["error_code"] == "ERR_FS_DESTINATION_EXISTS"

        result = archives.extract("out.zip", "restore", overwrite=True)
        assert result["status"] == "success"

    def test_zip_member_escape_rejected(self, workspace, archives):
        """Test that a ../ member is rejected before anything is written."""
        with zipfile.ZipFile(workspace / "evil.zip", "w") as zf:
            zf.writestr("ok.txt", "fine")
            zf.writestr("../evil.txt", "gotcha")

        result = archives.extract("evil.zip", "restore")
        assert result["status"] == "error"
        assert result["error_code"] == "ERR_ARCHIVE_PATH_INVALID"
        assert not (workspace / "evil.txt").exists()
        assert not (workspace / "restore" / "ok.txt").exists()

    def test_tar_absolute_member_rejected(self, workspace, archives):
        with tarfile.open(workspace / "evil.tar", "w") as tf:
            info = tarfile.TarInfo("/tmp/evil.txt")
            info.size = 0
            tf.addfile(info)

        result = archives.extract("evil.tar", "restore")
        assert result["error_code"] == "ERR_ARCHIVE_PATH_INVALID"

    def test_tar_symlink_escape_rejected(self, workspace, archives):
        with tarfile.open(workspace / "evil.tar", "w") as tf:
            info = tarfile.TarInfo("escape")
            info.type = tarfile.SYMTYPE
            info.linkname = "../../outside"
            tf.addfile(info)

        result = archives.extract("evil.tar", "restore")
        assert result["error_code"] == "ERR_ARCHIVE_PATH_INVALID"
        assert not os.path.lexists(workspace / "restore" / "escape")

    @requires_symlinks
    def test_zip_extract_replaces_existing_symlink(self, workspace, outside, archives):
        """Test that overwriting a symlinked member replaces the link, not its target."""
        (outside / "victim.txt").write_text("original")
        (workspace / "restore").mkdir()
        os.symlink(outside / "victim.txt", workspace / "restore" / "a.txt")
        with zipfile.ZipFile(workspace / "in.zip", "w") as zf:
            zf.writestr("a.txt", "PWNED")

        result = archives.extract("in.zip", "restore", overwrite=True)
        assert result["status"] == "success"
        assert (outside / "victim.txt").read_text() == "original"
        assert not os.path.islink(workspace / "restore" / "a.txt")
        assert (workspace / "restore" / "a.txt").read_text() == "PWNED"

    @requires_symlinks
    def test_zip_extract_through_symlinked_dir_rejected(self, workspace, outside, archives):
        (workspace / "restore").mkdir()
        os.symlink(outside, workspace / "restore" / "sub")
        with zipfile.ZipFile(workspace / "dir.zip", "w") as zf:
            zf.writestr("sub/new/", "")
        with zipfile.ZipFile(workspace / "deep.zip", "w") as zf:
            zf.writestr("sub/a/b/file.txt", "gotcha")

        result = archives.extract("dir.zip", "restore")
        assert result["error_code"] == "ERR_ARCHIVE_PATH_INVALID"
        assert not (outside / "new").exists()

        result = archives.extract("deep.zip", "restore")
        assert result["error_code"] == "ERR_ARCHIVE_PATH_INVALID"
        assert not (outside / "a").exists()

    def test_tar_hardlink_copies_earlier_member(self, workspace, archives):
        data = b"payload"
        with tarfile.open(workspace / "links.tar", "w") as tf:
            info = tarfile.TarInfo("data.txt")
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
            link = tarfile.TarInfo("copy.txt")
            link.type = tarfile.LNKTYPE
            link.linkname = "data.txt"
            tf.addfile(link)

        result = archives.extract("links.tar", "restore")
        assert result["status"] == "success"
        assert (workspace / "restore" / "copy.txt").read_bytes() == data

    @requires_symlinks
    def test_tar_hardlink_to_existing_symlink_rejected(self, workspace, outside, archives):
        """Test that a hardlink cannot copy a file reached through a symlink on disk."""
        (workspace / "restore").mkdir()
        os.symlink(outside / "secret.txt", workspace / "restore" / "data.txt")
        with tarfile.open(workspace / "evil.tar", "w") as tf:
            link = tarfile.TarInfo("copy.txt")
            link.type = tarfile.LNKTYPE
            link.linkname = "data.txt"
            tf.addfile(link)

        result = archives.extract("evil.tar", "restore")
        assert result["error_code"] == "ERR_ARCHIVE_PATH_INVALID"
        assert not (workspace / "restore" / "copy.txt").exists()

    def test_archive_not_found(self, archives):
        result = archives.extract("missing.zip", "restore")
        assert result["error_code"] == "ERR_ARCHIVE_NOT_FOUND"

    def test_unsupported_format(self, source_tree, archives):
        result = archives.create(["src"], "out.rar")
        assert result["error_code"] == "ERR_ARCHIVE_FORMAT_NOT_SUPPORTED"

    def test_no_sources(self, archives):
        result = archives.create([], "out.zip")
        assert result["error_code"] == "ERR_ARCHIVE_NO_SOURCES"

    def test_existing_archive_needs_overwrite(self, workspace, source_tree, archives):
        archives.create(["src"], "out.zip")

        result = archives.create(["src"], "out.zip")
        assert result["error_code"] == "ERR_FS_DESTINATION_EXISTS"

        result = archives.create(["src"], "out.zip", overwrite=True)
        assert result["status"] == "success"

    def test_archive_outside_destination_denied(self, outside, source_tree, archives):
        result = archives.create(["src"], str(outside / "out.zip"))
        assert result["error_code"] == "ERR_FS_PERMISSION_DENIED"
        assert not (outside / "out.zip").exists()


class TestDirectoryLister:
    """Test the list tool."""

    def test_list_entries(self, workspace, source_tree, lister):
        (workspace / "a.txt").write_text("hello")

        result = lister.list_entries(".")
        assert result["status"] == "success"
        assert result["path"] == str(workspace)
        assert [e["name"] for e in result["entries"]] == ["a.txt", "src"]

        a_txt = result["entries"][0]
        assert a_txt["type"] == "file"
        assert a_txt["size_bytes"] == 5
        assert "children" not in result["entries"][1]

    def test_list_recursive(self, source_tree, lister):
        result = lister.list_entries("src", recursive_depth=1)
        sub = next(e for e in result["entries"] if e["name"] == "sub")
        assert [child["name"] for child in sub["children"]] == ["y.txt"]

    def test_recursive_depth_capped(self, workspace):
        lister = DirectoryLister(make_context(workspace, max_recursive_depth=2))
        result = lister.list_entries(".", recursive_depth=50)
        assert result["status"] == "success"
        assert result["effective_recursive_depth"] == 2

    def test_recursive_depth_must_be_integer(self, lister):
        result = lister.list_entries(".", recursive_depth=True)
        assert result["error_code"] == "ERR_INVALID_PARAMETER"

    def test_recursive_size(self, source_tree, lister):
        result = lister.list_entries(".", calculate_recursive_size=True)
        src = next(e for e in result["entries"] if e["name"] == "src")
        assert src["size_bytes"] == 7

    @requires_symlinks
    def test_symlink_entry(self, workspace, lister):
        (workspace / "a.txt").write_text("x")
        os.symlink("a.txt", workspace / "alias.txt")

        result = lister.list_entries(".")
        alias = next(e for e in result["entries"] if e["name"] == "alias.txt")
        assert alias["type"] == "symlink"
        assert alias["symlink_target"] == "a.txt"

    def test_list_file_rejected(self, workspace, lister):
        (workspace / "a.txt").write_text("x")
        result = lister.list_entries("a.txt")
        assert result["error_code"] == "ERR_FS_PATH_IS_FILE"

    def test_list_outside_denied(self, outside, lister):
        result = lister.list_entries(str(outside))
        assert result["error_code"] == "ERR_FS_PERMISSION_DENIED"

    def test_system_info(self, workspace, lister):
        info = lister.system_info()
        capabilities = info["server_capabilities"]
        assert capabilities["allowed_paths"] == [str(workspace)]
        assert "sha256" in capabilities["supported_checksum_algorithms"]
        assert "zip" in capabilities["supported_archive_formats"]
        assert info["filesystem_stats"]["status"] == "success"
        assert info["filesystem_stats"]["total_bytes"] > 0

    def test_filesystem_stats_outside_denied(self, outside, lister):
        stats = lister.filesystem_stats(str(outside))
        assert stats["error_code"] == "ERR_FS_PERMISSION_DENIED"


class TestEntryFinder:
    """Test the find tool."""

    @pytest.fixture(autouse=True)
    def tree(self, workspace):
        (workspace / "a.py").write_text("print('a')\n")
        (workspace / "notes.txt").write_text("find the needle here\n")
        (workspace / "empty.txt").write_text("")
        (workspace / "src" / "deep").mkdir(parents=True)
        (workspace / "src" / "b.py").write_text("x = 1\n")
        (workspace / "src" / "deep" / "c.py").write_text("y = 2\n")

    @staticmethod
    def names(result):
        assert result["status"] == "success", result
        return sorted(entry["name"] for entry in result["results"])

    def test_name_pattern(self, finder):
        result = finder.find(".", [{"type": "name_pattern", "pattern": "*.py"}])
        assert self.names(result) == ["a.py", "b.py", "c.py"]

    def test_not_recursive(self, finder):
        result = finder.find(".", [{"type": "name_pattern", "pattern": "*.py"}], recursive=False)
        assert self.names(result) == ["a.py"]

    def test_recursive_depth(self, finder):
        result = finder.find(".", [{"type": "name_pattern", "pattern": "*.py"}], recursive_depth=1)
        assert self.names(result) == ["a.py", "b.py"]

    def test_entry_type_filter(self, finder):
        result = finder.find(
            ".", [{"type": "name_pattern", "pattern": "*"}], entry_type_filter="directory"
        )
        assert self.names(result) == ["deep", "src"]

    def test_content_pattern(self, finder):
        result = finder.find(".", [{"type": "content_pattern", "pattern": "NEEDLE"}])
        assert self.names(result) == ["notes.txt"]

    def test_content_pattern_case_sensitive(self, finder):
        result = finder.find(
            ".", [{"type": "content_pattern", "pattern": "NEEDLE", "case_sensitive": True}]
        )
        assert self.names(result) == []

    def test_content_regex(self, finder):
        result = finder.find(
            ".", [{"type": "content_pattern", "pattern": r"ne+dle", "is_regex": True}]
        )
        assert self.names(result) == ["notes.txt"]

    def test_content_file_types(self, finder):
        result = finder.find(
            ".",
            [{"type": "content_pattern", "pattern": "= 1", "file_types_to_search": ["py"]}],
        )
        assert self.names(result) == ["b.py"]

    def test_metadata_size(self, finder):
        result = finder.find(
            ".", [{"type": "metadata_filter", "attribute": "size_bytes", "operator": "eq", "value": 0}]
        )
        assert self.names(result) == ["empty.txt"]

    def test_metadata_name(self, finder):
        result = finder.find(
            ".",
            [{"type": "metadata_filter", "attribute": "name", "operator": "starts_with", "value": "NOTE"}],
        )
        assert self.names(result) == ["notes.txt"]

    def test_criteria_are_combined(self, finder):
        result = finder.find(
            ".",
            [
                {"type": "name_pattern", "pattern": "*.txt"},
                {"type": "metadata_filter", "attribute": "size_bytes", "operator": "gt", "value": 0},
            ],
        )
        assert self.names(result) == ["notes.txt"]

    def test_results_carry_absolute_paths(self, workspace, finder):
        result = finder.find(".", [{"type": "name_pattern", "pattern": "c.py"}])
        assert result["results"][0]["path"] == str(workspace / "src" / "deep" / "c.py")

    @requires_symlinks
    def test_content_search_does_not_follow_escaping_symlink(self, workspace, outside, finder):
        """Test that content behind a symlink to an outside file is never read."""
        os.symlink(outside / "secret.txt", workspace / "leak.txt")

        result = finder.find(".", [{"type": "content_pattern", "pattern": "needle"}])
        assert self.names(result) == ["notes.txt"]

    @requires_symlinks
    def test_directory_symlinks_not_followed(self, workspace, outside, finder):
        os.symlink(outside, workspace / "dirlink")

        result = finder.find(".", [{"type": "name_pattern", "pattern": "secret.txt"}])
        assert self.names(result) == []

    def test_invalid_criterion_type(self, finder):
        result = finder.find(".", [{"type": "bogus"}])
        assert result["error_code"] == "ERR_FIND_INVALID_CRITERIA"

    def test_invalid_operator(self, finder):
        result = finder.find(
            ".",
            [{"type": "metadata_filter", "attribute": "size_bytes", "operator": "before", "value": 1}],
        )
        assert result["error_code"] == "ERR_FIND_INVALID_CRITERIA"

    def test_invalid_regex(self, finder):
        result = finder.find(".", [{"type": "content_pattern", "pattern": "(", "is_regex": True}])
        assert result["error_code"] == "ERR_FIND_INVALID_CRITERIA"

    def test_base_path_is_file(self, finder):
        result = finder.find("a.py", [])
        assert result["error_code"] == "ERR_FS_PATH_IS_FILE"

    def test_base_path_outside_denied(self, outside, finder):
        result = finder.find(str(outside), [{"type": "name_pattern", "pattern": "*"}])
        assert result["error_code"] == "ERR_FS_PERMISSION_DENIED"


class TestConduitTools:
    """Test the tool dispatcher."""

    def test_get_tool_schemas(self, tools):
        """Test getting tool schemas."""
        schemas = tools.get_tool_schemas()
        assert [s["function"]["name"] for s in schemas] == ["read", "write", "list", "find"]
        for schema in schemas:
            assert schema["type"] == "function"
            assert schema["function"]["parameters"]["type"] == "object"

    @pytest.mark.asyncio
    async def test_write_then_read(self, tools):
        result = await tools.execute_tool(
            "write", {"action": "put", "entries": [{"path": "a.txt", "content": "hi"}]}
        )
        assert result["tool_name"] == "write"
        assert result["results"][0]["status"] == "success"

        result = await tools.execute_tool("read", {"operation": "content", "sources": ["a.txt"]})
        assert result["tool_name"] == "read"
        assert result["results"][0]["content"] == "hi"

    @pytest.mark.asyncio
    async def test_archive_action(self, workspace, source_tree, tools):
        result = await tools.execute_tool(
            "write", {"action": "archive", "source_paths": ["src"], "archive_path": "out.tgz"}
        )
        assert result["results"][0]["format_used"] == "tar.gz"

        result = await tools.execute_tool(
            "write",
            {"action": "unarchive", "archive_path": "out.tgz", "destination_path": "restore"},
        )
        assert result["results"][0]["files_extracted_count"] == 2

    @pytest.mark.asyncio
    async def test_list_tool(self, workspace, tools):
        (workspace / "a.txt").write_text("x")
        result = await tools.execute_tool("list", {"operation": "entries", "path": "."})
        assert result["tool_name"] == "list"
        assert result["status"] == "success"
        assert [e["name"] for e in result["entries"]] == ["a.txt"]

    @pytest.mark.asyncio
    async def test_list_system_info_type(self, tools):
        result = await tools.execute_tool(
            "list", {"operation": "system_info", "info_type": "filesystem_stats"}
        )
        assert result["status"] == "success"
        assert "filesystem_stats" in result
        assert "server_capabilities" not in result

    @pytest.mark.asyncio
    async def test_find_tool(self, workspace, tools):
        (workspace / "a.py").write_text("x")
        result = await tools.execute_tool(
            "find", {"base_path": ".", "match_criteria": [{"type": "name_pattern", "pattern": "*.py"}]}
        )
        assert result["tool_name"] == "find"
        assert [e["name"] for e in result["results"]] == ["a.py"]

    @pytest.mark.asyncio
    async def test_tool_denied(self, outside, tools):
        """Test that denials come back as error items, not exceptions."""
        result = await tools.execute_tool(
            "read", {"operation": "content", "sources": [str(outside / "secret.txt")]}
        )
        assert result["results"][0]["error_code"] == "ERR_FS_PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_unknown_operation(self, tools):
        result = await tools.execute_tool("read", {"operation": "chmod", "sources": ["a.txt"]})
        assert result["results"][0]["error_code"] == "ERR_UNKNOWN_OPERATION_ACTION"

        result = await tools.execute_tool("write", {"action": "chmod"})
        assert result["results"][0]["error_code"] == "ERR_UNKNOWN_OPERATION_ACTION"

        result = await tools.execute_tool("list", {"operation": "tree"})
        assert result["error_code"] == "ERR_UNKNOWN_OPERATION_ACTION"

    @pytest.mark.asyncio
    async def test_missing_sources(self, tools):
        result = await tools.execute_tool("read", {"operation": "content"})
        assert result["results"][0]["error_code"] == "ERR_INVALID_PARAMETER"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tools):
        """Test executing unknown tool."""
        with pytest.raises(ValueError, match="Unknown tool"):
            await tools.execute_tool("chmod", {})

    @pytest.mark.asyncio
    async def test_no_notice_with_explicit_paths(self, workspace, tools):
        result = await tools.execute_tool("list", {"operation": "entries", "path": "."})
        assert "info_notice" not in result

    @pytest.mark.asyncio
    async def test_default_paths_notice_sent_once(self, workspace):
        """Test the default-paths notice on the first response only."""
        context = ConduitContext.from_settings(ConduitSettings(workspace_root=workspace))
        tools = ConduitTools(context)

        first = await tools.execute_tool("list", {"operation": "entries", "path": "."})
        notice = first["info_notice"]
        assert notice["notice_code"] == "DEFAULT_PATHS_USED"
        assert notice["details"]["default_paths_used"] == context.allowed_paths.as_list()

        second = await tools.execute_tool("list", {"operation": "entries", "path": "."})
        assert "info_notice" not in second

    def test_get_summary(self, workspace, tools):
        """Test getting configuration summary."""
        summary = tools.get_summary()
        assert summary["allowed_paths"] == [str(workspace)]
        assert summary["allowed_paths_explicit"] is True
        assert summary["tools"] == ["read", "write", "list", "find"]
