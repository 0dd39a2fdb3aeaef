"""
Archive creation and extraction for the write tool.

Supports zip, tar and gzip-compressed tar. Extraction checks every
member against the destination before anything is written.
"""

import logging
import os
import posixpath
import shutil
import tarfile
import zipfile
from dataclasses import dataclass
from typing import Any, Optional

from conduit_fs.context import ConduitContext
from conduit_fs.filesystem.exceptions import (
    ArchiveError,
    ArchivePathError,
    ErrorCode,
    FileSystemError,
    InvalidParameterError,
    error_item,
    from_os_error,
)
from conduit_fs.filesystem.reader import file_checksum
from conduit_fs.filesystem.writer import FileWriter
from conduit_fs.security import FailureKind, PathValidationError, ResolutionIntent

logger = logging.getLogger(__name__)

ARCHIVE_FORMATS = ("zip", "tar", "tar.gz", "tgz")

_TAR_MODES = {"tar": "w", "tar.gz": "w:gz", "tgz": "w:gz"}


def detect_archive_format(path: str, requested: Optional[str] = None) -> str:
    """
    Determine the archive format from an explicit value or the file extension.

    Raises:
        ArchiveError: If the format is not supported
    """
    if requested:
        if requested not in ARCHIVE_FORMATS:
            raise ArchiveError(
                ErrorCode.ARCHIVE_FORMAT_NOT_SUPPORTED,
                f"Unsupported archive format: {requested}",
            )
        return "tar.gz" if requested == "tgz" else requested

    lower = path.lower()
    if lower.endswith(".zip"):
        return "zip"
    if lower.endswith((".tar.gz", ".tgz")):
        return "tar.gz"
    if lower.endswith(".tar"):
        return "tar"
    raise ArchiveError(
        ErrorCode.ARCHIVE_FORMAT_NOT_SUPPORTED,
        f"Cannot detect archive format from file name: {path}",
    )


@dataclass
class _PlannedMember:
    name: str
    target: str
    kind: str  # file, dir, symlink, hardlink
    member: Any
    link_target: Optional[str] = None


class ArchiveManager:
    """
    Implements the archive and unarchive actions.

    Usage:
        archives = ArchiveManager(context)
        archives.create(["src", "README.md"], "/tmp/out/project.tar.gz")
        archives.extract("/tmp/out/project.tar.gz", "/tmp/restore")
    """

    def __init__(self, context: ConduitContext, writer: Optional[FileWriter] = None):
        self.context = context
        self.validator = context.validator
        self.writer = writer or FileWriter(context)

    def create(
        self,
        source_paths: list[str],
        archive_path: str,
        format: Optional[str] = None,
        prefix: Optional[str] = None,
        overwrite: bool = False,
    ) -> dict[str, Any]:
        """
        Create an archive from files and directories.

        Args:
            source_paths: Files or directories to include
            archive_path: Archive file to create
            format: zip, tar, tar.gz or tgz (default: from extension)
            prefix: Directory name to place all entries under
            overwrite: Replace an existing archive

        Returns:
            Success or error item
        """
        try:
            if not source_paths:
                raise ArchiveError(
                    ErrorCode.ARCHIVE_NO_SOURCES, "No source paths given for archive."
                )
            if not isinstance(archive_path, str) or not archive_path.strip():
                raise InvalidParameterError("'archive_path' must be a non-empty string")

            fmt = detect_archive_format(archive_path, format)
            sources = [self.validator.validate(s, ResolutionIntent.READ) for s in source_paths]
            target = self.writer.validate_for_output(archive_path)

            if os.path.isdir(target):
                raise FileSystemError(
                    ErrorCode.FS_PATH_IS_DIR, f"Archive path is a directory: {archive_path}"
                )
            if os.path.lexists(target) and not overwrite:
                raise FileSystemError(
                    ErrorCode.FS_DESTINATION_EXISTS,
                    f"Archive already exists: {archive_path} (set overwrite=true)",
                )

            members = list(self._collect(sources, target, prefix))
            try:
                os.makedirs(os.path.dirname(target), exist_ok=True)
                if fmt == "zip":
                    self._write_zip(target, members)
                else:
                    self._write_tar(target, members, _TAR_MODES[fmt])
                size = os.path.getsize(target)
                checksum = file_checksum(target, "sha256")
            except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
                raise ArchiveError(
                    ErrorCode.ARCHIVE_CREATION_FAILED, f"Failed to create archive: {e}"
                )

            logger.info(f"Created {fmt} archive {target} with {len(members)} entries")
            return {
                "status": "success",
                "action_performed": "archive",
                "path": target,
                "format_used": fmt,
                "size_bytes": size,
                "entries_processed": len(members),
                "checksum_sha256": checksum,
            }
        except (FileSystemError, PathValidationError) as e:
            logger.warning(f"archive failed for {archive_path}: {e}")
            return error_item(e, action_performed="archive", path=archive_path)
        except Exception as e:
            return error_item(e, action_performed="archive", path=archive_path)

    def _collect(self, sources: list[str], archive_target: str, prefix: Optional[str]):
        """Yield (absolute_path, archive_name) pairs. Directory symlinks are not followed."""
        base = (prefix or "").strip("/")

        def arcname(*parts: str) -> str:
            return posixpath.join(base, *parts) if base else posixpath.join(*parts)

        for source in sources:
            name = os.path.basename(source) or source.strip(os.sep)
            if not os.path.isdir(source):
                yield source, arcname(name)
                continue

            yield source, arcname(name)
            for root, dirs, files in os.walk(source, followlinks=False):
                rel_root = os.path.relpath(root, source)
                rel_parts = [] if rel_root == "." else rel_root.split(os.sep)
                for entry in sorted(dirs) + sorted(files):
                    full = os.path.join(root, entry)
                    if full == archive_target:
                        continue
                    yield full, arcname(name, *rel_parts, entry)
                dirs.sort()

    def _write_zip(self, target: str, members: list[tuple[str, str]]) -> None:
        with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path, name in members:
                if os.path.islink(path):
                    logger.warning(f"Skipping symlink in zip archive: {path}")
                    continue
                if os.path.isdir(path):
                    zf.write(path, name + "/")
                else:
                    zf.write(path, name)

    def _write_tar(self, target: str, members: list[tuple[str, str]], mode: str) -> None:
        with tarfile.open(target, mode) as tf:
            for path, name in members:
                # Links are stored as links, never dereferenced
                tf.add(path, arcname=name, recursive=False)

    def extract(
        self,
        archive_path: str,
        destination_path: str,
        format: Optional[str] = None,
        filter_paths: Optional[list[str]] = None,
        strip_components: int = 0,
        overwrite: bool = False,
    ) -> dict[str, Any]:
        """
        Extract an archive into a directory.

        Args:
            archive_path: Archive to read
            destination_path: Directory to extract into (created if missing)
            format: zip, tar, tar.gz or tgz (default: from extension)
            filter_paths: Only extract members equal to or below these paths
            strip_components: Leading path components to drop from member names
            overwrite: Replace existing files

        Returns:
            Success or error item
        """
        try:
            if isinstance(strip_components, bool) or not isinstance(strip_components, int) or strip_components < 0:
                raise InvalidParameterError("'strip_components' must be a non-negative integer")

            try:
                archive = self.validator.validate(archive_path, ResolutionIntent.READ)
            except PathValidationError as e:
                if e.kind is FailureKind.NOT_FOUND:
                    raise ArchiveError(
                        ErrorCode.ARCHIVE_NOT_FOUND, f"Archive not found: {archive_path}"
                    )
                raise
            fmt = detect_archive_format(archive, format)
            destination = self.writer.validate_for_output(destination_path)

            if os.path.lexists(destination) and not os.path.isdir(destination):
                raise FileSystemError(
                    ErrorCode.FS_PATH_IS_FILE,
                    f"Destination is not a directory: {destination_path}",
                )

            try:
                if fmt == "zip":
                    count = self._extract_zip(
                        archive, destination, filter_paths, strip_components, overwrite
                    )
                else:
                    count = self._extract_tar(
                        archive, destination, filter_paths, strip_components, overwrite
                    )
            except (tarfile.TarError, zipfile.BadZipFile) as e:
                raise ArchiveError(
                    ErrorCode.ARCHIVE_EXTRACTION_FAILED, f"Failed to read archive: {e}"
                )
            except OSError as e:
                raise from_os_error(e, ErrorCode.ARCHIVE_EXTRACTION_FAILED, destination_path)

            logger.info(f"Extracted {count} files from {archive} to {destination}")
            return {
                "status": "success",
                "action_performed": "unarchive",
                "archive_path": archive,
                "destination_path": destination,
                "format_used": fmt,
                "files_extracted_count": count,
            }
        except (FileSystemError, PathValidationError) as e:
            logger.warning(f"unarchive failed for {archive_path}: {e}")
            return error_item(
                e,
                action_performed="unarchive",
                archive_path=archive_path,
                destination_path=destination_path,
            )
        except Exception as e:
            return error_item(
                e,
                action_performed="unarchive",
                archive_path=archive_path,
                destination_path=destination_path,
            )

    def _extract_zip(
        self,
        archive: str,
        destination: str,
        filter_paths: Optional[list[str]],
        strip_components: int,
        overwrite: bool,
    ) -> int:
        with zipfile.ZipFile(archive) as zf:
            plan = []
            for info in zf.infolist():
                kind = "dir" if info.is_dir() else "file"
                planned = self._plan(info.filename, kind, info, destination, filter_paths, strip_components)
                if planned:
                    plan.append(planned)
            self._check_overwrite(plan, overwrite)

            os.makedirs(destination, exist_ok=True)
            count = 0
            for item in plan:
                if item.kind == "dir":
                    self._make_dirs(item.target, item, destination)
                    continue
                self._make_dirs(os.path.dirname(item.target), item, destination)
                if os.path.lexists(item.target):
                    os.remove(item.target)
                with zf.open(item.member) as src, open(item.target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                count += 1
            return count

    def _extract_tar(
        self,
        archive: str,
        destination: str,
        filter_paths: Optional[list[str]],
        strip_components: int,
        overwrite: bool,
    ) -> int:
        with tarfile.open(archive, "r:*") as tf:
            plan = []
            for member in tf.getmembers():
                if member.isdir():
                    kind = "dir"
                elif member.isfile():
                    kind = "file"
                elif member.issym():
                    kind = "symlink"
                elif member.islnk():
                    kind = "hardlink"
                else:
                    logger.warning(f"Skipping special archive member: {member.name}")
                    continue
                planned = self._plan(member.name, kind, member, destination, filter_paths, strip_components)
                if planned:
                    plan.append(planned)
            self._check_links(plan, destination, strip_components)
            self._check_overwrite(plan, overwrite)

            os.makedirs(destination, exist_ok=True)
            count = 0
            for item in plan:
                if item.kind == "dir":
                    self._make_dirs(item.target, item, destination)
                    continue
                self._make_dirs(os.path.dirname(item.target), item, destination)
                if os.path.lexists(item.target):
                    os.remove(item.target)
                if item.kind == "symlink":
                    os.symlink(item.link_target, item.target)
                elif item.kind == "hardlink":
                    # copyfile follows links, so the source must really live inside
                    self._check_inside(item.link_target, item, destination)
                    shutil.copyfile(item.link_target, item.target)
                else:
                    src = tf.extractfile(item.member)
                    with src, open(item.target, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                    os.chmod(item.target, item.member.mode & 0o755 | 0o600)
                count += 1
            return count

    @staticmethod
    def _plan(
        name: str,
        kind: str,
        member: Any,
        destination: str,
        filter_paths: Optional[list[str]],
        strip_components: int,
    ) -> Optional[_PlannedMember]:
        """Map a member to its target path, or None if it is filtered out."""
        original = name
        name = name.replace("\\", "/")
        if name.startswith("/") or (len(name) > 1 and name[1] == ":"):
            raise ArchivePathError(original, destination)

        parts = [p for p in name.split("/") if p not in ("", ".")]
        if ".." in parts:
            raise ArchivePathError(original, destination)

        if filter_paths:
            joined = "/".join(parts)
            wanted = [f.strip("/") for f in filter_paths if f.strip("/")]
            if not any(joined == f or joined.startswith(f + "/") for f in wanted):
                return None

        parts = parts[strip_components:]
        if not parts:
            return None

        target = os.path.normpath(os.path.join(destination, *parts))
        if not (target + os.sep).startswith(destination.rstrip(os.sep) + os.sep):
            raise ArchivePathError(original, destination)

        link_target = getattr(member, "linkname", None) or None
        return _PlannedMember(name=original, target=target, kind=kind, member=member, link_target=link_target)

    @staticmethod
    def _check_links(plan: list[_PlannedMember], destination: str, strip_components: int) -> None:
        """Reject links that would point outside the destination."""
        root = destination.rstrip(os.sep) + os.sep
        for item in plan:
            if item.kind == "symlink":
                link = item.link_target or ""
                if os.path.isabs(link):
                    raise ArchivePathError(item.name, destination)
                resolved = os.path.normpath(os.path.join(os.path.dirname(item.target), link))
                if not (resolved + os.sep).startswith(root):
                    raise ArchivePathError(item.name, destination)
            elif item.kind == "hardlink":
                parts = [p for p in (item.link_target or "").split("/") if p not in ("", ".")]
                if not parts or ".." in parts or len(parts) <= strip_components:
                    raise ArchivePathError(item.name, destination)
                resolved = os.path.normpath(os.path.join(destination, *parts[strip_components:]))
                if not resolved.startswith(root):
                    raise ArchivePathError(item.name, destination)
                item.link_target = resolved

    @staticmethod
    def _check_overwrite(plan: list[_PlannedMember], overwrite: bool) -> None:
        if overwrite:
            return
        for item in plan:
            if item.kind != "dir" and os.path.lexists(item.target):
                raise FileSystemError(
                    ErrorCode.FS_DESTINATION_EXISTS,
                    f"File already exists: {item.target} (set overwrite=true)",
                )

    @classmethod
    def _make_dirs(cls, path: str, item: _PlannedMember, destination: str) -> None:
        """Create ``path`` without letting an existing symlink redirect it."""
        cls._check_inside(path, item, destination)
        os.makedirs(path, exist_ok=True)
        cls._check_inside(path, item, destination)

    @staticmethod
    def _check_inside(path: str, item: _PlannedMember, destination: str) -> None:
        """The nearest existing component of ``path`` must resolve under the destination."""
        existing = path
        while not os.path.lexists(existing):
            parent = os.path.dirname(existing)
            if parent == existing:
                break
            existing = parent
        real_root = os.path.realpath(destination)
        real_path = os.path.realpath(existing)
        if real_path != real_root and not real_path.startswith(real_root + os.sep):
            raise ArchivePathError(item.name, destination)
