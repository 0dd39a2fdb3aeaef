"""
Conduit server configuration.

Settings are read once at startup from ``CONDUIT_*`` environment
variables (or a YAML/JSON file) and are immutable afterwards.
"""

import json
from pathlib import Path
from typing import Literal, Union

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from conduit_fs.security.allowed_paths import DEFAULT_ALLOWED_PATHS

ChecksumAlgorithm = Literal["md5", "sha1", "sha256", "sha512"]

SUPPORTED_CHECKSUM_ALGORITHMS: tuple[str, ...] = ("md5", "sha1", "sha256", "sha512")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConduitSettings(BaseSettings):
    """
    Server settings.

    Example:
        ```python
        # From the environment (CONDUIT_ALLOWED_PATHS, CONDUIT_WORKSPACE_ROOT, ...)
        settings = ConduitSettings()

        # Explicit values
        settings = ConduitSettings(
            allowed_paths="~/projects:/tmp",
            allow_tilde_expansion=False,
        )

        # From a file
        settings = ConduitSettings.from_file("~/.conduit/config.yaml")
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUIT_",
        extra="forbid",
        frozen=True,
    )

    allowed_paths: str = Field(
        default=DEFAULT_ALLOWED_PATHS,
        description="Colon-separated list of directories inside which access is allowed",
    )
    workspace_root: Path = Field(
        default_factory=Path.cwd,
        description="Directory relative paths are resolved against",
    )
    allow_tilde_expansion: bool = Field(
        default=True,
        description="Expand a leading ~ in caller paths (reject such paths if False)",
    )
    strict_write_check: bool = Field(
        default=True,
        description="Also authorize the symlink-resolved form of existing components on write",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    http_timeout_ms: int = Field(
        default=30_000,
        ge=1,
        description="Timeout for URL fetches (milliseconds)",
    )
    max_file_read_bytes: int = Field(
        default=52_428_800,  # 50 MB
        ge=0,
        description="Maximum file size returned by read content",
    )
    max_file_read_bytes_find: int = Field(
        default=524_288,  # 512 KB
        ge=0,
        description="Maximum bytes read per file during find content search",
    )
    max_url_download_size_bytes: int = Field(
        default=20_971_520,  # 20 MB
        ge=0,
        description="Maximum response body size for URL fetches",
    )
    default_checksum_algorithm: ChecksumAlgorithm = Field(
        default="sha256",
        description="Checksum algorithm used when none is requested",
    )
    max_recursive_depth: int = Field(
        default=10,
        ge=0,
        description="Upper bound for recursive list and find",
    )
    recursive_size_timeout_ms: int = Field(
        default=60_000,
        ge=1,
        description="Time budget for recursive directory size calculation (milliseconds)",
    )

    @field_validator("workspace_root", mode="after")
    @classmethod
    def resolve_workspace_root(cls, v: Path) -> Path:
        """Make the workspace root absolute."""
        return v.expanduser().absolute()

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept level names case-insensitively; WARN is an alias."""
        level = str(v).strip().upper()
        if level == "WARN":
            level = "WARNING"
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level

    @property
    def allowed_paths_explicit(self) -> bool:
        """True if the allowed-path list was configured rather than defaulted."""
        return "allowed_paths" in self.model_fields_set

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ConduitSettings":
        """
        Load settings from a YAML or JSON file.

        File format (YAML):
            ```yaml
            allowed_paths: "~/projects:/tmp"
            workspace_root: ~/projects
            allow_tilde_expansion: true
            max_recursive_depth: 5
            ```

        Args:
            path: Path to the settings file

        Returns:
            Loaded ConduitSettings instance

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        path = Path(path).expanduser().resolve()

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        content = path.read_text()

        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)

        return cls(**(data or {}))

    def summary(self) -> dict:
        """Active configuration as plain values."""
        return {
            "ALLOWED_PATHS": self.allowed_paths,
            "WORKSPACE_ROOT": str(self.workspace_root),
            "ALLOW_TILDE_EXPANSION": self.allow_tilde_expansion,
            "STRICT_WRITE_CHECK": self.strict_write_check,
            "LOG_LEVEL": self.log_level,
            "HTTP_TIMEOUT_MS": self.http_timeout_ms,
            "MAX_FILE_READ_BYTES": self.max_file_read_bytes,
            "MAX_FILE_READ_BYTES_FIND": self.max_file_read_bytes_find,
            "MAX_URL_DOWNLOAD_SIZE_BYTES": self.max_url_download_size_bytes,
            "DEFAULT_CHECKSUM_ALGORITHM": self.default_checksum_algorithm,
            "MAX_RECURSIVE_DEPTH": self.max_recursive_depth,
            "RECURSIVE_SIZE_TIMEOUT_MS": self.recursive_size_timeout_ms,
        }

    def __repr__(self) -> str:
        return (
            f"ConduitSettings(allowed_paths={self.allowed_paths!r}, "
            f"workspace_root={str(self.workspace_root)!r})"
        )
