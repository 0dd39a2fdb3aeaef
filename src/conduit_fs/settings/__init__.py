"""
Settings for the conduit filesystem server.

Example:
    ```python
    from conduit_fs.settings import ConduitSettings

    settings = ConduitSettings()          # CONDUIT_* environment variables
    print(settings.allowed_paths)
    ```
"""

from conduit_fs.settings.config import (
    SUPPORTED_CHECKSUM_ALGORITHMS,
    ChecksumAlgorithm,
    ConduitSettings,
)

__all__ = [
    "ConduitSettings",
    "ChecksumAlgorithm",
    "SUPPORTED_CHECKSUM_ALGORITHMS",
]
