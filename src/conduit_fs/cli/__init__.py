"""
CLI module for conduit-fs.

Provides the command-line interface for validating paths, inspecting
configuration and serving the filesystem tools.
"""

from conduit_fs.cli.main import cli

__all__ = ["cli"]
