"""
Conduit: a sandboxed filesystem tool server for LLM agents.

Every path an agent supplies is resolved and authorized by
``conduit_fs.security.PathValidator`` before any filesystem call is made.
"""

__version__ = "0.1.0"
