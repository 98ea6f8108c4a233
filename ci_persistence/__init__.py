"""
CI Persistence module.

This module contains the optional local build cache. Currently supports
SQLite, but other backends only need to implement ci_common.BuildCache.

The persistence layer depends on ci_common for domain models and interfaces.
"""

from .sqlite_cache import SQLiteBuildCache

__all__ = ["SQLiteBuildCache"]
