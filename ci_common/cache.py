"""
Abstract interface for the optional local build cache.

The cache only remembers the last successful fetch per project so that a
fresh invocation can show stale data while the provider is unreachable.
"""

from abc import ABC, abstractmethod

from .models import BuildRecord


class BuildCache(ABC):
    """Abstract base class for build cache storage."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create the underlying storage if it does not exist yet."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release any open connection."""
        pass

    @abstractmethod
    async def save_records(self, project: str, records: list[BuildRecord]) -> None:
        """
        Replace the cached records for a project.

        Args:
            project: Tracked project ref
            records: Records from the latest successful fetch
        """
        pass

    @abstractmethod
    async def load_records(self, project: str) -> list[BuildRecord]:
        """
        Load the cached records for a project.

        Args:
            project: Tracked project ref

        Returns:
            Cached records, empty if the project was never cached
        """
        pass
