"""
SQLite implementation of the local build cache.

Uses aiosqlite for async operations. Only the records from the latest
successful fetch of each project are kept; nothing accumulates across
invocations.
"""

import json
from datetime import UTC, datetime

import aiosqlite

from ci_common.cache import BuildCache
from ci_common.models import BuildRecord


class SQLiteBuildCache(BuildCache):
    """
    SQLite-based build cache.

    Uses a single table:
    - builds: one row per (project, build id) holding the serialized record
    """

    def __init__(self, db_path: str = "ci_status_cache.db"):
        """
        Initialize the SQLite cache.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path)
        return self._connection

    async def initialize(self) -> None:
        """
        Create the cache table if it doesn't exist.

        Schema:
        - builds table: project, build id, position in the provider response,
          serialized record and the time it was cached
        """
        conn = await self._get_connection()

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS builds (
                project TEXT NOT NULL,
                id TEXT NOT NULL,
                position INTEGER NOT NULL,
                record TEXT NOT NULL,
                cached_at TEXT NOT NULL,
                PRIMARY KEY (project, id)
            )
        """)

        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def save_records(self, project: str, records: list[BuildRecord]) -> None:
        """
        Replace the cached records for a project.

        Args:
            project: Tracked project ref
            records: Records from the latest successful fetch
        """
        conn = await self._get_connection()
        cached_at = datetime.now(UTC).isoformat()

        await conn.execute("DELETE FROM builds WHERE project = ?", (project,))
        # Duplicate ids in one response keep the last occurrence
        await conn.executemany(
            """
            INSERT OR REPLACE INTO builds (project, id, position, record, cached_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (project, record.id, position, json.dumps(record.to_dict()), cached_at)
                for position, record in enumerate(records)
            ],
        )
        await conn.commit()

    async def load_records(self, project: str) -> list[BuildRecord]:
        """
        Load the cached records for a project.

        Args:
            project: Tracked project ref

        Returns:
            Cached records in the order they were saved
        """
        conn = await self._get_connection()

        cursor = await conn.execute(
            "SELECT record FROM builds WHERE project = ? ORDER BY position",
            (project,),
        )
        rows = await cursor.fetchall()
        return [BuildRecord.from_dict(json.loads(row[0])) for row in rows]
