"""
Data models for CI build status.

These models represent the domain objects used throughout the dashboard,
independent of the CI provider they were fetched from. All of them are
immutable: every refresh cycle builds new records and a new snapshot.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class BuildStatus(str, Enum):
    """Uniform build status shared by every provider."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"
    CANCELLED = "cancelled"

    @property
    def is_finished(self) -> bool:
        return self not in (BuildStatus.PENDING, BuildStatus.RUNNING)

    @property
    def is_active(self) -> bool:
        return self in (BuildStatus.PENDING, BuildStatus.RUNNING)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class BuildRecord:
    """
    Represents one CI run as reported by a provider.

    A finished status (passed/failed) always carries finished_at, and an
    active status (pending/running) never does.
    """

    id: str  # Provider-assigned identifier
    branch: str
    commit: str  # Short hash
    status: BuildStatus
    started_at: datetime | None = None
    finished_at: datetime | None = None
    url: str = ""
    project: str = ""  # Tracked project ref the record was fetched for
    pipeline: str | None = None  # Workflow / pipeline name, if reported
    raw_status: str | None = None  # Provider's original status string
    diagnostic: str | None = None  # Set when normalization hit an anomaly

    def __post_init__(self) -> None:
        if self.status in (BuildStatus.PASSED, BuildStatus.FAILED) and self.finished_at is None:
            raise ValueError(f"Build {self.id} is {self.status.value} but has no finish time")
        if self.status.is_active and self.finished_at is not None:
            raise ValueError(f"Build {self.id} is {self.status.value} but has a finish time")

    @property
    def duration_seconds(self) -> float | None:
        """Elapsed seconds between start and finish, if both are known."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert record to dictionary format (for JSON output and the cache)."""
        return {
            "id": self.id,
            "project": self.project,
            "branch": self.branch,
            "pipeline": self.pipeline,
            "commit": self.commit,
            "status": self.status.value,
            "raw_status": self.raw_status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "url": self.url,
            "diagnostic": self.diagnostic,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildRecord":
        """Create record from dictionary format."""
        return cls(
            id=str(data["id"]),
            branch=data["branch"],
            commit=data.get("commit", ""),
            status=BuildStatus(data["status"]),
            started_at=_parse_time(data.get("started_at")),
            finished_at=_parse_time(data.get("finished_at")),
            url=data.get("url", ""),
            project=data.get("project", ""),
            pipeline=data.get("pipeline"),
            raw_status=data.get("raw_status"),
            diagnostic=data.get("diagnostic"),
        )


@dataclass(frozen=True)
class PipelineGroup:
    """
    Latest known state of one branch or named pipeline.

    history is ordered most-recent-first and bounded by the configured
    depth. A group with an empty history has no known data (e.g. its
    project has never been fetched successfully).
    """

    name: str
    history: tuple[BuildRecord, ...] = ()
    stale: bool = False
    error: str | None = None  # Why the group is stale or unknown

    @property
    def latest(self) -> BuildRecord | None:
        return self.history[0] if self.history else None

    @property
    def status(self) -> BuildStatus | None:
        latest = self.latest
        return latest.status if latest else None

    def mark_stale(self, reason: str) -> "PipelineGroup":
        """Return a copy of this group flagged as stale."""
        return PipelineGroup(name=self.name, history=self.history, stale=True, error=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value if self.status else None,
            "stale": self.stale,
            "error": self.error,
            "history": [record.to_dict() for record in self.history],
        }


@dataclass(frozen=True)
class DashboardSnapshot:
    """
    Full dashboard state at one point in time.

    Group order is display order. generated_at is the reference time for
    relative ages so that rendering the same snapshot always yields the
    same text.
    """

    groups: tuple[PipelineGroup, ...]
    generated_at: datetime
    errors: tuple[str, ...] = ()  # Per-project failures for this cycle
    notices: tuple[str, ...] = ()  # Appeared/removed groups

    def __post_init__(self) -> None:
        names = [group.name for group in self.groups]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate pipeline group names: {', '.join(duplicates)}")

    def group_names(self) -> list[str]:
        return [group.name for group in self.groups]

    def _count(self, status: BuildStatus) -> int:
        return sum(1 for group in self.groups if group.status == status)

    @property
    def failing_count(self) -> int:
        return self._count(BuildStatus.FAILED)

    @property
    def passing_count(self) -> int:
        return self._count(BuildStatus.PASSED)

    @property
    def running_count(self) -> int:
        return sum(
            1 for group in self.groups if group.status is not None and group.status.is_active
        )

    @property
    def stale_count(self) -> int:
        return sum(1 for group in self.groups if group.stale)

    def to_dict(self) -> dict[str, Any]:
        """Convert snapshot to dictionary format (for --json output)."""
        return {
            "generated_at": self.generated_at.isoformat(),
            "summary": {
                "pipelines": len(self.groups),
                "passing": self.passing_count,
                "failing": self.failing_count,
                "running": self.running_count,
                "stale": self.stale_count,
            },
            "groups": [group.to_dict() for group in self.groups],
            "errors": list(self.errors),
            "notices": list(self.notices),
        }
