"""
Aggregator: groups normalized builds into pipeline groups.

Within a group builds are ordered newest first by start time, and
identical start times are broken by provider id, highest first. Builds
that have not started yet sort ahead of every started build. The result
does not depend on the order the builds were passed in.
"""

from collections.abc import Iterable
from datetime import UTC, datetime

from ci_common.config import DEFAULT_HISTORY_DEPTH, GroupingKey, GroupOrder
from ci_common.models import BuildRecord, DashboardSnapshot, PipelineGroup

NO_BRANCH = "(no branch)"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def group_name(record: BuildRecord, grouping_key: GroupingKey) -> str:
    """Name of the group a build belongs to."""
    branch = record.branch or NO_BRANCH
    if grouping_key == GroupingKey.PIPELINE:
        return record.pipeline or branch
    if grouping_key == GroupingKey.PROJECT_BRANCH and record.project:
        return f"{record.project}/{branch}"
    return branch


def _id_key(build_id: str) -> tuple[int, int, str]:
    if build_id.isdigit():
        return (1, int(build_id), "")
    return (0, 0, build_id)


def recency_key(record: BuildRecord) -> tuple:
    """Sort key placing the most recent build last (sort with reverse=True)."""
    return (
        record.started_at is None,
        record.started_at or _EPOCH,
        _id_key(record.id),
        record.project,
    )


def aggregate(
    records: Iterable[BuildRecord],
    grouping_key: GroupingKey = GroupingKey.BRANCH,
    history_depth: int = DEFAULT_HISTORY_DEPTH,
    order: GroupOrder = GroupOrder.ALPHABETICAL,
) -> list[PipelineGroup]:
    """
    Group builds and keep the most recent ones per group.

    Args:
        records: Normalized builds, in provider order
        grouping_key: What builds are grouped by
        history_depth: Maximum number of builds kept per group
        order: ALPHABETICAL sorts groups by name; FIRST_SEEN keeps the order
            in which each group's first build appears in records

    Returns:
        Pipeline groups in display order
    """
    if history_depth < 1:
        raise ValueError(f"history_depth must be at least 1, got {history_depth}")

    buckets: dict[str, dict[tuple[str, str], BuildRecord]] = {}
    for record in records:
        bucket = buckets.setdefault(group_name(record, grouping_key), {})
        # Ids are unique per project only. A provider may repeat a build
        # across pages; the first copy wins
        bucket.setdefault((record.project, record.id), record)

    names = list(buckets)
    if order == GroupOrder.ALPHABETICAL:
        names.sort()

    groups = []
    for name in names:
        history = sorted(buckets[name].values(), key=recency_key, reverse=True)
        groups.append(PipelineGroup(name=name, history=tuple(history[:history_depth])))
    return groups


def diff_groups(
    previous: DashboardSnapshot | None, current: Iterable[PipelineGroup]
) -> tuple[list[str], list[str]]:
    """
    Compare group names against the previous snapshot.

    Returns:
        (appeared, removed) group names, each in display order. Both are
        empty when there is no previous snapshot.
    """
    if previous is None:
        return [], []
    before = previous.group_names()
    after = [group.name for group in current]
    appeared = [name for name in after if name not in before]
    removed = [name for name in before if name not in after]
    return appeared, removed
