"""
Status normalizer: maps provider build records onto BuildRecord.

Every provider has a closed lookup table from its status vocabulary to
BuildStatus. Unknown statuses, and records whose timestamps contradict
their status, become ERRORED builds carrying a diagnostic; they are never
dropped and never abort the refresh.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable

from ci_common.config import ProviderKind
from ci_common.errors import NormalizationAnomaly
from ci_common.models import BuildRecord, BuildStatus

logger = logging.getLogger(__name__)

COMMIT_LENGTH = 7

STATUS_TABLES: dict[ProviderKind, dict[str, BuildStatus]] = {
    ProviderKind.CIRCLECI: {
        "success": BuildStatus.PASSED,
        "fixed": BuildStatus.PASSED,
        "no_tests": BuildStatus.PASSED,
        "failed": BuildStatus.FAILED,
        "timedout": BuildStatus.FAILED,
        "infrastructure_fail": BuildStatus.ERRORED,
        "canceled": BuildStatus.CANCELLED,
        "not_run": BuildStatus.CANCELLED,
        "retried": BuildStatus.CANCELLED,
        "running": BuildStatus.RUNNING,
        "queued": BuildStatus.PENDING,
        "scheduled": BuildStatus.PENDING,
        "not_running": BuildStatus.PENDING,
    },
    ProviderKind.GITHUB: {
        # Run status while the run is not completed
        "requested": BuildStatus.PENDING,
        "queued": BuildStatus.PENDING,
        "pending": BuildStatus.PENDING,
        "waiting": BuildStatus.PENDING,
        "in_progress": BuildStatus.RUNNING,
        # Conclusion once it is
        "success": BuildStatus.PASSED,
        "neutral": BuildStatus.PASSED,
        "failure": BuildStatus.FAILED,
        "timed_out": BuildStatus.FAILED,
        "startup_failure": BuildStatus.ERRORED,
        "action_required": BuildStatus.ERRORED,
        "cancelled": BuildStatus.CANCELLED,
        "skipped": BuildStatus.CANCELLED,
        "stale": BuildStatus.CANCELLED,
    },
    ProviderKind.GITLAB: {
        "created": BuildStatus.PENDING,
        "waiting_for_resource": BuildStatus.PENDING,
        "preparing": BuildStatus.PENDING,
        "pending": BuildStatus.PENDING,
        "scheduled": BuildStatus.PENDING,
        "manual": BuildStatus.PENDING,
        "running": BuildStatus.RUNNING,
        "success": BuildStatus.PASSED,
        "failed": BuildStatus.FAILED,
        "canceled": BuildStatus.CANCELLED,
        "skipped": BuildStatus.CANCELLED,
    },
}


@dataclass(frozen=True)
class _RawFields:
    """Provider fields relevant to a BuildRecord, before interpretation."""

    id: str
    branch: str
    commit: str
    status: str | None
    started_at: str | None
    finished_at: str | None
    url: str
    pipeline: str | None


def _text(value: Any) -> str:
    """A string field, or empty when the provider sent something else."""
    return value if isinstance(value, str) else ""


def _circleci_fields(raw: dict[str, Any]) -> _RawFields:
    workflows = raw.get("workflows")
    if not isinstance(workflows, dict):
        workflows = {}
    return _RawFields(
        id=str(raw.get("build_num", "")),
        branch=_text(raw.get("branch")),
        commit=_text(raw.get("vcs_revision")),
        # outcome is null until the build finishes; status is always set
        status=raw.get("status") or raw.get("outcome"),
        started_at=raw.get("start_time"),
        finished_at=raw.get("stop_time"),
        url=_text(raw.get("build_url")),
        pipeline=_text(workflows.get("workflow_name")) or None,
    )


def _github_fields(raw: dict[str, Any]) -> _RawFields:
    completed = raw.get("status") == "completed"
    return _RawFields(
        id=str(raw.get("id", "")),
        branch=_text(raw.get("head_branch")),
        commit=_text(raw.get("head_sha")),
        status=raw.get("conclusion") if completed else raw.get("status"),
        started_at=raw.get("run_started_at") or raw.get("created_at"),
        finished_at=raw.get("updated_at") if completed else None,
        url=_text(raw.get("html_url")),
        pipeline=_text(raw.get("name")) or None,
    )


def _gitlab_fields(raw: dict[str, Any]) -> _RawFields:
    status = raw.get("status")
    finished = status in ("success", "failed", "canceled", "skipped")
    return _RawFields(
        id=str(raw.get("id", "")),
        branch=_text(raw.get("ref")),
        commit=_text(raw.get("sha")),
        status=status,
        started_at=raw.get("started_at") or raw.get("created_at"),
        finished_at=(raw.get("finished_at") or raw.get("updated_at")) if finished else None,
        url=_text(raw.get("web_url")),
        pipeline=_text(raw.get("name")) or None,
    )


_EXTRACTORS: dict[ProviderKind, Callable[[dict[str, Any]], _RawFields]] = {
    ProviderKind.CIRCLECI: _circleci_fields,
    ProviderKind.GITHUB: _github_fields,
    ProviderKind.GITLAB: _gitlab_fields,
}


def _check_tables() -> None:
    """Every provider kind must have a status table and a field extractor."""
    for kind in ProviderKind:
        if kind not in STATUS_TABLES or kind not in _EXTRACTORS:
            raise RuntimeError(f"No status mapping registered for provider '{kind.value}'")


_check_tables()


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise NormalizationAnomaly(None, f"unparseable timestamp {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        raise NormalizationAnomaly(None, f"unparseable timestamp {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def normalize(
    raw: dict[str, Any], provider_kind: ProviderKind | str, project: str = ""
) -> BuildRecord:
    """
    Map one raw provider record to a BuildRecord.

    Args:
        raw: Build record as returned by the provider (not modified)
        provider_kind: Provider the record came from
        project: Tracked project ref the record was fetched for

    Returns:
        A new BuildRecord. Anomalies yield an ERRORED record whose
        diagnostic preserves the original status.
    """
    kind = ProviderKind(provider_kind)
    if not isinstance(raw, dict):
        reason = f"malformed {kind.value} build record of type {type(raw).__name__}"
        logger.warning(f"{project or kind.value}: {reason}")
        return BuildRecord(
            id="",
            branch="",
            commit="",
            status=BuildStatus.ERRORED,
            project=project,
            diagnostic=reason,
        )
    fields = _EXTRACTORS[kind](raw)
    raw_status = fields.status.lower() if isinstance(fields.status, str) else None

    started_at = finished_at = None
    diagnostic = None
    try:
        started_at = _parse_timestamp(fields.started_at)
        finished_at = _parse_timestamp(fields.finished_at)
        status = STATUS_TABLES[kind].get(raw_status) if raw_status else None
        if status is None:
            raise NormalizationAnomaly(
                fields.status, f"unrecognized {kind.value} status {fields.status!r}"
            )
        if status in (BuildStatus.PASSED, BuildStatus.FAILED) and finished_at is None:
            raise NormalizationAnomaly(
                fields.status, f"status {fields.status!r} reported without a finish time"
            )
        if status.is_active and finished_at is not None:
            raise NormalizationAnomaly(
                fields.status, f"status {fields.status!r} reported with a finish time"
            )
    except NormalizationAnomaly as anomaly:
        logger.warning(f"Build {fields.id} of {project or kind.value}: {anomaly.reason}")
        status = BuildStatus.ERRORED
        diagnostic = anomaly.reason

    return BuildRecord(
        id=fields.id,
        branch=fields.branch,
        commit=fields.commit[:COMMIT_LENGTH],
        status=status,
        started_at=started_at,
        finished_at=finished_at,
        url=fields.url,
        project=project,
        pipeline=fields.pipeline,
        raw_status=fields.status if isinstance(fields.status, str) else None,
        diagnostic=diagnostic,
    )


def normalize_all(
    raws: list[dict[str, Any]], provider_kind: ProviderKind | str, project: str = ""
) -> list[BuildRecord]:
    """Normalize every record of one provider response, preserving order."""
    return [normalize(raw, provider_kind, project) for raw in raws]
