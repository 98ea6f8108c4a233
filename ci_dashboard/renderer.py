"""
Terminal renderer for dashboard snapshots.

render() is a pure function of the snapshot: relative ages are measured
against snapshot.generated_at, so rendering the same snapshot twice yields
identical text.

Color scheme (only with color=True)
-----------------------------------
- green     : passed
- red       : failed
- bold red  : errored
- blue      : running
- magenta   : pending
- dim       : cancelled
- yellow    : stale / unknown
"""

from datetime import UTC, datetime
from typing import Any

import click

from ci_common.models import BuildRecord, BuildStatus, DashboardSnapshot, PipelineGroup

STATUS_GLYPHS: dict[BuildStatus, str] = {
    BuildStatus.PASSED: "✓",
    BuildStatus.FAILED: "✗",
    BuildStatus.ERRORED: "!",
    BuildStatus.CANCELLED: "⊘",
    BuildStatus.RUNNING: "●",
    BuildStatus.PENDING: "…",
}

STATUS_STYLES: dict[BuildStatus, dict[str, Any]] = {
    BuildStatus.PASSED: {"fg": "green"},
    BuildStatus.FAILED: {"fg": "red"},
    BuildStatus.ERRORED: {"fg": "red", "bold": True},
    BuildStatus.CANCELLED: {"dim": True},
    BuildStatus.RUNNING: {"fg": "blue"},
    BuildStatus.PENDING: {"fg": "magenta"},
}

UNKNOWN_GLYPH = "?"
STALE_STYLE: dict[str, Any] = {"fg": "yellow"}
LABEL_WIDTH = 9
COMMIT_WIDTH = 7
AGE_WIDTH = 8


def _style(text: str, style: dict[str, Any], color: bool) -> str:
    return click.style(text, **style) if color else text


def format_age(started_at: datetime | None, now: datetime) -> str:
    """Format how long ago a build started, e.g. "42s ago" or "3h ago"."""
    if started_at is None:
        return "-"
    seconds = max(0, int((now - started_at).total_seconds()))
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def format_trend(history: tuple[BuildRecord, ...]) -> str:
    """One glyph per build, oldest on the left."""
    return "".join(STATUS_GLYPHS[record.status] for record in reversed(history))


def _render_group(
    group: PipelineGroup, name_width: int, now: datetime, color: bool, show_trend: bool
) -> str:
    latest = group.latest
    name = group.name.ljust(name_width)

    if latest is None:
        glyph = _style(UNKNOWN_GLYPH, STALE_STYLE, color)
        label = _style("unknown".ljust(LABEL_WIDTH), STALE_STYLE, color)
        line = f"{glyph} {name}  {label}  {'-':<{COMMIT_WIDTH}}  {'-':>{AGE_WIDTH}}"
        if group.error:
            line += "  " + _style(f"[{group.error}]", STALE_STYLE, color)
        return line

    style = STATUS_STYLES[latest.status]
    glyph = _style(STATUS_GLYPHS[latest.status], style, color)
    label = _style(latest.status.value.ljust(LABEL_WIDTH), style, color)
    commit = (latest.commit or "-").ljust(COMMIT_WIDTH)
    age = format_age(latest.started_at, now).rjust(AGE_WIDTH)
    line = f"{glyph} {name}  {label}  {commit}  {age}"

    if latest.status in (BuildStatus.FAILED, BuildStatus.ERRORED) and latest.id:
        line += f"  #{latest.id}"
    if latest.diagnostic:
        line += f"  ({latest.diagnostic})"
    if show_trend and len(group.history) > 1:
        line += f"  {format_trend(group.history)}"
    if group.stale:
        marker = f"[stale: {group.error}]" if group.error else "[stale]"
        line += "  " + _style(marker, STALE_STYLE, color)
    return line


def _pluralize(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def render_summary(snapshot: DashboardSnapshot) -> str:
    """Overall health line, e.g. "3 pipelines: 2 passing, 1 failing"."""
    parts = [
        f"{snapshot.passing_count} passing",
        f"{snapshot.failing_count} failing",
    ]
    errored = sum(1 for group in snapshot.groups if group.status == BuildStatus.ERRORED)
    if errored:
        parts.append(f"{errored} errored")
    if snapshot.running_count:
        parts.append(f"{snapshot.running_count} in progress")
    if snapshot.stale_count:
        parts.append(f"{snapshot.stale_count} stale")
    return f"{_pluralize(len(snapshot.groups), 'pipeline')}: {', '.join(parts)}"


def render(snapshot: DashboardSnapshot, color: bool = False, show_trend: bool = True) -> str:
    """
    Format a snapshot for the terminal.

    Args:
        snapshot: Snapshot to render
        color: Add ANSI colors
        show_trend: Append the recent pass/fail trend to each group

    Returns:
        The rendered dashboard, without a trailing newline
    """
    generated_at = snapshot.generated_at.astimezone(UTC)
    lines = [f"CI status at {generated_at.strftime('%Y-%m-%d %H:%M:%S')} UTC", ""]

    if snapshot.groups:
        name_width = max(len(group.name) for group in snapshot.groups)
        for group in snapshot.groups:
            lines.append(_render_group(group, name_width, generated_at, color, show_trend))
        lines.append("")
        lines.append(render_summary(snapshot))
    else:
        lines.append("No builds found.")

    for error in snapshot.errors:
        lines.append(_style(f"! {error}", STALE_STYLE, color))
    for notice in snapshot.notices:
        lines.append(f"* {notice}")

    return "\n".join(lines)
