"""
Orchestrator driving the fetch -> normalize -> aggregate -> render cycle.

The orchestrator is an explicit state machine:

    IDLE -> FETCHING -> RENDERING -> (IDLE | WAITING_FOR_INTERVAL) -> FETCHING ...

STOPPED is terminal and reachable from every state, either through stop()
or by cancelling the task running run(). One-shot configurations run a
single cycle; watch configurations repeat it every interval until stopped.

Failure handling per project:
- ProviderUnavailable: logged and shown as an error line; the project's last
  successful data is rendered as stale and the loop keeps going
- ProviderRejected: fatal, the orchestrator stops and re-raises
"""

import asyncio
import logging
from datetime import UTC, datetime
from enum import Enum
from functools import partial
from typing import Callable

import click

from ci_common.cache import BuildCache
from ci_common.config import ProjectRef, StatusConfig
from ci_common.errors import ProviderRejected, ProviderUnavailable
from ci_common.models import BuildRecord, DashboardSnapshot, PipelineGroup
from ci_provider.client import ProviderClient

from .aggregator import aggregate, diff_groups
from .normalizer import normalize_all
from .renderer import render

logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RENDERING = "rendering"
    WAITING_FOR_INTERVAL = "waiting_for_interval"
    STOPPED = "stopped"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StatusOrchestrator:
    """
    Runs refresh cycles for the configured projects and publishes snapshots.

    Each cycle builds a new DashboardSnapshot that replaces the previous one.
    The only state carried between cycles is the previous snapshot (read to
    report appeared/removed groups) and, per project, the last successful
    records and the number of consecutive failed fetches.
    """

    def __init__(
        self,
        config: StatusConfig,
        client: ProviderClient,
        cache: BuildCache | None = None,
        output: Callable[[str], None] | None = None,
        formatter: Callable[[DashboardSnapshot], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Resolved configuration
            client: Provider client used for every fetch
            cache: Optional local cache seeding and storing last good data
            output: Receives each formatted snapshot (default: click.echo)
            formatter: Turns a snapshot into text (default: the terminal renderer)
            clock: Returns the current time (default: UTC wall clock)
        """
        self.config = config
        self.client = client
        self.cache = cache
        self.output = output or click.echo
        self.formatter = formatter or partial(
            render, color=config.color, show_trend=config.show_trend
        )
        self.clock = clock or _utcnow

        self.state = OrchestratorState.IDLE
        self.transitions: list[OrchestratorState] = [OrchestratorState.IDLE]
        self.snapshot: DashboardSnapshot | None = None
        self.cycles = 0

        self._last_good: dict[str, list[BuildRecord]] = {}
        self._failures: dict[str, int] = {}
        self._stop_event = asyncio.Event()

    def _set_state(self, state: OrchestratorState) -> None:
        if state == self.state:
            return
        logger.debug(f"Orchestrator state: {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def stop(self) -> None:
        """Request the loop to stop; an interval wait in progress ends at once."""
        if not self._stop_event.is_set():
            logger.info("Stop requested")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> DashboardSnapshot | None:
        """
        Run one cycle, or keep cycling in watch mode until stopped.

        Returns:
            The last published snapshot

        Raises:
            ProviderRejected: If the provider refuses the credentials
        """
        try:
            await self._load_cache()
            while not self._stop_event.is_set():
                await self._fetch_and_render()
                if not self.config.watch:
                    break
                self._set_state(OrchestratorState.WAITING_FOR_INTERVAL)
                await self._wait_for_interval()
        finally:
            self._set_state(OrchestratorState.STOPPED)
        return self.snapshot

    async def run_cycle(self) -> DashboardSnapshot:
        """Run a single fetch/render cycle and return to IDLE."""
        snapshot = await self._fetch_and_render()
        self._set_state(OrchestratorState.IDLE)
        return snapshot

    async def _wait_for_interval(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.interval)
        except asyncio.TimeoutError:
            # Interval elapsed without a stop request
            return

    async def _fetch_and_render(self) -> DashboardSnapshot:
        self._set_state(OrchestratorState.FETCHING)
        projects = self.config.projects
        # Fan out one fetch per project; aggregation waits for all of them
        results = await asyncio.gather(
            *(self._fetch(project) for project in projects), return_exceptions=True
        )

        records: list[BuildRecord] = []
        errors: list[str] = []
        stale: dict[str, str] = {}  # project -> reason

        for project, result in zip(projects, results):
            slug = project.slug
            if isinstance(result, ProviderUnavailable):
                logger.warning(str(result))
                errors.append(str(result))
                stale[slug] = result.reason
                records.extend(self._record_failure(slug))
            elif isinstance(result, ProviderRejected):
                logger.error(str(result))
                self._stop_event.set()
                self._set_state(OrchestratorState.STOPPED)
                raise result
            elif isinstance(result, BaseException):
                raise result
            else:
                self._failures.pop(slug, None)
                self._last_good[slug] = result
                records.extend(result)
                await self._save_cache(slug, result)

        groups = aggregate(
            records,
            grouping_key=self.config.grouping_key,
            history_depth=self.config.history_depth,
            order=self.config.group_order,
        )
        groups = self._mark_stale(groups, stale)

        notices: list[str] = []
        appeared, removed = diff_groups(self.snapshot, groups)
        for name in appeared:
            notices.append(f"New pipeline: {name}")
        for name in removed:
            notices.append(f"Pipeline removed: {name}")
        for notice in notices:
            logger.info(notice)

        snapshot = DashboardSnapshot(
            groups=tuple(groups),
            generated_at=self.clock(),
            errors=tuple(errors),
            notices=tuple(notices),
        )

        self._set_state(OrchestratorState.RENDERING)
        self.output(self.formatter(snapshot))
        self.snapshot = snapshot
        self.cycles += 1
        logger.debug(
            f"Cycle {self.cycles}: {len(groups)} groups, {snapshot.failing_count} failing"
        )
        return snapshot

    async def _fetch(self, project: ProjectRef) -> list[BuildRecord]:
        """Fetch and normalize one project's builds, keeping tracked branches only."""
        raws = await asyncio.to_thread(
            self.client.fetch_recent_builds, project, self.config.fetch_size
        )
        records = normalize_all(raws, self.config.provider, project.slug)
        return [r for r in records if self.config.tracks(project.slug, r.branch)]

    def _record_failure(self, slug: str) -> list[BuildRecord]:
        """Count a failed fetch and return the project's data to show as stale."""
        failures = self._failures.get(slug, 0) + 1
        self._failures[slug] = failures
        limit = self.config.stale_after_failures
        if limit is not None and failures > limit and slug in self._last_good:
            logger.warning(f"{slug}: dropping stale data after {failures} failed refreshes")
            del self._last_good[slug]
        return self._last_good.get(slug, [])

    def _mark_stale(
        self, groups: list[PipelineGroup], stale: dict[str, str]
    ) -> list[PipelineGroup]:
        if not stale:
            return groups

        marked = []
        covered: set[str] = set()
        for group in groups:
            stale_projects = [r.project for r in group.history if r.project in stale]
            if stale_projects:
                covered.update(stale_projects)
                group = group.mark_stale(stale[stale_projects[0]])
            marked.append(group)

        # Projects with nothing to show still get a line saying so
        names = {group.name for group in marked}
        for slug, reason in stale.items():
            if slug in covered:
                continue
            name = slug
            if name in names:
                logger.debug(f"{slug}: a group of that name exists, placeholder renamed")
                name = f"{slug} (unknown)"
            names.add(name)
            marked.append(PipelineGroup(name=name, stale=True, error=reason))
        return marked

    async def _load_cache(self) -> None:
        if self.cache is None:
            return
        for project in self.config.projects:
            try:
                cached = await self.cache.load_records(project.slug)
            except Exception as e:
                logger.warning(f"Could not read cached builds for {project.slug}: {e}")
                continue
            if cached:
                logger.debug(f"Loaded {len(cached)} cached builds for {project.slug}")
                self._last_good.setdefault(project.slug, cached)

    async def _save_cache(self, slug: str, records: list[BuildRecord]) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.save_records(slug, records)
        except Exception as e:
            logger.warning(f"Could not cache builds for {slug}: {e}")
