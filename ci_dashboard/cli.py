"""
Command line front end for the CI status dashboard.

Resolves the configuration, builds the provider client and optional cache,
and hands them to the orchestrator. Exit codes:

    0    dashboard rendered (failed builds are not a tool failure)
    1    provider rejected the credentials, or invalid configuration
    2    unexpected internal error
    130  interrupted outside watch mode
"""

import asyncio
import json
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path

import click

from ci_common.config import (
    DEFAULT_FETCH_SIZE,
    DEFAULT_HISTORY_DEPTH,
    GroupingKey,
    GroupOrder,
    ProviderKind,
    StatusConfig,
    load_config,
)
from ci_common.errors import ConfigurationError, ProviderRejected
from ci_common.models import DashboardSnapshot
from ci_persistence.sqlite_cache import SQLiteBuildCache
from ci_provider.client import ProviderClient, create_client

from .git_branches import list_local_branches
from .orchestrator import StatusOrchestrator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERNAL_ERROR = 2
EXIT_INTERRUPTED = 130


def format_json(snapshot: DashboardSnapshot) -> str:
    return json.dumps(snapshot.to_dict(), indent=2)


def _watch_output(config: StatusConfig):
    """Output function that redraws the whole screen for every snapshot."""

    def output(text: str) -> None:
        click.clear()
        click.echo(text)
        click.echo(f"\nRefreshing every {config.interval:g}s. Press Ctrl+C to stop.")

    return output


async def run_dashboard(
    config: StatusConfig,
    json_output: bool = False,
    client: ProviderClient | None = None,
) -> DashboardSnapshot | None:
    """
    Run the dashboard until its single cycle completes or watch mode is stopped.

    Args:
        config: Resolved configuration
        json_output: Print snapshots as JSON instead of the terminal view
        client: Provider client (default: the client for config.provider)

    Returns:
        The last rendered snapshot
    """
    client = client or create_client(config)

    cache = None
    if config.cache_path:
        cache = SQLiteBuildCache(config.cache_path)
        await cache.initialize()
        logger.debug(f"Using build cache at {config.cache_path}")

    orchestrator = StatusOrchestrator(
        config,
        client,
        cache=cache,
        output=_watch_output(config) if config.watch else click.echo,
        formatter=format_json if json_output else None,
    )

    # In watch mode SIGINT/SIGTERM end the interval wait immediately
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    if config.watch:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, orchestrator.stop)
                installed.append(sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.debug(f"Cannot install handler for {sig.name}: {e}")

    try:
        return await orchestrator.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        if cache is not None:
            await cache.close()


def run(config: StatusConfig, json_output: bool = False) -> int:
    """Run the dashboard and map the outcome to an exit code."""
    try:
        asyncio.run(run_dashboard(config, json_output=json_output))
        return EXIT_OK
    except ProviderRejected as e:
        click.echo(f"Error: {e}", err=True)
        if e.status_code in (401, 403):
            click.echo("\nCheck the token. Provide one using one of:", err=True)
            click.echo("  1. Command line flag: --token <token>", err=True)
            click.echo("  2. Environment variable: CI_STATUS_TOKEN", err=True)
            click.echo("  3. Config file: ~/.ci-status/config (format: token=<token>)", err=True)
        return EXIT_FAILURE
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        click.echo(f"Error: internal error: {e}", err=True)
        return EXIT_INTERNAL_ERROR


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("projects", nargs=-1, metavar="[PROJECT[@BRANCH,...]]...")
@click.option(
    "--provider",
    type=click.Choice([kind.value for kind in ProviderKind]),
    default=None,
    help="CI provider (default: CI_STATUS_PROVIDER env, config file or circleci)",
)
@click.option("--base-url", default=None, help="Provider API base URL")
@click.option(
    "--token",
    "-t",
    default=None,
    help="API token (can also use CI_STATUS_TOKEN, the provider's token env var or ~/.ci-status/config)",
)
@click.option("--watch", "-w", is_flag=True, help="Keep refreshing until interrupted")
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between refreshes; implies --watch (default: CI_STATUS_INTERVAL env or 30)",
)
@click.option(
    "--limit",
    "history_depth",
    type=int,
    default=DEFAULT_HISTORY_DEPTH,
    show_default=True,
    help="Builds kept per pipeline (1-100)",
)
@click.option(
    "--fetch-size",
    type=int,
    default=DEFAULT_FETCH_SIZE,
    show_default=True,
    help="Builds requested per project (1-100)",
)
@click.option(
    "--group-by",
    type=click.Choice([key.value for key in GroupingKey]),
    default=None,
    help="Group builds by branch, pipeline or project-branch "
    "(default: branch for one project, project-branch for several)",
)
@click.option(
    "--order",
    type=click.Choice([order.value for order in GroupOrder]),
    default=GroupOrder.ALPHABETICAL.value,
    show_default=True,
    help="Pipeline display order",
)
@click.option(
    "--stale-after",
    type=int,
    default=None,
    help="Stop showing a project's old data after this many failed refreshes",
)
@click.option(
    "--cache",
    "cache_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="SQLite file caching the last successful fetch",
)
@click.option(
    "--local-branches",
    is_flag=True,
    help="Only show branches that exist in the git repository of the current directory",
)
@click.option("--trend/--no-trend", default=True, help="Show the recent pass/fail trend")
@click.option(
    "--color/--no-color", default=None, help="Colorize output (default: when stdout is a terminal)"
)
@click.option("--json", "json_output", is_flag=True, help="Output the snapshot as JSON")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    default="WARNING",
    show_default=True,
    help="Logging level for diagnostics on stderr",
)
def status(
    projects: tuple[str, ...],
    provider: str | None,
    base_url: str | None,
    token: str | None,
    watch: bool,
    interval: float | None,
    history_depth: int,
    fetch_size: int,
    group_by: str | None,
    order: str,
    stale_after: int | None,
    cache_path: str | None,
    local_branches: bool,
    trend: bool,
    color: bool | None,
    json_output: bool,
    log_level: str,
):
    """
    Show the pass/fail status of recent CI builds.

    PROJECT selects a project to track, optionally restricted to some
    branches: "octo/api", "octo/api@main,develop", "gh/octo/api" (CircleCI)
    or "group/sub/project" (GitLab).
    """
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(
            projects=projects,
            provider=provider,
            base_url=base_url,
            token=token,
            watch=watch,
            interval=interval,
            history_depth=history_depth,
            fetch_size=fetch_size,
            grouping_key=group_by,
            group_order=order,
            stale_after_failures=stale_after,
            cache_path=cache_path,
            show_trend=trend,
            color=sys.stdout.isatty() if color is None else color,
        )
        if json_output and config.watch:
            raise ConfigurationError("--json cannot be combined with --watch or --interval")
        if local_branches:
            config = replace(config, branch_allowlist=list_local_branches(Path.cwd()))
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)

    sys.exit(run(config, json_output=json_output))


def main() -> None:
    """Console script entry point; usage errors count as configuration errors."""
    try:
        status.main(standalone_mode=False)
    except click.exceptions.Abort:
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except click.ClickException as e:
        e.show()
        sys.exit(EXIT_FAILURE)
