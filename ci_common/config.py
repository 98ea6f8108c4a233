"""
Resolved configuration for the CI status dashboard.

StatusConfig is immutable and passed explicitly into the orchestrator.
load_config() resolves each setting from multiple sources in priority order:

1. Command line argument
2. Environment variable
3. Config file (~/.ci-status/config, or the path in CI_STATUS_CONFIG)

Config file format (one setting per line, '#' starts a comment):
    provider=github
    token=ghp_abc123...
    projects=octo/api@main octo/web
    interval=30
"""

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

MIN_LIMIT = 1
MAX_LIMIT = 100
DEFAULT_HISTORY_DEPTH = 5
DEFAULT_FETCH_SIZE = 50
DEFAULT_INTERVAL = 30.0
DEFAULT_TIMEOUT = 10.0


class ProviderKind(str, Enum):
    CIRCLECI = "circleci"
    GITHUB = "github"
    GITLAB = "gitlab"


class GroupingKey(str, Enum):
    """What builds are grouped by on the dashboard."""

    BRANCH = "branch"
    PIPELINE = "pipeline"
    PROJECT_BRANCH = "project-branch"


class GroupOrder(str, Enum):
    """Display order of pipeline groups."""

    ALPHABETICAL = "alphabetical"  # Sorted by group name
    FIRST_SEEN = "first-seen"  # Order in which the provider reported them


DEFAULT_BASE_URLS: dict[ProviderKind, str] = {
    ProviderKind.CIRCLECI: "https://circleci.com",
    ProviderKind.GITHUB: "https://api.github.com",
    ProviderKind.GITLAB: "https://gitlab.com",
}

# Provider-specific token variables, checked after CI_STATUS_TOKEN
TOKEN_ENV_VARS: dict[ProviderKind, str] = {
    ProviderKind.CIRCLECI: "CIRCLECI_TOKEN",
    ProviderKind.GITHUB: "GITHUB_TOKEN",
    ProviderKind.GITLAB: "GITLAB_TOKEN",
}

_PROJECT_SLUG = re.compile(r"^[A-Za-z0-9._-]+(/[A-Za-z0-9._-]+)+$")


@dataclass(frozen=True)
class ProjectRef:
    """A tracked project and, optionally, the branches to show for it."""

    slug: str
    branches: tuple[str, ...] = ()  # Empty means every branch

    def tracks(self, branch: str) -> bool:
        return not self.branches or branch in self.branches

    def __str__(self) -> str:
        if self.branches:
            return f"{self.slug}@{','.join(self.branches)}"
        return self.slug


def parse_project_ref(selector: str) -> ProjectRef:
    """
    Parse a project selector of the form PROJECT[@BRANCH[,BRANCH...]].

    Args:
        selector: e.g. "octo/api", "gh/octo/api@main,develop"

    Returns:
        ProjectRef for the selector

    Raises:
        ConfigurationError: If the selector is malformed
    """
    slug, sep, branch_part = selector.strip().partition("@")
    if not _PROJECT_SLUG.match(slug):
        raise ConfigurationError(
            f"Invalid project selector '{selector}': expected OWNER/REPO[@BRANCH,...]"
        )
    branches = tuple(b.strip() for b in branch_part.split(",") if b.strip())
    if sep and not branches:
        raise ConfigurationError(f"Invalid project selector '{selector}': empty branch list")
    return ProjectRef(slug=slug, branches=branches)


def check_project_slug(slug: str, provider: ProviderKind) -> None:
    """
    Check that a project slug has the shape the provider's API expects.

    CircleCI takes [VCS/]ORG/REPO, GitHub OWNER/REPO and GitLab any
    group path.

    Raises:
        ConfigurationError: If the slug cannot address a project
    """
    depth = slug.count("/")
    if provider == ProviderKind.CIRCLECI and depth not in (1, 2):
        raise ConfigurationError(f"Invalid CircleCI project '{slug}': expected [VCS/]ORG/REPO")
    if provider == ProviderKind.GITHUB and depth != 1:
        raise ConfigurationError(f"Invalid GitHub project '{slug}': expected OWNER/REPO")


@dataclass(frozen=True)
class StatusConfig:
    """Fully resolved, validated dashboard configuration."""

    provider: ProviderKind
    base_url: str
    token: str
    projects: tuple[ProjectRef, ...]
    interval: float | None = None  # None runs a single cycle
    history_depth: int = DEFAULT_HISTORY_DEPTH
    fetch_size: int = DEFAULT_FETCH_SIZE
    grouping_key: GroupingKey = GroupingKey.BRANCH
    group_order: GroupOrder = GroupOrder.ALPHABETICAL
    stale_after_failures: int | None = None  # None keeps stale data forever
    cache_path: str | None = None
    request_timeout: float = DEFAULT_TIMEOUT
    show_trend: bool = True
    color: bool = False
    branch_allowlist: frozenset[str] | None = None  # Restricts every project

    @property
    def watch(self) -> bool:
        return self.interval is not None

    def tracks(self, project: str, branch: str) -> bool:
        """Whether a build on this project/branch belongs on the dashboard."""
        if self.branch_allowlist is not None and branch not in self.branch_allowlist:
            return False
        for ref in self.projects:
            if ref.slug == project:
                return ref.tracks(branch)
        return False


def get_config_path(environ: Mapping[str, str]) -> Path:
    """Get the config file path from environment variable or use default."""
    custom = environ.get("CI_STATUS_CONFIG")
    if custom:
        return Path(custom)
    return Path.home() / ".ci-status" / "config"


def read_config_file(path: Path) -> dict[str, str]:
    """
    Read key=value settings from a config file.

    A missing file yields no settings. An unreadable file is logged and
    treated the same way.
    """
    if not path.exists():
        return {}
    try:
        content = path.read_text()
    except OSError as e:
        logger.warning(f"Could not read config file {path}: {e}")
        return {}

    settings: dict[str, str] = {}
    for line_number, line in enumerate(content.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            logger.warning(f"Ignoring malformed line {line_number} in {path}")
            continue
        settings[key.strip()] = value.strip()
    return settings


def _check_limit(name: str, value: int) -> int:
    if not MIN_LIMIT <= value <= MAX_LIMIT:
        raise ConfigurationError(f"{name} must be between {MIN_LIMIT} and {MAX_LIMIT}, got {value}")
    return value


def _parse_interval(raw: str | float, source: str) -> float:
    try:
        interval = float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid interval from {source}: {raw!r}")
    if interval <= 0:
        raise ConfigurationError(f"Interval must be positive, got {interval} from {source}")
    return interval


def load_config(
    projects: tuple[str, ...] = (),
    provider: str | None = None,
    base_url: str | None = None,
    token: str | None = None,
    watch: bool = False,
    interval: float | None = None,
    history_depth: int = DEFAULT_HISTORY_DEPTH,
    fetch_size: int = DEFAULT_FETCH_SIZE,
    grouping_key: str | None = None,
    group_order: str = GroupOrder.ALPHABETICAL.value,
    stale_after_failures: int | None = None,
    cache_path: str | None = None,
    show_trend: bool = True,
    color: bool = False,
    environ: Mapping[str, str] | None = None,
) -> StatusConfig:
    """
    Resolve a StatusConfig from command line values, environment and config file.

    Args:
        projects: Project selectors from the command line
        provider: Provider kind name
        watch: Whether to keep refreshing; implied by an explicit interval
        interval: Seconds between refreshes in watch mode
        grouping_key: Grouping key name; defaults to branch for a single
            project and project-branch for several
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If a required setting is missing or invalid
    """
    env = os.environ if environ is None else environ
    file_settings = read_config_file(get_config_path(env))

    # Provider
    provider_name = (
        provider
        or env.get("CI_STATUS_PROVIDER")
        or file_settings.get("provider")
        or ProviderKind.CIRCLECI.value
    )
    try:
        provider_kind = ProviderKind(provider_name.lower())
    except ValueError:
        choices = ", ".join(kind.value for kind in ProviderKind)
        raise ConfigurationError(f"Unknown provider '{provider_name}' (expected one of: {choices})")

    # Projects
    selectors: list[str] = list(projects)
    if not selectors:
        raw_projects = env.get("CI_STATUS_PROJECTS") or file_settings.get("projects") or ""
        selectors = [s for s in re.split(r"[\s,]+", raw_projects) if s]
    if not selectors:
        raise ConfigurationError(
            "No projects to track. Pass PROJECT arguments, set CI_STATUS_PROJECTS "
            "or add 'projects=' to the config file"
        )
    refs = tuple(parse_project_ref(s) for s in selectors)
    slugs = [ref.slug for ref in refs]
    if len(set(slugs)) != len(slugs):
        raise ConfigurationError("Each project may only be selected once")
    for slug in slugs:
        check_project_slug(slug, provider_kind)

    # Credentials
    resolved_token = (
        token
        or env.get("CI_STATUS_TOKEN")
        or env.get(TOKEN_ENV_VARS[provider_kind])
        or file_settings.get("token")
    )
    if not resolved_token:
        raise ConfigurationError(
            f"Missing {provider_kind.value} token. Provide one using one of:\n"
            "  1. Command line flag: --token <token>\n"
            f"  2. Environment variable: CI_STATUS_TOKEN or {TOKEN_ENV_VARS[provider_kind]}\n"
            "  3. Config file: ~/.ci-status/config (format: token=<token>)"
        )

    resolved_base_url = (
        base_url
        or env.get("CI_STATUS_BASE_URL")
        or file_settings.get("base_url")
        or DEFAULT_BASE_URLS[provider_kind]
    ).rstrip("/")

    # Refresh interval
    resolved_interval: float | None = None
    if interval is not None:
        resolved_interval = _parse_interval(interval, "--interval")
    elif watch:
        if env.get("CI_STATUS_INTERVAL"):
            resolved_interval = _parse_interval(env["CI_STATUS_INTERVAL"], "CI_STATUS_INTERVAL")
        elif file_settings.get("interval"):
            resolved_interval = _parse_interval(file_settings["interval"], "config file")
        else:
            resolved_interval = DEFAULT_INTERVAL

    if grouping_key is None:
        key = GroupingKey.BRANCH if len(refs) == 1 else GroupingKey.PROJECT_BRANCH
    else:
        key = GroupingKey(grouping_key)

    if stale_after_failures is not None and stale_after_failures < 1:
        raise ConfigurationError(f"--stale-after must be at least 1, got {stale_after_failures}")

    return StatusConfig(
        provider=provider_kind,
        base_url=resolved_base_url,
        token=resolved_token,
        projects=refs,
        interval=resolved_interval,
        history_depth=_check_limit("History depth", history_depth),
        fetch_size=_check_limit("Fetch size", fetch_size),
        grouping_key=key,
        group_order=GroupOrder(group_order),
        stale_after_failures=stale_after_failures,
        cache_path=cache_path or env.get("CI_STATUS_CACHE") or file_settings.get("cache"),
        show_trend=show_trend,
        color=color,
    )
