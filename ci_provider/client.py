"""
HTTP clients for the supported CI providers.

Each client issues one authenticated, read-only GET per tracked project and
returns the provider's raw build records. Transport problems are mapped to
the dashboard's error taxonomy:

- timeouts, connection errors, 5xx/429 and other non-2xx responses, and
  unparseable bodies raise ProviderUnavailable (transient)
- 401/403/404 raise ProviderRejected (credentials, scope, or a project the
  credentials cannot see; retrying will not help)
"""

import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote

import requests

from ci_common.config import (
    DEFAULT_TIMEOUT,
    MAX_LIMIT,
    MIN_LIMIT,
    ProjectRef,
    ProviderKind,
    StatusConfig,
    check_project_slug,
)
from ci_common.errors import ProviderRejected, ProviderUnavailable

logger = logging.getLogger(__name__)

REJECTED_STATUS_CODES = {
    401: "authentication failed, check the token",
    403: "access denied, check the token's permissions",
    404: "project not found or not visible with these credentials",
}


class ProviderClient(ABC):
    """
    Base class for CI provider clients.

    Subclasses describe where a project's recent builds live and how the
    response wraps them; the request and error mapping are shared.
    """

    kind: ProviderKind

    def __init__(self, base_url: str, token: str, timeout: float = DEFAULT_TIMEOUT):
        """
        Initialize the client.

        Args:
            base_url: Provider base URL (no trailing slash)
            token: API token sent with every request
            timeout: Seconds before a request is abandoned
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def fetch_recent_builds(self, project: ProjectRef, limit: int) -> list[dict[str, Any]]:
        """
        Fetch the most recent builds for a project.

        Args:
            project: Tracked project (a single tracked branch narrows the query)
            limit: Maximum number of builds to request (1-100)

        Returns:
            Raw build records as returned by the provider

        Raises:
            ValueError: If limit is out of range
            ProviderUnavailable: On transient transport or server failures
            ProviderRejected: On authentication/authorization failures
        """
        if not MIN_LIMIT <= limit <= MAX_LIMIT:
            raise ValueError(f"limit must be between {MIN_LIMIT} and {MAX_LIMIT}, got {limit}")

        url, params = self._build_request(project, limit)
        logger.debug(f"Fetching up to {limit} builds for {project} from {url}")
        payload = self._get(project.slug, url, params)
        builds = self._extract_builds(payload)
        if not isinstance(builds, list):
            raise ProviderUnavailable(project.slug, "unexpected response format")
        logger.debug(f"Received {len(builds)} builds for {project}")
        return builds

    @abstractmethod
    def _build_request(self, project: ProjectRef, limit: int) -> tuple[str, dict[str, Any]]:
        """Return the URL and query parameters listing a project's builds."""
        pass

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        """Return the authentication headers for a request."""
        pass

    def _extract_builds(self, payload: Any) -> Any:
        """Return the list of build records inside a response body."""
        return payload

    def _get(self, project: str, url: str, params: dict[str, Any]) -> Any:
        try:
            response = requests.get(
                url, params=params, headers=self._headers(), timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            raise ProviderUnavailable(project, f"request timed out after {self.timeout:g}s")
        except requests.exceptions.ConnectionError:
            raise ProviderUnavailable(project, f"could not connect to {self.base_url}")
        except requests.exceptions.RequestException as e:
            raise ProviderUnavailable(project, f"request failed: {e}")

        status_code = response.status_code
        if status_code in REJECTED_STATUS_CODES:
            raise ProviderRejected(
                project, f"HTTP {status_code}: {REJECTED_STATUS_CODES[status_code]}", status_code
            )
        if not 200 <= status_code < 300:
            raise ProviderUnavailable(project, f"HTTP {status_code} from {self.base_url}")

        try:
            return response.json()
        except ValueError:
            raise ProviderUnavailable(project, "response was not valid JSON")


class CircleCIClient(ProviderClient):
    """
    CircleCI v1.1 API client.

    Project refs are VCS slugs like "gh/org/repo" or "bb/org/repo"; a plain
    "org/repo" is assumed to live on GitHub.
    """

    kind = ProviderKind.CIRCLECI

    def _build_request(self, project: ProjectRef, limit: int) -> tuple[str, dict[str, Any]]:
        check_project_slug(project.slug, self.kind)
        parts = project.slug.split("/")
        if len(parts) == 2:
            parts = ["gh", *parts]
        url = f"{self.base_url}/api/v1.1/project/{'/'.join(parts)}"
        if len(project.branches) == 1:
            url += f"/tree/{quote(project.branches[0], safe='')}"
        return url, {"limit": limit, "shallow": "true"}

    def _headers(self) -> dict[str, str]:
        return {"Circle-Token": self.token, "Accept": "application/json"}


class GitHubActionsClient(ProviderClient):
    """GitHub Actions workflow runs client. Project refs are "owner/repo"."""

    kind = ProviderKind.GITHUB

    def _build_request(self, project: ProjectRef, limit: int) -> tuple[str, dict[str, Any]]:
        check_project_slug(project.slug, self.kind)
        params: dict[str, Any] = {"per_page": limit}
        if len(project.branches) == 1:
            params["branch"] = project.branches[0]
        return f"{self.base_url}/repos/{project.slug}/actions/runs", params

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _extract_builds(self, payload: Any) -> Any:
        if isinstance(payload, dict):
            return payload.get("workflow_runs")
        return None


class GitLabClient(ProviderClient):
    """GitLab pipelines client. Project refs are full paths like "group/sub/project"."""

    kind = ProviderKind.GITLAB

    def _build_request(self, project: ProjectRef, limit: int) -> tuple[str, dict[str, Any]]:
        params: dict[str, Any] = {"per_page": limit, "order_by": "id", "sort": "desc"}
        if len(project.branches) == 1:
            params["ref"] = project.branches[0]
        project_id = quote(project.slug, safe="")
        return f"{self.base_url}/api/v4/projects/{project_id}/pipelines", params

    def _headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self.token}


CLIENT_CLASSES: dict[ProviderKind, type[ProviderClient]] = {
    ProviderKind.CIRCLECI: CircleCIClient,
    ProviderKind.GITHUB: GitHubActionsClient,
    ProviderKind.GITLAB: GitLabClient,
}


def create_client(config: StatusConfig) -> ProviderClient:
    """Create the client for the configured provider."""
    client_class = CLIENT_CLASSES[config.provider]
    return client_class(config.base_url, config.token, timeout=config.request_timeout)
