"""
Unit tests for ci_provider.client module.

Tests request construction per provider and the mapping of transport
failures to ProviderUnavailable / ProviderRejected.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from ci_common.config import ProjectRef, ProviderKind, StatusConfig
from ci_common.errors import ConfigurationError, ProviderRejected, ProviderUnavailable
from ci_provider.client import (
    CircleCIClient,
    GitHubActionsClient,
    GitLabClient,
    create_client,
)


def mock_response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else []
    return response


class TestCircleCIClient:
    """Test suite for CircleCIClient."""

    @patch("ci_provider.client.requests.get")
    def test_fetches_project_builds(self, mock_get):
        """Test the project endpoint, token header and limit."""
        builds = [{"build_num": 12, "branch": "main", "status": "success"}]
        mock_get.return_value = mock_response(payload=builds)

        client = CircleCIClient("https://circleci.example/", "secret", timeout=5)
        result = client.fetch_recent_builds(ProjectRef(slug="octo/api"), limit=25)

        assert result == builds
        args, kwargs = mock_get.call_args
        assert args[0] == "https://circleci.example/api/v1.1/project/gh/octo/api"
        assert kwargs["params"]["limit"] == 25
        assert kwargs["headers"]["Circle-Token"] == "secret"
        assert kwargs["timeout"] == 5

    @patch("ci_provider.client.requests.get")
    def test_single_branch_uses_tree_endpoint(self, mock_get):
        mock_get.return_value = mock_response()

        client = CircleCIClient("https://circleci.com", "secret")
        client.fetch_recent_builds(ProjectRef(slug="bb/octo/api", branches=("feature/x",)), 10)

        args, _ = mock_get.call_args
        assert args[0] == "https://circleci.com/api/v1.1/project/bb/octo/api/tree/feature%2Fx"

    def test_invalid_project_slug(self):
        client = CircleCIClient("https://circleci.com", "secret")
        with pytest.raises(ConfigurationError, match="Invalid CircleCI project"):
            client.fetch_recent_builds(ProjectRef(slug="a/b/c/d"), 10)


class TestGitHubActionsClient:
    """Test suite for GitHubActionsClient."""

    @patch("ci_provider.client.requests.get")
    def test_unwraps_workflow_runs(self, mock_get):
        runs = [{"id": 1, "head_branch": "main"}]
        mock_get.return_value = mock_response(payload={"total_count": 1, "workflow_runs": runs})

        client = GitHubActionsClient("https://api.github.com", "ghp_123")
        result = client.fetch_recent_builds(ProjectRef(slug="octo/api", branches=("main",)), 30)

        assert result == runs
        args, kwargs = mock_get.call_args
        assert args[0] == "https://api.github.com/repos/octo/api/actions/runs"
        assert kwargs["params"] == {"per_page": 30, "branch": "main"}
        assert kwargs["headers"]["Authorization"] == "Bearer ghp_123"

    @patch("ci_provider.client.requests.get")
    def test_several_branches_are_not_filtered_server_side(self, mock_get):
        mock_get.return_value = mock_response(payload={"workflow_runs": []})

        client = GitHubActionsClient("https://api.github.com", "ghp_123")
        client.fetch_recent_builds(ProjectRef(slug="octo/api", branches=("main", "dev")), 30)

        _, kwargs = mock_get.call_args
        assert "branch" not in kwargs["params"]

    @patch("ci_provider.client.requests.get")
    def test_unexpected_payload(self, mock_get):
        mock_get.return_value = mock_response(payload={"message": "huh"})

        client = GitHubActionsClient("https://api.github.com", "ghp_123")
        with pytest.raises(ProviderUnavailable, match="unexpected response format"):
            client.fetch_recent_builds(ProjectRef(slug="octo/api"), 30)


class TestGitLabClient:
    """Test suite for GitLabClient."""

    @patch("ci_provider.client.requests.get")
    def test_encodes_project_path(self, mock_get):
        mock_get.return_value = mock_response(payload=[{"id": 5}])

        client = GitLabClient("https://gitlab.com", "glpat")
        result = client.fetch_recent_builds(ProjectRef(slug="group/sub/api"), 20)

        assert result == [{"id": 5}]
        args, kwargs = mock_get.call_args
        assert args[0] == "https://gitlab.com/api/v4/projects/group%2Fsub%2Fapi/pipelines"
        assert kwargs["params"]["per_page"] == 20
        assert kwargs["headers"] == {"PRIVATE-TOKEN": "glpat"}


class TestErrorMapping:
    """Transport failures map to the dashboard's error taxonomy."""

    @pytest.fixture
    def client(self):
        return CircleCIClient("https://circleci.com", "secret", timeout=3)

    @pytest.fixture
    def project(self):
        return ProjectRef(slug="octo/api")

    @patch("ci_provider.client.requests.get")
    def test_timeout_is_unavailable(self, mock_get, client, project):
        mock_get.side_effect = requests.exceptions.Timeout("read timed out")

        with pytest.raises(ProviderUnavailable, match="timed out after 3s") as exc_info:
            client.fetch_recent_builds(project, 10)
        assert exc_info.value.project == "octo/api"

    @patch("ci_provider.client.requests.get")
    def test_connection_error_is_unavailable(self, mock_get, client, project):
        mock_get.side_effect = requests.exceptions.ConnectionError("Connection refused")

        with pytest.raises(ProviderUnavailable, match="could not connect"):
            client.fetch_recent_builds(project, 10)

    @pytest.mark.parametrize("status_code", [500, 502, 503, 429])
    @patch("ci_provider.client.requests.get")
    def test_server_errors_are_unavailable(self, mock_get, status_code, client, project):
        mock_get.return_value = mock_response(status_code=status_code)

        with pytest.raises(ProviderUnavailable, match=f"HTTP {status_code}"):
            client.fetch_recent_builds(project, 10)

    @pytest.mark.parametrize("status_code", [401, 403, 404])
    @patch("ci_provider.client.requests.get")
    def test_auth_errors_are_rejected(self, mock_get, status_code, client, project):
        mock_get.return_value = mock_response(status_code=status_code)

        with pytest.raises(ProviderRejected) as exc_info:
            client.fetch_recent_builds(project, 10)
        assert exc_info.value.status_code == status_code

    @patch("ci_provider.client.requests.get")
    def test_invalid_json_is_unavailable(self, mock_get, client, project):
        response = mock_response()
        response.json.side_effect = ValueError("Expecting value")
        mock_get.return_value = response

        with pytest.raises(ProviderUnavailable, match="not valid JSON"):
            client.fetch_recent_builds(project, 10)

    @pytest.mark.parametrize("limit", [0, 101])
    def test_limit_out_of_range(self, limit, client, project):
        with pytest.raises(ValueError, match="limit must be between 1 and 100"):
            client.fetch_recent_builds(project, limit)


class TestCreateClient:
    """Test suite for create_client function."""

    @pytest.mark.parametrize(
        "kind,expected",
        [
            (ProviderKind.CIRCLECI, CircleCIClient),
            (ProviderKind.GITHUB, GitHubActionsClient),
            (ProviderKind.GITLAB, GitLabClient),
        ],
    )
    def test_client_per_provider(self, kind, expected):
        config = StatusConfig(
            provider=kind,
            base_url="https://ci.example",
            token="t",
            projects=(ProjectRef(slug="octo/api"),),
            request_timeout=7,
        )
        client = create_client(config)

        assert isinstance(client, expected)
        assert client.base_url == "https://ci.example"
        assert client.timeout == 7
