"""
Unit tests for the ci-status command line.

The provider HTTP layer is mocked at requests.get so every test runs the
real config -> client -> orchestrator -> renderer path.
"""

import json
import subprocess
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import requests
from click.testing import CliRunner

from ci_common.errors import ConfigurationError
from ci_dashboard.cli import EXIT_FAILURE, EXIT_INTERNAL_ERROR, EXIT_OK, main, status
from ci_dashboard.git_branches import list_local_branches


def circleci_build(build_num, branch, status, minutes_ago):
    started = datetime.now(UTC) - timedelta(minutes=minutes_ago)
    return {
        "build_num": build_num,
        "branch": branch,
        "vcs_revision": "abc1234def",
        "status": status,
        "start_time": started.isoformat(),
        "stop_time": (started + timedelta(minutes=2)).isoformat(),
        "build_url": f"https://circleci.com/gh/octo/api/{build_num}",
    }


BUILDS = [
    circleci_build(14, "feature-x", "failed", 5),
    circleci_build(13, "main", "success", 10),
    circleci_build(12, "main", "failed", 60),
]


def mock_response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else []
    return response


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def env(tmp_path):
    """Environment with a token and a config file location that does not exist."""
    return {
        "CI_STATUS_CONFIG": str(tmp_path / "config"),
        "CI_STATUS_TOKEN": "secret",
        "CI_STATUS_PROJECTS": None,
        "CI_STATUS_PROVIDER": None,
        "CI_STATUS_INTERVAL": None,
        "CI_STATUS_CACHE": None,
        "CIRCLECI_TOKEN": None,
    }


class TestOneShot:
    """One-shot invocations and their exit codes."""

    @patch("ci_provider.client.requests.get")
    def test_renders_dashboard(self, mock_get, runner, env):
        mock_get.return_value = mock_response(payload=BUILDS)

        result = runner.invoke(status, ["octo/api", "--no-color"], env=env)

        assert result.exit_code == EXIT_OK
        assert "CI status at" in result.output
        assert "✓ main" in result.output
        assert "✗ feature-x" in result.output
        assert "1 failing" in result.output

    @patch("ci_provider.client.requests.get")
    def test_failing_builds_do_not_fail_the_tool(self, mock_get, runner, env):
        mock_get.return_value = mock_response(payload=[circleci_build(1, "main", "failed", 3)])

        result = runner.invoke(status, ["octo/api"], env=env)
        assert result.exit_code == EXIT_OK

    @patch("ci_provider.client.requests.get")
    def test_token_and_options_reach_the_request(self, mock_get, runner, env):
        mock_get.return_value = mock_response(payload=BUILDS)

        result = runner.invoke(
            status,
            ["octo/api@main", "--token", "cli-token", "--fetch-size", "20"],
            env=env,
        )

        assert result.exit_code == EXIT_OK
        args, kwargs = mock_get.call_args
        assert args[0] == "https://circleci.com/api/v1.1/project/gh/octo/api/tree/main"
        assert kwargs["headers"]["Circle-Token"] == "cli-token"
        assert kwargs["params"]["limit"] == 20
        assert "feature-x" not in result.output

    @patch("ci_provider.client.requests.get")
    def test_json_output(self, mock_get, runner, env):
        mock_get.return_value = mock_response(payload=BUILDS)

        result = runner.invoke(status, ["octo/api", "--json"], env=env)

        assert result.exit_code == EXIT_OK
        data = json.loads(result.stdout)
        assert [group["name"] for group in data["groups"]] == ["feature-x", "main"]
        assert data["summary"]["failing"] == 1
        assert data["summary"]["passing"] == 1

    @patch("ci_provider.client.requests.get")
    def test_github_provider(self, mock_get, runner, env):
        mock_get.return_value = mock_response(payload={"workflow_runs": []})

        result = runner.invoke(status, ["octo/api", "--provider", "github"], env=env)

        assert result.exit_code == EXIT_OK
        assert "No builds found." in result.output
        args, kwargs = mock_get.call_args
        assert args[0] == "https://api.github.com/repos/octo/api/actions/runs"
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    @patch("ci_provider.client.requests.get")
    def test_projects_from_config_file(self, mock_get, runner, env, tmp_path):
        (tmp_path / "config").write_text("projects=octo/api\ntoken=file-token\n")
        env["CI_STATUS_TOKEN"] = None
        mock_get.return_value = mock_response(payload=BUILDS)

        result = runner.invoke(status, [], env=env)

        assert result.exit_code == EXIT_OK
        _, kwargs = mock_get.call_args
        assert kwargs["headers"]["Circle-Token"] == "file-token"


class TestProviderFailures:
    """Provider failures are reported without tracebacks."""

    @patch("ci_provider.client.requests.get")
    def test_unauthorized_exits_with_failure(self, mock_get, runner, env):
        """An invalid token renders nothing and exits 1 with a token hint."""
        mock_get.return_value = mock_response(status_code=401)

        result = runner.invoke(status, ["octo/api"], env=env)

        assert result.exit_code == EXIT_FAILURE
        assert "CI status at" not in result.output
        assert "provider rejected the request: HTTP 401" in result.output
        assert "Check the token" in result.output

    @patch("ci_provider.client.requests.get")
    def test_unknown_project_exits_with_failure(self, mock_get, runner, env):
        mock_get.return_value = mock_response(status_code=404)

        result = runner.invoke(status, ["octo/missing"], env=env)

        assert result.exit_code == EXIT_FAILURE
        assert "HTTP 404" in result.output
        assert "Check the token" not in result.output

    @patch("ci_provider.client.requests.get")
    def test_unavailable_provider_still_renders(self, mock_get, runner, env):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")

        result = runner.invoke(status, ["octo/api"], env=env)

        assert result.exit_code == EXIT_OK
        assert "? octo/api" in result.output
        assert "! octo/api: provider unavailable: could not connect" in result.output

    @patch("ci_provider.client.requests.get")
    def test_internal_error(self, mock_get, runner, env):
        mock_get.side_effect = RuntimeError("boom")

        result = runner.invoke(status, ["octo/api"], env=env)

        assert result.exit_code == EXIT_INTERNAL_ERROR
        assert "Error: internal error: boom" in result.output

    @patch("ci_provider.client.requests.get")
    def test_cache_shows_last_good_data(self, mock_get, runner, env, tmp_path):
        cache = str(tmp_path / "cache.db")
        mock_get.return_value = mock_response(payload=BUILDS)
        first = runner.invoke(status, ["octo/api", "--cache", cache], env=env)
        assert first.exit_code == EXIT_OK

        mock_get.side_effect = requests.exceptions.Timeout("read timed out")
        second = runner.invoke(status, ["octo/api", "--cache", cache], env=env)

        assert second.exit_code == EXIT_OK
        assert "✓ main" in second.output
        assert "[stale: request timed out after 10s]" in second.output


class TestConfigurationErrors:
    """Invalid configuration exits 1 before any request is made."""

    @pytest.mark.parametrize(
        "args,message",
        [
            ([], "No projects to track"),
            (["not-a-project"], "Invalid project selector"),
            (["octo/api", "octo/api@main"], "only be selected once"),
            (["octo/api", "--interval", "0"], "Interval must be positive"),
            (["octo/api", "--limit", "0"], "History depth must be between 1 and 100"),
            (["octo/api", "--fetch-size", "500"], "Fetch size must be between 1 and 100"),
            (["octo/api", "--stale-after", "0"], "--stale-after must be at least 1"),
            (["octo/api", "--json", "--watch"], "--json cannot be combined"),
            (["octo/api", "a/b/c/d"], "Invalid CircleCI project"),
        ],
    )
    @patch("ci_provider.client.requests.get")
    def test_invalid_configuration(self, mock_get, args, message, runner, env):
        result = runner.invoke(status, args, env=env)

        assert result.exit_code == EXIT_FAILURE
        assert message in result.output
        mock_get.assert_not_called()

    def test_missing_token(self, runner, env):
        env["CI_STATUS_TOKEN"] = None

        result = runner.invoke(status, ["octo/api"], env=env)

        assert result.exit_code == EXIT_FAILURE
        assert "Missing circleci token" in result.output
        assert "CIRCLECI_TOKEN" in result.output

    def test_usage_error_exits_with_failure(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["ci-status", "--no-such-option"])

        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == EXIT_FAILURE


class TestLocalBranches:
    """--local-branches limits the dashboard to branches in the local repository."""

    @patch("ci_dashboard.cli.list_local_branches")
    @patch("ci_provider.client.requests.get")
    def test_filters_to_local_branches(self, mock_get, mock_branches, runner, env):
        mock_get.return_value = mock_response(payload=BUILDS)
        mock_branches.return_value = frozenset({"feature-x"})

        result = runner.invoke(status, ["octo/api", "--local-branches"], env=env)

        assert result.exit_code == EXIT_OK
        assert "✗ feature-x" in result.output
        assert "✓ main" not in result.output

    @patch("ci_dashboard.git_branches.subprocess.run")
    def test_lists_branches(self, mock_run):
        mock_run.return_value = Mock(stdout="main\nfeature-x\n\n")

        assert list_local_branches(Path("/repo")) == frozenset({"main", "feature-x"})
        args, kwargs = mock_run.call_args
        assert args[0][:2] == ["git", "for-each-ref"]
        assert kwargs["cwd"] == Path("/repo")

    @patch("ci_dashboard.git_branches.subprocess.run")
    def test_outside_repository(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(
            128, ["git"], stderr="fatal: not a git repository"
        )

        with pytest.raises(ConfigurationError, match="not inside a git repository"):
            list_local_branches(Path("/tmp"))

    @patch("ci_dashboard.git_branches.subprocess.run")
    def test_git_missing(self, mock_run):
        mock_run.side_effect = FileNotFoundError("git")

        with pytest.raises(ConfigurationError, match="requires git"):
            list_local_branches(Path("/repo"))
