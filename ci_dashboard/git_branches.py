"""Local git branch lookup for --local-branches."""

import logging
import subprocess
from pathlib import Path

from ci_common.errors import ConfigurationError

logger = logging.getLogger(__name__)


def list_local_branches(repo_dir: Path) -> frozenset[str]:
    """
    List the local branch names of a git repository.

    Args:
        repo_dir: Any directory inside the repository

    Returns:
        Short names of every local branch

    Raises:
        ConfigurationError: If git is missing or repo_dir is not in a repository
    """
    try:
        result = subprocess.run(
            ["git", "for-each-ref", "--format=%(refname:short)", "refs/heads"],
            cwd=repo_dir,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        raise ConfigurationError("--local-branches requires git to be installed")
    except subprocess.CalledProcessError as e:
        logger.debug(f"git for-each-ref failed: {e.stderr.strip()}")
        raise ConfigurationError(f"--local-branches: {repo_dir} is not inside a git repository")

    branches = frozenset(line.strip() for line in result.stdout.splitlines() if line.strip())
    logger.debug(f"Found {len(branches)} local branches in {repo_dir}")
    return branches
