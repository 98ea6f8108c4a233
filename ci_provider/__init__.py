"""
CI Provider module.

HTTP clients that fetch raw build records from CI providers. The clients
only read from the provider and know nothing about how builds are
normalized or displayed.
"""

from .client import (
    CircleCIClient,
    GitHubActionsClient,
    GitLabClient,
    ProviderClient,
    create_client,
)

__all__ = [
    "CircleCIClient",
    "GitHubActionsClient",
    "GitLabClient",
    "ProviderClient",
    "create_client",
]
