"""
CI Common module.

This module contains the shared status model, error taxonomy, resolved
configuration and cache interface used across the dashboard components
(provider clients, persistence, dashboard core).

The common module has no dependencies on other ci_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .cache import BuildCache
from .config import GroupingKey, GroupOrder, ProjectRef, ProviderKind, StatusConfig
from .errors import (
    CIStatusError,
    ConfigurationError,
    NormalizationAnomaly,
    ProviderRejected,
    ProviderUnavailable,
)
from .models import BuildRecord, BuildStatus, DashboardSnapshot, PipelineGroup

__all__ = [
    "BuildCache",
    "BuildRecord",
    "BuildStatus",
    "CIStatusError",
    "ConfigurationError",
    "DashboardSnapshot",
    "GroupOrder",
    "GroupingKey",
    "NormalizationAnomaly",
    "PipelineGroup",
    "ProjectRef",
    "ProviderKind",
    "ProviderRejected",
    "ProviderUnavailable",
    "StatusConfig",
]
