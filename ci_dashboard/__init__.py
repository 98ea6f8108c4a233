"""
CI Dashboard module.

This module contains the status pipeline: the normalizer mapping provider
records to BuildRecords, the aggregator grouping them per branch or
pipeline, the terminal renderer, and the orchestrator that drives the
refresh loop. The CLI in ci_dashboard.cli wires them to a provider client.
"""

from .aggregator import aggregate, diff_groups
from .normalizer import normalize, normalize_all
from .orchestrator import OrchestratorState, StatusOrchestrator
from .renderer import render

__all__ = [
    "OrchestratorState",
    "StatusOrchestrator",
    "aggregate",
    "diff_groups",
    "normalize",
    "normalize_all",
    "render",
]
