"""Dependency-aware resource deletion.

This module deletes resources only when nothing still depends on them, or
deletes dependents first when cascading.

Classes:
    DeletionCoordinator: Main orchestrator for deletion operations
    DependencyGraphBuilder: Dependency graph construction
    DependencyGraph: Cycle detection and deletion ordering
"""

from __future__ import annotations

from .coordinator import DeletionCoordinator
from .dependency import DependencyGraph, DependencyGraphBuilder, authorize_deletion, detect_cycle, plan_deletion

__all__ = [
    "DeletionCoordinator",
    "DependencyGraph",
    "DependencyGraphBuilder",
    "authorize_deletion",
    "detect_cycle",
    "plan_deletion",
]
