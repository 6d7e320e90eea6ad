"""Dependency graph construction and deletion ordering.

Edges point from a dependent resource to the resource it requires
("instance depends on volume"). A resource may only be deleted once nothing
that depends on it remains, so deletion order runs dependents first.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Optional

from cloudguard.exceptions import DependencyCycleError, PlanRejectedError
from cloudguard.models.operation import DeletionPlan
from cloudguard.models.resource import ResourceId
from cloudguard.provider.base import ResourceProvider

if TYPE_CHECKING:
    from cloudguard.recovery.coordinator import RecoveryCoordinator

logger = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2


@dataclass
class DependencyGraph:
    """Directed "dependsOn" graph rooted at the resource being evaluated.

    Attributes:
        root: Resource the graph was built from
        nodes: Resource identities keyed by resource key
        edges: Dependent key -> keys of the resources it depends on
        visited: Keys whose dependents were successfully queried
        provider_calls: Number of dependents queries issued while building
    """

    root: ResourceId
    nodes: dict[str, ResourceId] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)
    visited: set[str] = field(default_factory=set)
    provider_calls: int = 0

    def __post_init__(self) -> None:
        self.add_node(self.root)

    def add_node(self, resource: ResourceId) -> None:
        self.nodes.setdefault(resource.key, resource)

    def add_dependency(self, dependent: ResourceId, dependency: ResourceId) -> None:
        """Record that dependent requires dependency to exist. Duplicates are ignored."""
        self.add_node(dependent)
        self.add_node(dependency)
        requires = self.edges.setdefault(dependent.key, [])
        if dependency.key not in requires:
            requires.append(dependency.key)

    def mark_visited(self, resource: ResourceId) -> None:
        self.add_node(resource)
        self.visited.add(resource.key)

    def dependencies_of(self, resource: ResourceId) -> list[ResourceId]:
        return [self.nodes[k] for k in self.edges.get(resource.key, [])]

    def dependents_of(self, resource: ResourceId) -> list[ResourceId]:
        return sorted(self.nodes[k] for k, requires in self.edges.items() if resource.key in requires)

    def dangling_edges(self) -> list[tuple[str, str]]:
        """Edges with an endpoint whose dependents were never queried."""
        return sorted(
            (dependent, dependency)
            for dependent, requires in self.edges.items()
            for dependency in requires
            if dependent not in self.visited or dependency not in self.visited
        )

    def has_cycle(self) -> bool:
        return detect_cycle(self) is not None

    def deletion_order(self, keys: Optional[Iterable[str]] = None) -> list[ResourceId]:
        """Order resources so every dependent is deleted before what it requires.

        Uses Kahn's algorithm over the subgraph induced by keys; ties are
        broken by resource key so the order is deterministic.

        Args:
            keys: Resource keys to order (default: every node)

        Returns:
            Resources in safe deletion order

        Raises:
            DependencyCycleError: If the subgraph contains a cycle
        """
        return [resource for tier in self._tiers(keys) for resource in tier]

    def deletion_tiers(self, keys: Optional[Iterable[str]] = None) -> dict[int, list[ResourceId]]:
        """Group resources into tiers; tier 1 has no remaining dependents.

        Resources in the same tier can be deleted in any order.

        Raises:
            DependencyCycleError: If the subgraph contains a cycle
        """
        return {index: tier for index, tier in enumerate(self._tiers(keys), start=1)}

    def _tiers(self, keys: Optional[Iterable[str]]) -> list[list[ResourceId]]:
        selected = set(self.nodes if keys is None else keys)
        unknown = selected - set(self.nodes)
        if unknown:
            raise ValueError(f"Unknown resources: {', '.join(sorted(unknown))}")

        # Number of selected resources still requiring each resource
        remaining_dependents = {key: 0 for key in selected}
        for dependent in selected:
            for dependency in self.edges.get(dependent, []):
                if dependency in selected:
                    remaining_dependents[dependency] += 1

        tiers = []
        ready = sorted(k for k, count in remaining_dependents.items() if count == 0)
        placed = 0
        while ready:
            tiers.append([self.nodes[k] for k in ready])
            placed += len(ready)
            next_ready = []
            for key in ready:
                for dependency in self.edges.get(key, []):
                    if dependency not in selected:
                        continue
                    remaining_dependents[dependency] -= 1
                    if remaining_dependents[dependency] == 0:
                        next_ready.append(dependency)
            ready = sorted(next_ready)

        if placed < len(selected):
            cycle = detect_cycle(self)
            if cycle is None:
                leftover = sorted(k for k, count in remaining_dependents.items() if count > 0)
                cycle = [self.nodes[k] for k in leftover]
            raise DependencyCycleError(cycle)

        return tiers


def detect_cycle(graph: DependencyGraph) -> Optional[list[ResourceId]]:
    """Find a dependency cycle.

    Iterative depth-first search with an explicit recursion stack. Reaching a
    node that is still on the stack closes a cycle; a node that was already
    fully explored is skipped.

    Args:
        graph: Graph to check

    Returns:
        Resources forming the cycle in edge order, or None if the graph is acyclic
    """
    color: dict[str, int] = {}

    for start in sorted(graph.nodes):
        if color.get(start, _WHITE) != _WHITE:
            continue

        color[start] = _GREY
        path = [start]
        stack = [iter(sorted(graph.edges.get(start, [])))]

        while stack:
            for child in stack[-1]:
                state = color.get(child, _WHITE)
                if state == _GREY:
                    return [graph.nodes[k] for k in path[path.index(child) :]]
                if state == _WHITE:
                    color[child] = _GREY
                    path.append(child)
                    stack.append(iter(sorted(graph.edges.get(child, []))))
                    break
            else:
                color[path.pop()] = _BLACK
                stack.pop()

    return None


class DependencyGraphBuilder:
    """Builds dependency graphs by querying a resource provider.

    Attributes:
        provider: Resource provider to query
        coordinator: Recovery coordinator used to retry transient query failures (optional)
    """

    def __init__(self, provider: ResourceProvider, coordinator: Optional[RecoveryCoordinator] = None) -> None:
        self.provider = provider
        self.coordinator = coordinator

    def build(self, root: ResourceId) -> DependencyGraph:
        """Discover everything that transitively depends on root.

        Works breadth-first from an explicit queue. A resource is marked as
        queued before it is expanded, and the mark is checked before any
        remote query, so each resource is queried exactly once even when the
        provider reports a cycle.

        Args:
            root: Resource to start from

        Returns:
            Graph with every discovered resource visited

        Raises:
            ValueError: If the root identity is invalid
            ProviderError: If a query fails (without a coordinator)
            OperationFailedError: If a query fails after recovery (with a coordinator)
        """
        root.validate()
        graph = DependencyGraph(root=root)
        queue = deque([root])
        queued = {root.key}

        while queue:
            node = queue.popleft()
            dependents = self._query(node)
            graph.provider_calls += 1
            graph.mark_visited(node)

            for dependent in dependents:
                graph.add_dependency(dependent=dependent, dependency=node)
                if dependent.key not in queued:
                    queued.add(dependent.key)
                    queue.append(dependent)

        logger.debug(
            f"Dependency graph for {root.key}: {len(graph.nodes)} node(s), "
            f"{sum(len(v) for v in graph.edges.values())} edge(s), {graph.provider_calls} query(ies)"
        )
        return graph

    def _query(self, resource: ResourceId) -> list[ResourceId]:
        if self.coordinator is None:
            return self.provider.dependents_of(resource)
        return self.coordinator.run(
            lambda: self.provider.dependents_of(resource),
            context=f"list dependents of {resource.key}",
            resource=resource,
        )


def plan_deletion(graph: DependencyGraph, cascade: bool = False) -> DeletionPlan:
    """Evaluate whether the graph root can be deleted.

    A plan is unsafe if the graph has dangling edges or a cycle, or, without
    cascade, if anything still depends on the root. Targets are only filled
    in when the graph is complete and acyclic.

    Args:
        graph: Graph built from the resource to delete
        cascade: Delete dependents too, dependents first

    Returns:
        DeletionPlan describing targets and blockers
    """
    plan = DeletionPlan(root=graph.root, cascade=cascade)
    plan.dangling = graph.dangling_edges()
    plan.cycle = detect_cycle(graph)
    plan.blocking_dependents = graph.dependents_of(graph.root)

    if plan.cycle is None and not plan.dangling:
        plan.targets = graph.deletion_order() if cascade else [graph.root]

    return plan


def authorize_deletion(graph: DependencyGraph, root: ResourceId, cascade: bool = False) -> list[ResourceId]:
    """Apply the deletion policy and return the resources to delete.

    Args:
        graph: Graph built from root
        root: Resource requested for deletion
        cascade: Delete dependents too

    Returns:
        Targets in deletion order (dependents first)

    Raises:
        DependencyCycleError: If the graph contains a cycle
        PlanRejectedError: If the graph is incomplete, or dependents exist without cascade
    """
    if root.key != graph.root.key:
        raise ValueError(f"Graph was built for {graph.root.key}, not {root.key}")

    dangling = graph.dangling_edges()
    if dangling:
        raise PlanRejectedError(
            root,
            [],
            reason=f"dependency graph is incomplete ({len(dangling)} unresolved edge(s))",
        )

    cycle = detect_cycle(graph)
    if cycle is not None:
        raise DependencyCycleError(cycle)

    dependents = graph.dependents_of(root)
    if dependents and not cascade:
        raise PlanRejectedError(root, dependents)

    return graph.deletion_order() if cascade else [root]
