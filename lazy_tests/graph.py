"""Dependency graph utilities.

Builds the workspace dependency graph, works out which packages a change
affects, and orders packages so that when package A depends on package B,
B is tested first.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Set

from pydantic import BaseModel, ConfigDict

from .models import PackageDescriptor

_IN_PROGRESS = 1
_DONE = 2


class DuplicatePackageError(RuntimeError):
    """Two packages claim the same workspace path."""

    def __init__(self, package_id: str) -> None:
        super().__init__(f"Duplicate package id in workspace: {package_id}")
        self.package_id = package_id


class CycleDetected(RuntimeError):
    """The requested packages contain a dependency cycle.

    Attributes:
        cycle: Package ids along the cycle, starting and ending with the
               same id (e.g. ["a", "b", "a"]).
    """

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"Dependency cycle detected: {' → '.join(cycle)}")
        self.cycle = cycle


class DependencyGraph(BaseModel):
    """Read-only dependency graph keyed by package id.

    Attributes:
        nodes: Package id → descriptor, in discovery order.
        name_to_id: Package name → package id.
        deps: Package id → ids of its internal dependencies (forward edges).
        dependents: Package id → ids of packages depending on it.
    """

    model_config = ConfigDict(frozen=True)

    nodes: dict[str, PackageDescriptor]
    name_to_id: dict[str, str]
    deps: dict[str, tuple[str, ...]]
    dependents: dict[str, tuple[str, ...]]


def build_graph(descriptors: Iterable[PackageDescriptor]) -> DependencyGraph:
    """Build the dependency graph from package descriptors.

    Dependency names that don't resolve to a workspace package are dropped;
    they denote external packages.

    Raises:
        DuplicatePackageError: If two descriptors share an id.
    """
    nodes: dict[str, PackageDescriptor] = {}
    name_to_id: dict[str, str] = {}
    for desc in descriptors:
        if desc.id in nodes:
            raise DuplicatePackageError(desc.id)
        nodes[desc.id] = desc
        name_to_id.setdefault(desc.name, desc.id)

    deps: dict[str, tuple[str, ...]] = {}
    dependents: dict[str, list[str]] = {n: [] for n in nodes}
    for package_id, desc in nodes.items():
        resolved: list[str] = []
        for dep_name in desc.declared_dependencies:
            dep_id = name_to_id.get(dep_name)
            if dep_id is not None and dep_id not in resolved:
                resolved.append(dep_id)
                dependents[dep_id].append(package_id)
        deps[package_id] = tuple(resolved)

    return DependencyGraph(
        nodes=nodes,
        name_to_id=name_to_id,
        deps=deps,
        dependents={n: tuple(d) for n, d in dependents.items()},
    )


def compute_affected(
    graph: DependencyGraph,
    changed_files: Iterable[str],
    global_files: Iterable[str] = (),
) -> set[str]:
    """Determine which packages need to be tested after a change.

    A package is affected if:
    1. Any changed file lives under its directory
    2. A global file (root config, lockfile) changed
    3. Any of its dependencies is affected (transitive, via dependents)

    An empty result means nothing needs testing; it never means
    "test everything".

    Args:
        graph: Workspace dependency graph.
        changed_files: Workspace-relative paths of changed files.
        global_files: Files whose change affects every package.

    Returns:
        Set of affected package ids.
    """
    files = {f.removeprefix("./") for f in changed_files}

    if files & set(global_files):
        return set(graph.nodes)

    affected: set[str] = set()
    for package_id in graph.nodes:
        prefix = package_id.rstrip("/") + "/"
        if any(f.startswith(prefix) for f in files):
            affected.add(package_id)

    # Propagate to dependents using BFS
    queue = deque(affected)
    while queue:
        node = queue.popleft()
        for dependent in graph.dependents[node]:
            if dependent not in affected:
                affected.add(dependent)
                queue.append(dependent)

    return affected


def topo_order(graph: DependencyGraph, target_ids: Set[str]) -> list[str]:
    """Order target packages so dependencies come before dependents.

    Only edges between targets count; dependencies outside the target set
    aren't being tested this run. Uses an iterative depth-first search with
    in-progress/done marking. Targets are visited in graph (discovery)
    order and dependencies in declaration order, so the result is the same
    on every run no matter how target_ids iterates.

    Raises:
        CycleDetected: If the targets contain a dependency cycle.

    Example:
        If C depends on B, and B depends on A:
        topo_order(graph, {"A", "B", "C"}) → ["A", "B", "C"]
    """
    targets = [n for n in graph.nodes if n in target_ids]

    def in_target_deps(node: str) -> list[str]:
        return [d for d in graph.deps[node] if d in target_ids]

    state: dict[str, int] = {}
    ordered: list[str] = []
    for start in targets:
        if start in state:
            continue
        state[start] = _IN_PROGRESS
        stack = [(start, iter(in_target_deps(start)))]
        while stack:
            node, pending = stack[-1]
            for dep in pending:
                mark = state.get(dep)
                if mark is None:
                    state[dep] = _IN_PROGRESS
                    stack.append((dep, iter(in_target_deps(dep))))
                    break
                if mark == _IN_PROGRESS:
                    path = [n for n, _ in stack]
                    raise CycleDetected(path[path.index(dep) :] + [dep])
            else:
                stack.pop()
                state[node] = _DONE
                ordered.append(node)

    return ordered


def execution_waves(graph: DependencyGraph, target_ids: Set[str]) -> list[list[str]]:
    """Group target packages into waves by longest dependency depth.

    Wave 0 holds targets with no in-target dependencies; every member of
    wave k has all of its in-target dependencies in earlier waves, so a
    whole wave can run concurrently. Each wave keeps topological order.

    Raises:
        CycleDetected: If the targets contain a dependency cycle.
    """
    depth: dict[str, int] = {}
    for node in topo_order(graph, target_ids):
        dep_depths = [depth[d] for d in graph.deps[node] if d in target_ids]
        depth[node] = max(dep_depths) + 1 if dep_depths else 0

    waves: list[list[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
    for node, level in depth.items():
        waves[level].append(node)
    return waves
