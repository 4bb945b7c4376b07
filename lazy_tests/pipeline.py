"""Test pipeline: discover → diff → order → execute → report.

This module orchestrates a lazy-tests run:
1. Discover all packages in the workspace and build the dependency graph
2. Pick the packages to test (all of them, or only those a change affects)
3. Order them so dependencies are tested before their dependents
4. Run their test commands in concurrent batches
5. Aggregate the results into a report and persist it

The stage modes (unit, integration, e2e, progressive) skip the graph and
run whole-repository commands instead.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from pathlib import Path

from .executor import DEFAULT_CONCURRENCY, DEFAULT_TIMEOUT, Batching, execute
from .graph import DependencyGraph, build_graph, compute_affected, topo_order
from .models import RunReport, WorkspaceConfig
from .report import aggregate, exit_code, print_failures, write_report
from .shell import ProcessRunner, get_changed_files, step
from .stages import (
    DEFAULT_STAGE_TIMEOUT,
    PROGRESSIVE_ORDER,
    StageKind,
    run_progressive,
    stage_table,
)
from .toml import load_config
from .workspace import list_packages


class Mode(str, Enum):
    ALL = "all"
    AFFECTED = "affected"
    UNIT = "unit"
    INTEGRATION = "integration"
    E2E = "e2e"
    PROGRESSIVE = "progressive"


# Stage modes → the stages they run, in order
STAGE_MODES: dict[Mode, tuple[StageKind, ...]] = {
    Mode.UNIT: (StageKind.UNIT,),
    Mode.INTEGRATION: (StageKind.INTEGRATION,),
    Mode.E2E: (StageKind.E2E,),
    Mode.PROGRESSIVE: PROGRESSIVE_ORDER,
}


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def discover_graph(root: Path) -> DependencyGraph:
    """Scan the workspace and build its dependency graph.

    Raises:
        DuplicatePackageError: If two packages share a path.
    """
    step("Discovering workspace packages")
    graph = build_graph(list_packages(root))

    for package_id, info in graph.nodes.items():
        deps = graph.deps[package_id]
        dep_note = f" → [{', '.join(deps)}]" if deps else ""
        tests = f"{len(info.test_file_paths)} test files" if info.test_command else "no tests"
        print(f"  {info.name} ({package_id}, {tests}){dep_note}")

    return graph


def select_packages(
    graph: DependencyGraph,
    mode: Mode,
    config: WorkspaceConfig,
    base_ref: str,
    root: Path,
) -> set[str]:
    """Pick the package ids a package-mode run should test."""
    if mode is Mode.ALL:
        return set(graph.nodes)

    step(f"Detecting changes since {base_ref}")
    changed_files = get_changed_files(base_ref, root)
    print(f"  {len(changed_files)} changed files")
    affected = compute_affected(graph, changed_files, config.global_files)
    for package_id in graph.nodes:
        if package_id in affected:
            print(f"  {graph.nodes[package_id].name}: affected")
    return affected


def run_packages(
    mode: Mode,
    *,
    root: Path,
    config: WorkspaceConfig,
    concurrency: int = DEFAULT_CONCURRENCY,
    batching: Batching = Batching.CHUNKS,
    timeout: float = DEFAULT_TIMEOUT,
    base_ref: str = "HEAD~1",
) -> RunReport:
    """Run per-package tests in dependency order ("all" or "affected").

    Raises:
        DuplicatePackageError: If two packages share a path.
        CycleDetected: If the selected packages have a dependency cycle.
    """
    start = time.monotonic()
    graph = discover_graph(root)
    targets = select_packages(graph, mode, config, base_ref, root)

    if not targets:
        print("\nNo affected packages found. Nothing to test.")
        return aggregate(mode.value, duration_ms=_elapsed_ms(start))

    order = topo_order(graph, targets)
    step(f"Testing {len(order)} packages")
    print(f"  Order: {' → '.join(order)}")
    print(f"  Concurrency: {concurrency} ({Batching(batching).value})")

    results = asyncio.run(
        execute(
            graph,
            order,
            ProcessRunner(),
            concurrency=concurrency,
            batching=batching,
            root=root,
            timeout=timeout,
        )
    )
    return aggregate(mode.value, duration_ms=_elapsed_ms(start), package_results=results)


def run_stages(
    mode: Mode,
    *,
    root: Path,
    config: WorkspaceConfig,
    timeout: float | None = DEFAULT_STAGE_TIMEOUT,
) -> RunReport:
    """Run the whole-repository stages that belong to a stage mode."""
    start = time.monotonic()
    table = stage_table(config.stage_commands)
    stages = [table[kind] for kind in STAGE_MODES[mode]]
    result = asyncio.run(
        run_progressive(stages, ProcessRunner(echo=True), root=root, timeout=timeout)
    )
    return aggregate(mode.value, duration_ms=_elapsed_ms(start), run_result=result)


def run_tests(
    mode: Mode,
    *,
    root: Path | None = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    batching: Batching = Batching.CHUNKS,
    timeout: float = DEFAULT_TIMEOUT,
    stage_timeout: float | None = DEFAULT_STAGE_TIMEOUT,
    base_ref: str = "HEAD~1",
    report_path: Path | None = None,
) -> int:
    """Execute a full run and return the process exit code.

    Execution failures always produce a report. Structural errors
    (duplicate packages, dependency cycles) propagate before anything
    runs, and no report is written.

    Raises:
        DuplicatePackageError: If two packages share a path.
        CycleDetected: If the selected packages have a dependency cycle.
    """
    root = root or Path.cwd()
    config = load_config(root)

    if mode in STAGE_MODES:
        report = run_stages(mode, root=root, config=config, timeout=stage_timeout)
    else:
        report = run_packages(
            mode,
            root=root,
            config=config,
            concurrency=concurrency,
            batching=batching,
            timeout=timeout,
            base_ref=base_ref,
        )

    path = write_report(report, report_path or root / config.report_path)
    print(f"\nTest report saved to: {path}")

    if report.success:
        print("\n✓ All tests passed!")
    else:
        print_failures(report)
        print("\n✗ Some tests failed!")
    return exit_code(report)
