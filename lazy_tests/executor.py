"""Batched concurrent test execution.

Packages are tested in batches: every package in a batch runs as its own
child process at the same time, and the next batch starts only after the
whole batch has exited. A failing package never stops its batch or the
batches after it; failures are collected into the results.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from enum import Enum
from pathlib import Path

from .graph import DependencyGraph, execution_waves
from .models import PackageDescriptor, PackageResult
from .parsing import classify
from .shell import ProcessFailure, ProcessRunner, ProcessTimeout

DEFAULT_CONCURRENCY = 4
DEFAULT_TIMEOUT = 120.0


class Batching(str, Enum):
    """How an ordered package list is split into concurrent batches.

    CHUNKS: consecutive fixed-size windows of the topological order. A
        package may share a batch with one of its dependencies.
    WAVES: dependency depth levels, each split into fixed-size windows.
        Dependencies always finish before their dependents start.
    """

    CHUNKS = "chunks"
    WAVES = "waves"


def make_chunks(items: Sequence[str], size: int) -> list[list[str]]:
    """Split items into consecutive chunks of at most size elements."""
    if size < 1:
        raise ValueError(f"Chunk size must be at least 1, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def plan_batches(
    graph: DependencyGraph,
    ordered_ids: Sequence[str],
    concurrency: int,
    batching: Batching = Batching.CHUNKS,
) -> list[list[str]]:
    """Split topologically ordered packages into execution batches."""
    if Batching(batching) is Batching.CHUNKS:
        return make_chunks(ordered_ids, concurrency)
    batches: list[list[str]] = []
    for wave in execution_waves(graph, set(ordered_ids)):
        batches.extend(make_chunks(wave, concurrency))
    return batches


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def run_package(
    package: PackageDescriptor,
    runner: ProcessRunner,
    root: Path,
    timeout: float,
) -> PackageResult:
    """Test a single package and classify the outcome.

    Never raises for execution problems: a missing test command is a
    skipped success, and spawn failures or timeouts become a failed result.
    """
    start = time.monotonic()
    if package.test_command is None:
        return PackageResult(id=package.id, name=package.name, success=True, skipped=True)

    try:
        proc = await runner.run(package.test_command, root / package.id, timeout)
    except ProcessTimeout as exc:
        return PackageResult(
            id=package.id,
            name=package.name,
            success=False,
            total=1,
            failed=1,
            duration_ms=_elapsed_ms(start),
            error=str(exc),
            output=exc.output,
        )
    except ProcessFailure as exc:
        return PackageResult(
            id=package.id,
            name=package.name,
            success=False,
            total=1,
            failed=1,
            duration_ms=_elapsed_ms(start),
            error=str(exc),
        )

    outcome = classify(proc.exit_code, proc.text)
    return PackageResult(
        id=package.id,
        name=package.name,
        success=outcome.success,
        total=outcome.passed + outcome.failed,
        passed=outcome.passed,
        failed=outcome.failed,
        duration_ms=_elapsed_ms(start),
        skipped=outcome.skipped,
        error=None if outcome.success else f"Exited with code {proc.exit_code}",
        output=proc.text,
    )


def describe(result: PackageResult) -> str:
    """One-line status for a package result."""
    seconds = result.duration_ms / 1000
    if result.skipped:
        return f"  - {result.name}: skipped, no tests ({seconds:.1f}s)"
    mark = "✓" if result.success else "✗"
    counts = f"{result.passed} passed, {result.failed} failed"
    return f"  {mark} {result.name}: {counts} ({seconds:.1f}s)"


async def execute(
    graph: DependencyGraph,
    ordered_ids: Sequence[str],
    runner: ProcessRunner,
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    batching: Batching = Batching.CHUNKS,
    root: Path | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> list[PackageResult]:
    """Run package tests batch by batch.

    Args:
        graph: Workspace dependency graph holding the descriptors.
        ordered_ids: Package ids in topological order.
        runner: Process runner used for every package.
        concurrency: Maximum packages running at once.
        batching: How ordered_ids are split into batches.
        root: Workspace root; package ids are relative to it.
        timeout: Per-package timeout in seconds.

    Returns:
        One result per package, in batch order.
    """
    root = root or Path.cwd()
    batches = plan_batches(graph, ordered_ids, concurrency, batching)

    # Each task writes only its own key
    results: dict[str, PackageResult] = {}
    for n, batch in enumerate(batches, start=1):
        print(f"\n  Batch {n}/{len(batches)}: {', '.join(batch)}")
        batch_results = await asyncio.gather(
            *(run_package(graph.nodes[pkg], runner, root, timeout) for pkg in batch)
        )
        for pkg, result in zip(batch, batch_results):
            results[pkg] = result
            print(describe(result))

    return [results[pkg] for batch in batches for pkg in batch]
