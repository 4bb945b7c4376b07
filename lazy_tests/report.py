"""Run report aggregation and persistence.

The report is the single place that decides whether a run succeeded and
therefore which exit code the process returns.
"""

from __future__ import annotations

import os
import platform
import sys
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from .models import (
    Environment,
    PackageResult,
    RunReport,
    RunResult,
    RunResults,
    StageResult,
    Summary,
)
from .parsing import failure_excerpt


def summarize(
    package_results: Sequence[PackageResult],
    stage_results: Sequence[StageResult] = (),
) -> Summary:
    """Sum test counts over all package and stage results."""
    counted = [*package_results, *stage_results]
    return Summary(
        total=sum(r.total for r in counted),
        passed=sum(r.passed for r in counted),
        failed=sum(r.failed for r in counted),
    )


def current_environment() -> Environment:
    return Environment(
        runtime_version=platform.python_version(),
        platform=sys.platform,
        is_ci=bool(os.environ.get("CI")),
    )


def aggregate(
    mode: str,
    *,
    duration_ms: int,
    package_results: Sequence[PackageResult] = (),
    run_result: RunResult | None = None,
) -> RunReport:
    """Merge package or stage results into one report.

    Args:
        mode: CLI mode the run was started with.
        duration_ms: Wall time of the whole run.
        package_results: Results of per-package execution, if any.
        run_result: Result of a stage pipeline, if any.
    """
    stage_results = run_result.stage_results if run_result else []
    success = all(r.success for r in package_results) and (
        run_result is None or run_result.success
    )
    return RunReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        duration_ms=duration_ms,
        mode=mode,
        success=success,
        results=RunResults(
            package_results=list(package_results),
            stage_results=list(stage_results),
            summary=summarize(package_results, stage_results),
        ),
        environment=current_environment(),
    )


def write_report(report: RunReport, path: Path) -> Path:
    """Write the report as JSON, replacing any previous report."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2))
    return path


def exit_code(report: RunReport) -> int:
    """0 if everything in the report succeeded, else 1."""
    return 0 if report.success else 1


def print_failures(report: RunReport) -> None:
    """Print failed packages with their error and relevant output lines."""
    failed = [r for r in report.results.package_results if not r.success and not r.skipped]
    if failed:
        print("\nFailure details:")
    for result in failed:
        print(f"\n  Package: {result.name}")
        print(f"  Path: {result.id}")
        if result.error:
            print(f"  Error: {result.error}")
        lines = failure_excerpt(result.output)
        if lines:
            print("  Output:")
            for line in lines:
                print(f"     {line}")

    summary = report.results.summary
    if not report.success:
        print(f"\nSummary: {summary.failed}/{summary.total} tests failed")
