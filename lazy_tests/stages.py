"""Whole-repository test stages and the progressive pipeline.

Stages are scoped by test type rather than by package, so they don't use
the dependency graph. The progressive pipeline runs them fast-to-slow and
stops at the first stage that fails.
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from .models import RunResult, StageResult
from .parsing import classify, failure_excerpt
from .shell import ProcessFailure, ProcessRunner, ProcessTimeout, fatal, step

DEFAULT_STAGE_TIMEOUT = 1800.0


class StageKind(str, Enum):
    UNIT = "unit"
    INTEGRATION = "integration"
    COMPONENT = "component"
    E2E = "e2e"


STAGE_TITLES: dict[StageKind, str] = {
    StageKind.UNIT: "Unit Tests",
    StageKind.INTEGRATION: "Integration Tests",
    StageKind.COMPONENT: "Component Tests",
    StageKind.E2E: "E2E Tests",
}

# Fast-to-slow order used by the progressive pipeline
PROGRESSIVE_ORDER: tuple[StageKind, ...] = (
    StageKind.UNIT,
    StageKind.INTEGRATION,
    StageKind.COMPONENT,
    StageKind.E2E,
)


def default_stage_command(kind: StageKind) -> tuple[str, ...]:
    """Run the whole repository's tests carrying the stage's pytest marker."""
    return ("python", "-m", "pytest", "-m", kind.value)


class Stage(BaseModel):
    """A named whole-repository test command."""

    model_config = ConfigDict(frozen=True)

    kind: StageKind
    title: str
    command: tuple[str, ...]


def stage_table(overrides: Mapping[str, Sequence[str]] | None = None) -> dict[StageKind, Stage]:
    """Build the stage table, applying configured command overrides.

    Raises:
        SystemExit: If an override names a stage kind that doesn't exist.
    """
    overrides = dict(overrides or {})
    valid = {kind.value for kind in StageKind}
    unknown = sorted(set(overrides) - valid)
    if unknown:
        fatal(
            f"Unknown stage(s) in [tool.lazy-tests.stages]: {', '.join(unknown)} "
            f"(expected one of: {', '.join(sorted(valid))})"
        )
    return {
        kind: Stage(
            kind=kind,
            title=STAGE_TITLES[kind],
            command=tuple(overrides.get(kind.value, default_stage_command(kind))),
        )
        for kind in StageKind
    }


async def run_stage(
    stage: Stage,
    runner: ProcessRunner,
    *,
    root: Path,
    timeout: float | None = DEFAULT_STAGE_TIMEOUT,
) -> StageResult:
    """Run one stage command from the repository root."""
    print(f"Running: {' '.join(stage.command)}")
    start = time.monotonic()
    try:
        proc = await runner.run(stage.command, root, timeout)
    except (ProcessTimeout, ProcessFailure) as exc:
        return StageResult(
            stage=stage.kind.value,
            command=stage.command,
            success=False,
            total=1,
            failed=1,
            duration_ms=int((time.monotonic() - start) * 1000),
            error=str(exc),
            output=getattr(exc, "output", ""),
        )

    outcome = classify(proc.exit_code, proc.text)
    return StageResult(
        stage=stage.kind.value,
        command=stage.command,
        success=outcome.success,
        exit_code=proc.exit_code,
        total=outcome.passed + outcome.failed,
        passed=outcome.passed,
        failed=outcome.failed,
        duration_ms=int((time.monotonic() - start) * 1000),
        skipped=outcome.skipped,
        error=None if outcome.success else f"Exited with code {proc.exit_code}",
        output=proc.text,
    )


def _print_failure(stage: Stage, result: StageResult) -> None:
    print(f"\n{stage.title} failure details:")
    if result.error:
        print(f"   {result.error}")
    lines = failure_excerpt(result.output)
    if not lines:
        print("   (No specific error details captured)")
    for line in lines:
        print(f"   {line}")


async def run_progressive(
    stages: Sequence[Stage],
    runner: ProcessRunner,
    *,
    root: Path,
    timeout: float | None = DEFAULT_STAGE_TIMEOUT,
) -> RunResult:
    """Run stages in order, stopping at the first failure.

    Stages after a failed stage are never started.

    Returns:
        RunResult with the number of stages that passed and the stage
        that failed, if any.
    """
    results: list[StageResult] = []
    for completed, stage in enumerate(stages):
        step(f"Stage: {stage.title}")
        result = await run_stage(stage, runner, root=root, timeout=timeout)
        results.append(result)
        if not result.success:
            _print_failure(stage, result)
            print(f"✗ {stage.title} failed. Stopping pipeline.")
            return RunResult(
                success=False,
                stages_completed=completed,
                failed_stage=stage.kind.value,
                stage_results=results,
            )
        print(f"✓ {stage.title} passed.")

    return RunResult(success=True, stages_completed=len(stages), stage_results=results)
