"""Data models for lazy-tests.

These Pydantic models represent the core data structures passed between
the workspace reader, the scheduler, the executor and the report writer.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class PackageDescriptor(BaseModel):
    """A single package in the monorepo workspace.

    Attributes:
        id: Workspace-relative path to the package directory. Unique.
        name: Canonical package name, used to resolve dependency references.
        declared_dependencies: Names of internal (workspace) dependencies.
            External packages are filtered out when the descriptor is built.
        test_file_paths: Workspace-relative test files found in the package.
        test_command: Command used to test the package, or None when the
            package has nothing to run.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    declared_dependencies: tuple[str, ...] = ()
    test_file_paths: tuple[str, ...] = ()
    test_command: tuple[str, ...] | None = None


class ProcessOutput(BaseModel):
    """Raw result of one child process."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def text(self) -> str:
        """Combined stdout and stderr, in that order."""
        return self.stdout + self.stderr


class OutputCounts(BaseModel):
    """Pass/fail counts recovered from a test run's output."""

    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.passed + self.failed


class PackageResult(BaseModel):
    """Outcome of testing one package. Written once, never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    success: bool
    total: int = 0
    passed: int = 0
    failed: int = 0
    duration_ms: int = 0
    skipped: bool = False
    error: str | None = None
    output: str = ""


class StageResult(BaseModel):
    """Outcome of one whole-repository test stage."""

    model_config = ConfigDict(frozen=True)

    stage: str
    command: tuple[str, ...]
    success: bool
    exit_code: int | None = None
    total: int = 0
    passed: int = 0
    failed: int = 0
    duration_ms: int = 0
    skipped: bool = False
    error: str | None = None
    output: str = ""


class RunResult(BaseModel):
    """Outcome of a stage pipeline run.

    Attributes:
        success: True if every started stage passed.
        stages_completed: Number of stages that ran and passed.
        failed_stage: Name of the stage that stopped the pipeline, if any.
        stage_results: Results of every stage that was started.
    """

    success: bool
    stages_completed: int = 0
    failed_stage: str | None = None
    stage_results: list[StageResult] = Field(default_factory=list)


class Summary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0


class RunResults(BaseModel):
    package_results: list[PackageResult] = Field(default_factory=list)
    stage_results: list[StageResult] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)


class Environment(BaseModel):
    runtime_version: str
    platform: str
    is_ci: bool


class RunReport(BaseModel):
    """Aggregate of one orchestrator run, persisted as JSON."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    duration_ms: int
    mode: str
    success: bool
    results: RunResults
    environment: Environment


class WorkspaceConfig(BaseModel):
    """Settings read from the root [tool.lazy-tests] table.

    Attributes:
        global_files: Files whose change affects every package.
        report_path: Where the run report is written, relative to the root.
        stage_commands: Stage kind value → command override.
    """

    global_files: tuple[str, ...] = ()
    report_path: str
    stage_commands: dict[str, tuple[str, ...]] = Field(default_factory=dict)
