"""Tests for lazy_tests.pipeline."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeRunner

from lazy_tests.executor import Batching
from lazy_tests.graph import CycleDetected
from lazy_tests.models import ProcessOutput
from lazy_tests.pipeline import STAGE_MODES, Mode, run_tests

REPORT = Path("test-results") / "monorepo-test-report.json"


def _load_report(root: Path) -> dict:
    return json.loads((root / REPORT).read_text())


@pytest.fixture
def workspace(write_workspace) -> Path:
    """pkg-core ← pkg-app, plus pkg-docs (no tests) and pkg-cli (independent)."""
    return write_workspace(
        {
            "pkg-core": ["pydantic>=2"],
            "pkg-app": ["pkg-core"],
            "pkg-cli": [],
            "pkg-docs": [],
        },
        with_tests=["pkg-core", "pkg-app", "pkg-cli"],
    )


def _patch_runner(runner):
    return patch("lazy_tests.pipeline.ProcessRunner", lambda **_: runner)


class TestAllMode:
    def test_runs_every_package_in_order(self, workspace: Path) -> None:
        runner = FakeRunner()
        with _patch_runner(runner):
            code = run_tests(Mode.ALL, root=workspace)

        assert code == 0
        report = _load_report(workspace)
        ids = [r["id"] for r in report["results"]["package_results"]]
        assert sorted(ids) == [
            "packages/pkg-app",
            "packages/pkg-cli",
            "packages/pkg-core",
            "packages/pkg-docs",
        ]
        assert ids.index("packages/pkg-core") < ids.index("packages/pkg-app")
        docs = next(r for r in report["results"]["package_results"] if r["name"] == "pkg-docs")
        assert docs["skipped"] and docs["success"]
        assert report["mode"] == "all"
        assert report["results"]["summary"] == {"total": 3, "passed": 3, "failed": 0}
        # pkg-docs has no command, so only three processes start
        assert len([e for e in runner.events if e[0] == "start"]) == 3

    def test_failure_still_writes_report(self, workspace: Path) -> None:
        runner = FakeRunner(
            outputs={"pkg-core": ProcessOutput(exit_code=1, stdout="==== 1 failed in 0.1s ====\n")}
        )
        with _patch_runner(runner):
            code = run_tests(Mode.ALL, root=workspace)

        assert code == 1
        report = _load_report(workspace)
        assert report["success"] is False
        assert report["results"]["summary"]["failed"] == 1
        # pkg-app still ran: failures don't stop later packages
        assert ("start", "pkg-app") in runner.events

    def test_custom_report_path(self, workspace: Path, tmp_path: Path) -> None:
        target = tmp_path / "elsewhere" / "report.json"
        with _patch_runner(FakeRunner()):
            run_tests(Mode.ALL, root=workspace, report_path=target)

        assert json.loads(target.read_text())["mode"] == "all"

    def test_wave_batching(self, workspace: Path) -> None:
        runner = FakeRunner()
        with _patch_runner(runner):
            code = run_tests(Mode.ALL, root=workspace, concurrency=4, batching=Batching.WAVES)

        assert code == 0
        position = {event: i for i, event in enumerate(runner.events)}
        assert position[("end", "pkg-core")] < position[("start", "pkg-app")]

    def test_cycle_is_fatal_and_writes_no_report(self, write_workspace) -> None:
        root = write_workspace({"a": ["b"], "b": ["a"]}, with_tests=["a", "b"])
        runner = FakeRunner()

        with _patch_runner(runner), pytest.raises(CycleDetected) as excinfo:
            run_tests(Mode.ALL, root=root)

        assert excinfo.value.cycle == ["packages/a", "packages/b", "packages/a"]
        assert runner.events == []
        assert not (root / REPORT).exists()


class TestAffectedMode:
    @patch("lazy_tests.pipeline.get_changed_files")
    def test_cascades_to_dependents(self, mock_changed: MagicMock, workspace: Path) -> None:
        mock_changed.return_value = ["packages/pkg-core/src/core.py"]
        runner = FakeRunner()

        with _patch_runner(runner):
            code = run_tests(Mode.AFFECTED, root=workspace, base_ref="main")

        assert code == 0
        mock_changed.assert_called_once_with("main", workspace)
        ids = [r["id"] for r in _load_report(workspace)["results"]["package_results"]]
        assert ids == ["packages/pkg-core", "packages/pkg-app"]

    @patch("lazy_tests.pipeline.get_changed_files")
    def test_nothing_affected(self, mock_changed: MagicMock, workspace: Path) -> None:
        mock_changed.return_value = ["README.md"]
        runner = FakeRunner()

        with _patch_runner(runner):
            code = run_tests(Mode.AFFECTED, root=workspace)

        assert code == 0
        assert runner.events == []
        report = _load_report(workspace)
        assert report["results"]["package_results"] == []
        assert report["mode"] == "affected"

    @patch("lazy_tests.pipeline.get_changed_files")
    def test_git_failure_means_nothing_affected(
        self, mock_changed: MagicMock, workspace: Path
    ) -> None:
        mock_changed.return_value = []
        with _patch_runner(FakeRunner()):
            assert run_tests(Mode.AFFECTED, root=workspace) == 0

    @patch("lazy_tests.pipeline.get_changed_files")
    def test_root_lockfile_affects_everything(
        self, mock_changed: MagicMock, workspace: Path
    ) -> None:
        mock_changed.return_value = ["uv.lock"]
        with _patch_runner(FakeRunner()):
            run_tests(Mode.AFFECTED, root=workspace)

        results = _load_report(workspace)["results"]["package_results"]
        assert len(results) == 4


class MarkerRunner:
    """Fails the stage whose pytest marker is in failing."""

    def __init__(self, failing: set[str]) -> None:
        self.failing = failing
        self.started: list[str] = []

    async def run(self, command, cwd, timeout) -> ProcessOutput:
        marker = command[-1]
        self.started.append(marker)
        if marker in self.failing:
            return ProcessOutput(exit_code=1, stdout="==== 1 failed in 0.1s ====\n")
        return ProcessOutput(exit_code=0, stdout="==== 2 passed in 0.1s ====\n")


class TestStageModes:
    def test_stage_modes_table(self) -> None:
        assert set(STAGE_MODES) == {Mode.UNIT, Mode.INTEGRATION, Mode.E2E, Mode.PROGRESSIVE}

    def test_unit_mode_runs_one_stage(self, tmp_path: Path) -> None:
        runner = MarkerRunner(set())
        with _patch_runner(runner):
            code = run_tests(Mode.UNIT, root=tmp_path)

        assert code == 0
        assert runner.started == ["unit"]
        report = _load_report(tmp_path)
        assert report["mode"] == "unit"
        assert report["results"]["summary"] == {"total": 2, "passed": 2, "failed": 0}

    def test_progressive_stops_on_failure(self, tmp_path: Path) -> None:
        runner = MarkerRunner({"component"})
        with _patch_runner(runner):
            code = run_tests(Mode.PROGRESSIVE, root=tmp_path)

        assert code == 1
        assert runner.started == ["unit", "integration", "component"]
        stages = _load_report(tmp_path)["results"]["stage_results"]
        assert [s["stage"] for s in stages] == ["unit", "integration", "component"]

    def test_configured_stage_command(self, tmp_path: Path) -> None:
        (tmp_path / "pyproject.toml").write_text(
            '[tool.lazy-tests.stages]\ne2e = "npx playwright test e2e"\n'
        )
        runner = MarkerRunner(set())
        with _patch_runner(runner):
            run_tests(Mode.E2E, root=tmp_path)

        assert runner.started == ["e2e"]
        stage = _load_report(tmp_path)["results"]["stage_results"][0]
        assert stage["command"] == ["npx", "playwright", "test", "e2e"]
