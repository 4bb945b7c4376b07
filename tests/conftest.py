"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest
import tomlkit

from lazy_tests.graph import DependencyGraph, build_graph
from lazy_tests.models import PackageDescriptor, ProcessOutput


def make_graph(spec: dict[str, list[str]]) -> DependencyGraph:
    """Build a graph where each package's id and name are the same string."""
    return build_graph(
        PackageDescriptor(
            id=name,
            name=name,
            declared_dependencies=tuple(deps),
            test_command=("pytest",),
        )
        for name, deps in spec.items()
    )


class FakeRunner:
    """Stands in for ProcessRunner; records start/end events per package.

    Outputs are looked up by the last path component of cwd. Each run
    yields to the event loop so concurrently started packages interleave.
    """

    def __init__(
        self,
        outputs: dict[str, ProcessOutput] | None = None,
        errors: dict[str, Exception] | None = None,
        delay: float = 0.01,
    ) -> None:
        self.outputs = outputs or {}
        self.errors = errors or {}
        self.delay = delay
        self.events: list[tuple[str, str]] = []
        self.commands: list[tuple[str, ...]] = []

    async def run(
        self, command: Sequence[str], cwd: Path | str, timeout: float | None
    ) -> ProcessOutput:
        key = Path(cwd).name
        self.commands.append(tuple(command))
        self.events.append(("start", key))
        await asyncio.sleep(self.delay)
        self.events.append(("end", key))
        if key in self.errors:
            raise self.errors[key]
        return self.outputs.get(
            key, ProcessOutput(exit_code=0, stdout="==== 1 passed in 0.01s ====\n")
        )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def write_workspace(tmp_path: Path) -> Callable[..., Path]:
    """Create a uv workspace under tmp_path.

    Call with a mapping of package directory name → list of dependency
    strings. Packages listed in with_tests get a tests/test_basic.py.
    """

    def _write(
        packages: dict[str, list[str]],
        *,
        with_tests: Sequence[str] = (),
        root_extra: str = "",
    ) -> Path:
        (tmp_path / "pyproject.toml").write_text(
            '[tool.uv.workspace]\nmembers = ["packages/*"]\n' + root_extra
        )
        for name, deps in packages.items():
            pkg_dir = tmp_path / "packages" / name
            pkg_dir.mkdir(parents=True)
            doc = tomlkit.document()
            project = tomlkit.table()
            project["name"] = name
            project["version"] = "1.0.0"
            project["dependencies"] = deps
            doc["project"] = project
            (pkg_dir / "pyproject.toml").write_text(tomlkit.dumps(doc))
            if name in with_tests:
                (pkg_dir / "tests").mkdir()
                (pkg_dir / "tests" / "test_basic.py").write_text(
                    "def test_ok():\n    assert True\n"
                )
        return tmp_path

    return _write
