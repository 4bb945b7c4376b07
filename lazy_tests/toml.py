"""TOML reading utilities.

Uses tomlkit to read the workspace root and member pyproject.toml files,
including the [tool.lazy-tests] configuration tables.
"""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Any

import tomlkit
from packaging.utils import canonicalize_name

from .models import WorkspaceConfig
from .shell import fatal

DEFAULT_TEST_COMMAND: tuple[str, ...] = ("python", "-m", "pytest")
DEFAULT_GLOBAL_FILES: tuple[str, ...] = ("pyproject.toml", "uv.lock")
DEFAULT_REPORT_PATH = "test-results/monorepo-test-report.json"


def load_pyproject(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a pyproject.toml file."""
    return tomlkit.parse(path.read_text())


def get_project_name(doc: tomlkit.TOMLDocument, fallback: str) -> str:
    """Extract the canonical package name from [project].name.

    Names are normalized per PEP 503 (lowercase, hyphens instead of
    underscores) so dependency references resolve consistently.

    Args:
        doc: Parsed pyproject.toml document.
        fallback: Value to use if name is not specified.
    """
    return canonicalize_name(doc.get("project", {}).get("name", fallback))


def get_all_dependency_strings(doc: tomlkit.TOMLDocument) -> list[str]:
    """Collect all dependency strings from a pyproject.toml.

    Gathers dependencies from three locations:
    - [project].dependencies (main runtime deps)
    - [project].optional-dependencies.* (extras like [dev], [test])
    - [dependency-groups].* (PEP 735 dependency groups)

    Returns raw PEP 508 strings like "requests>=2.0" or "pkg[extra]~=1.0".
    Group includes ({include-group = "..."}) are not strings and are skipped.
    """
    project = doc.get("project", {})
    deps: list[str] = list(project.get("dependencies", []))
    for group_deps in project.get("optional-dependencies", {}).values():
        deps.extend(group_deps)
    for group_deps in doc.get("dependency-groups", {}).values():
        deps.extend(d for d in group_deps if isinstance(d, str))
    return [str(d) for d in deps]


def get_workspace_member_globs(doc: tomlkit.TOMLDocument) -> list[str]:
    """Extract workspace member glob patterns from [tool.uv.workspace].

    Raises:
        SystemExit: If no workspace members are defined.
    """
    members = doc.get("tool", {}).get("uv", {}).get("workspace", {}).get("members")
    if not members:
        fatal("No [tool.uv.workspace] members defined in root pyproject.toml")
    return list(members)


def get_tool_config(doc: tomlkit.TOMLDocument) -> dict[str, Any]:
    """Return the [tool.lazy-tests] table, or an empty dict."""
    return dict(doc.get("tool", {}).get("lazy-tests", {}))


def parse_command(value: Any, *, where: str) -> tuple[str, ...]:
    """Normalize a configured command to an argv tuple.

    Commands may be given as a list of arguments or as a single string,
    which is split with shell quoting rules.

    Raises:
        SystemExit: If the value is empty or not a string/list of strings.
    """
    if isinstance(value, str):
        argv = shlex.split(value)
    elif isinstance(value, list) and all(isinstance(v, str) for v in value):
        argv = [str(v) for v in value]
    else:
        fatal(f"{where}: test command must be a string or a list of strings")
    if not argv:
        fatal(f"{where}: test command is empty")
    return tuple(argv)


def get_test_command(
    doc: tomlkit.TOMLDocument, *, where: str
) -> tuple[str, ...] | None:
    """Return [tool.lazy-tests].test-command if it is set."""
    value = get_tool_config(doc).get("test-command")
    if value is None:
        return None
    return parse_command(value, where=where)


def get_global_files(doc: tomlkit.TOMLDocument) -> tuple[str, ...]:
    """Files whose change invalidates every package (root config, lockfile)."""
    value = get_tool_config(doc).get("global-files")
    if value is None:
        return DEFAULT_GLOBAL_FILES
    return tuple(str(v) for v in value)


def get_report_path(doc: tomlkit.TOMLDocument) -> str:
    return str(get_tool_config(doc).get("report-path", DEFAULT_REPORT_PATH))


def get_stage_commands(doc: tomlkit.TOMLDocument) -> dict[str, tuple[str, ...]]:
    """Return per-stage command overrides from [tool.lazy-tests.stages].

    Keys are stage kind values ("unit", "e2e", ...). Unknown keys are
    rejected by the stage table, not here.
    """
    stages = get_tool_config(doc).get("stages", {})
    return {
        str(kind): parse_command(cmd, where=f"[tool.lazy-tests.stages].{kind}")
        for kind, cmd in stages.items()
    }


def load_config(root: Path) -> WorkspaceConfig:
    """Read [tool.lazy-tests] from the root pyproject.toml.

    A repository without a root pyproject.toml gets the defaults, so the
    whole-repository stage modes work outside uv workspaces too.
    """
    pyproject = root / "pyproject.toml"
    if not pyproject.exists():
        return WorkspaceConfig(
            global_files=DEFAULT_GLOBAL_FILES, report_path=DEFAULT_REPORT_PATH
        )
    doc = load_pyproject(pyproject)
    return WorkspaceConfig(
        global_files=get_global_files(doc),
        report_path=get_report_path(doc),
        stage_commands=get_stage_commands(doc),
    )
