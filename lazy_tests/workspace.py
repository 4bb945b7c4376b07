"""Workspace discovery: turn a uv workspace into package descriptors."""

from __future__ import annotations

import glob
from pathlib import Path

from .deps import internal_dependencies
from .models import PackageDescriptor
from .shell import fatal
from .toml import (
    DEFAULT_TEST_COMMAND,
    get_all_dependency_strings,
    get_project_name,
    get_test_command,
    get_workspace_member_globs,
    load_pyproject,
)

# Directories never searched for test files
SKIP_DIRS = frozenset(
    {".git", ".venv", "venv", "node_modules", "__pycache__", ".tox", ".nox", "build", "dist"}
)


def find_member_dirs(root: Path, member_globs: list[str]) -> list[Path]:
    """Expand workspace member globs to package directories.

    Matches are sorted per pattern; only directories holding a
    pyproject.toml count, and a directory matched twice is kept once.
    """
    member_dirs: list[Path] = []
    for pattern in member_globs:
        for match in sorted(glob.glob(str(root / pattern))):
            p = Path(match)
            if (p / "pyproject.toml").exists() and p not in member_dirs:
                member_dirs.append(p)
    return member_dirs


def find_test_files(package_dir: Path, root: Path) -> tuple[str, ...]:
    """Find pytest-style test files under a package directory.

    Returns sorted workspace-relative POSIX paths of test_*.py and *_test.py.
    """
    found: list[str] = []
    for path in package_dir.rglob("*.py"):
        rel_parts = path.relative_to(package_dir).parts
        if any(part in SKIP_DIRS or part.endswith(".egg-info") for part in rel_parts):
            continue
        if path.name.startswith("test_") or path.name.endswith("_test.py"):
            found.append(path.relative_to(root).as_posix())
    return tuple(sorted(found))


def list_packages(root: Path | None = None) -> list[PackageDescriptor]:
    """Scan the workspace and describe every member package.

    Reads [tool.uv.workspace].members from the root pyproject.toml to find
    package directories, then extracts name, internal deps, test files and
    the test command from each package's pyproject.toml.

    A package's own [tool.lazy-tests].test-command wins. Otherwise packages
    that contain test files use the workspace default command, and packages
    without tests get no command at all (they are reported as skipped).

    Returns:
        Package descriptors in discovery order.
    """
    root = root or Path.cwd()
    root_doc = load_pyproject(root / "pyproject.toml")
    member_dirs = find_member_dirs(root, get_workspace_member_globs(root_doc))
    if not member_dirs:
        fatal("No packages found matching workspace members")

    default_command = (
        get_test_command(root_doc, where="pyproject.toml") or DEFAULT_TEST_COMMAND
    )

    # First pass: names, so dependency references can be checked against them
    docs = {d: load_pyproject(d / "pyproject.toml") for d in member_dirs}
    names = {d: get_project_name(doc, d.name) for d, doc in docs.items()}
    workspace_names = set(names.values())

    packages: list[PackageDescriptor] = []
    for d, doc in docs.items():
        package_id = d.relative_to(root).as_posix()
        test_files = find_test_files(d, root)
        command = get_test_command(doc, where=f"{package_id}/pyproject.toml")
        if command is None and test_files:
            command = default_command
        packages.append(
            PackageDescriptor(
                id=package_id,
                name=names[d],
                # Self references (e.g. "pkg[test]" extras) are not edges
                declared_dependencies=internal_dependencies(
                    get_all_dependency_strings(doc), workspace_names - {names[d]}
                ),
                test_file_paths=test_files,
                test_command=command,
            )
        )
    return packages
