"""Dependency string handling.

Parses PEP 508 dependency strings and keeps only the ones that refer to
other packages in the same workspace.
"""

from __future__ import annotations

from collections.abc import Iterable

from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name


def dep_canonical_name(dep_str: str) -> str:
    """Extract the canonical package name from a PEP 508 dependency string.

    Handles version specifiers, extras, and normalizes the name per PEP 503
    (lowercase, hyphens instead of underscores).

    Examples:
        "requests>=2.0" → "requests"
        "My_Package[extra]~=1.0" → "my-package"
    """
    return canonicalize_name(Requirement(dep_str).name)


def internal_dependencies(
    dep_strings: Iterable[str], workspace_names: set[str]
) -> tuple[str, ...]:
    """Filter dependency strings down to internal workspace package names.

    Order of first declaration is kept and duplicates are dropped, so a
    package listed in both [project].dependencies and a dependency group
    appears once. Strings that are not valid PEP 508 requirements (e.g.
    local path references) are ignored.
    """
    seen: list[str] = []
    for dep_str in dep_strings:
        try:
            name = dep_canonical_name(dep_str)
        except InvalidRequirement:
            continue
        if name in workspace_names and name not in seen:
            seen.append(name)
    return tuple(seen)
