"""Turn test-runner output into pass/fail counts.

The reliable path is the structured summary contract: any test command may
print one line of the form

    LAZY_TESTS_SUMMARY {"passed": 12, "failed": 1}

and those numbers are used as-is. Everything else in this module is a
best-effort fallback for runners that don't emit it: first the final
summary lines of pytest and vitest, then counting pass/fail markers. When
none of that finds anything the output is treated as "no tests found".
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ValidationError

from .models import OutputCounts

SUMMARY_MARKER = "LAZY_TESTS_SUMMARY"

# pytest exit code for "no tests were collected"
PYTEST_NO_TESTS_COLLECTED = 5

_STRUCTURED_RE = re.compile(rf"^\s*{SUMMARY_MARKER}\s+(\{{.*\}})\s*$", re.MULTILINE)

# "==== 3 failed, 10 passed, 1 error in 0.52s ===="
_PYTEST_SUMMARY_RE = re.compile(r"^=+ (.+?) in [\d.]+s(?: \([^)]*\))? =+$", re.MULTILINE)
_PYTEST_PART_RE = re.compile(r"(\d+) (passed|failed|errors?)\b")

# "      Tests  10 passed (10)" / "      Tests  2 failed | 8 passed (10)"
_VITEST_PASSED_RE = re.compile(r"Tests\s+(?:.*?\|\s*)?(\d+)\s+passed")
_VITEST_FAILED_RE = re.compile(r"Tests\s+(\d+)\s+failed")

_PASS_SYMBOL_RE = re.compile(r"✓|\bPASSED\b")
_FAIL_SYMBOL_RE = re.compile(r"[✗×]|\bFAILED\b")


def parse_structured(output: str) -> OutputCounts | None:
    """Read the last LAZY_TESTS_SUMMARY line, if there is a valid one."""
    for raw in reversed(_STRUCTURED_RE.findall(output)):
        try:
            return OutputCounts.model_validate_json(raw)
        except ValidationError:
            continue
    return None


def parse_summary_line(output: str) -> OutputCounts | None:
    """Best-effort: read a pytest or vitest final summary line."""
    pytest_lines = _PYTEST_SUMMARY_RE.findall(output)
    if pytest_lines:
        passed = failed = 0
        for count, kind in _PYTEST_PART_RE.findall(pytest_lines[-1]):
            if kind == "passed":
                passed += int(count)
            else:
                failed += int(count)
        if passed or failed:
            return OutputCounts(passed=passed, failed=failed)

    passed_match = _VITEST_PASSED_RE.search(output)
    failed_match = _VITEST_FAILED_RE.search(output)
    if passed_match or failed_match:
        return OutputCounts(
            passed=int(passed_match.group(1)) if passed_match else 0,
            failed=int(failed_match.group(1)) if failed_match else 0,
        )
    return None


def count_symbols(output: str) -> OutputCounts | None:
    """Best-effort: count per-test pass/fail markers."""
    passed = len(_PASS_SYMBOL_RE.findall(output))
    failed = len(_FAIL_SYMBOL_RE.findall(output))
    if passed or failed:
        return OutputCounts(passed=passed, failed=failed)
    return None


def parse_counts(output: str) -> OutputCounts | None:
    """Recover pass/fail counts from test output.

    Returns None when the output carries no usable signal at all.
    """
    return parse_structured(output) or parse_summary_line(output) or count_symbols(output)


class Outcome(BaseModel):
    """Classification of one finished test process."""

    success: bool
    skipped: bool = False
    passed: int = 0
    failed: int = 0


def classify(exit_code: int, output: str) -> Outcome:
    """Decide what a finished test process means.

    Success requires a zero exit code and no failed tests. Output with no
    countable tests is "no tests found" (skipped, successful) when the
    runner exited cleanly or with pytest's no-tests-collected code; any
    other exit counts as one failure so the run still shows up in totals.
    """
    counts = parse_counts(output)
    if counts is None or counts.total == 0:
        if exit_code in (0, PYTEST_NO_TESTS_COLLECTED):
            return Outcome(success=True, skipped=True)
        return Outcome(success=False, failed=1)
    return Outcome(
        success=exit_code == 0 and counts.failed == 0,
        passed=counts.passed,
        failed=counts.failed,
    )


def failure_excerpt(output: str, limit: int = 40) -> list[str]:
    """Pick the lines of a test run's output that explain a failure.

    Captures from the first failure marker until a summary marker, plus
    any standalone error lines. Runs of blank lines are collapsed.
    """
    markers = ("FAIL", "ERROR", "✗", "×", "AssertionError", "Test failed")
    standalone = ("Error:", "Failed:", "Traceback", "command finished with error")
    stop = ("short test summary info", "Tests:", "Time:", "Duration")

    lines: list[str] = []
    in_error = False
    for line in output.splitlines():
        if any(m in line for m in markers):
            in_error = True
            lines.append(line)
        elif in_error:
            if not line.strip() and lines and not lines[-1].strip():
                continue
            lines.append(line)
            if any(s in line for s in stop):
                break
        elif any(s in line for s in standalone):
            lines.append(line)
        if len(lines) >= limit:
            break
    return lines
