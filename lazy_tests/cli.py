"""CLI entry point for lazy-tests."""

from __future__ import annotations

import os
from pathlib import Path

import click

from lazy_tests.executor import DEFAULT_CONCURRENCY, DEFAULT_TIMEOUT, Batching
from lazy_tests.graph import CycleDetected, DuplicatePackageError
from lazy_tests.pipeline import Mode, run_tests
from lazy_tests.shell import fatal
from lazy_tests.stages import DEFAULT_STAGE_TIMEOUT

MODES = [m.value for m in Mode]


def concurrency_from_env() -> int:
    """Read TEST_CONCURRENCY; a missing or invalid value gives the default."""
    try:
        value = int(os.environ.get("TEST_CONCURRENCY", ""))
    except ValueError:
        return DEFAULT_CONCURRENCY
    return value if value >= 1 else DEFAULT_CONCURRENCY


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="lazy-tests")
@click.argument("mode", default=Mode.ALL.value)
@click.option(
    "-j",
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help=(
        "Maximum packages tested at once. "
        f"[env: TEST_CONCURRENCY; default: {DEFAULT_CONCURRENCY}]"
    ),
)
@click.option(
    "--batching",
    type=click.Choice([b.value for b in Batching]),
    default=Batching.CHUNKS.value,
    envvar="TEST_BATCHING",
    show_default=True,
    help="Split the order into fixed-size chunks, or into dependency waves.",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=DEFAULT_TIMEOUT,
    envvar="TEST_TIMEOUT",
    show_default=True,
    help="Per-package timeout in seconds.",
)
@click.option(
    "--stage-timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=DEFAULT_STAGE_TIMEOUT,
    envvar="TEST_STAGE_TIMEOUT",
    show_default=True,
    help="Per-stage timeout in seconds.",
)
@click.option(
    "--base-ref",
    default="HEAD~1",
    envvar="TEST_BASE_REF",
    show_default=True,
    help="Git ref to diff against in affected mode.",
)
@click.option(
    "--report",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Report file (default: [tool.lazy-tests].report-path).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    mode: str,
    concurrency: int | None,
    batching: str,
    timeout: float,
    stage_timeout: float,
    base_ref: str,
    report: Path | None,
) -> None:
    """Monorepo test orchestrator that only tests what changed.

    MODE is one of: all, affected, unit, integration, e2e, progressive.
    """
    try:
        selected = Mode(mode)
    except ValueError:
        click.echo(f"Unknown mode: {mode}", err=True)
        click.echo(ctx.get_usage())
        click.echo(f"Available modes: {', '.join(MODES)}")
        ctx.exit(1)

    if concurrency is None:
        concurrency = concurrency_from_env()

    try:
        code = run_tests(
            selected,
            concurrency=concurrency,
            batching=Batching(batching),
            timeout=timeout,
            stage_timeout=stage_timeout,
            base_ref=base_ref,
            report_path=report,
        )
    except (DuplicatePackageError, CycleDetected) as exc:
        fatal(str(exc))
    ctx.exit(code)
