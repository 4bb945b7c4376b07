"""Shell, git and process utilities.

Provides simple wrappers around subprocess calls for git, an asyncio-based
runner for test commands, plus output formatting helpers.
"""

from __future__ import annotations

import asyncio
import codecs
import subprocess
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import NoReturn

from .models import ProcessOutput

_READ_CHUNK = 64 * 1024


class ProcessFailure(RuntimeError):
    """A test process could not be started."""


class ProcessTimeout(RuntimeError):
    """A test process ran past its timeout and was killed.

    Attributes:
        output: Whatever the process printed before it was killed.
    """

    def __init__(self, command: Sequence[str], timeout: float, output: str = "") -> None:
        super().__init__(f"{' '.join(command)} timed out after {timeout:g}s")
        self.output = output


def git(*args: str, check: bool = True, cwd: Path | str | None = None) -> str:
    """Run a git command and return stdout.

    Args:
        *args: Arguments to pass to git (e.g., "diff", "--name-only").
        check: If True (default), raise on non-zero exit. Set to False
               for commands that may legitimately fail (e.g., HEAD~1 on
               a single-commit repository).
        cwd: Directory to run git in (default: the current directory).

    Returns:
        Stripped stdout from the git command.
    """
    result = subprocess.run(["git", *args], capture_output=True, text=True, check=check, cwd=cwd)
    return result.stdout.strip()


def get_changed_files(base_ref: str = "HEAD~1", root: Path | str | None = None) -> list[str]:
    """List files changed between base_ref and the working tree.

    Paths are relative to root (default: the current directory), which
    may sit below the top of the git repository. Changes outside root
    are left out.

    Never raises: if git is missing, the ref does not exist or the
    directory is not a repository, the result is an empty list, which
    callers treat as "nothing affected".
    """
    try:
        output = git("diff", "--name-only", "--relative", base_ref, check=False, cwd=root)
    except OSError:
        return []
    return [line for line in output.splitlines() if line.strip()]


async def _drain(stream: asyncio.StreamReader | None, sink: list[str], echo: bool) -> None:
    if stream is None:
        return
    # Multi-byte characters can straddle reads
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(_READ_CHUNK)
        text = decoder.decode(chunk, final=not chunk)
        if text:
            sink.append(text)
            if echo:
                print(text, end="", flush=True)
        if not chunk:
            return


class ProcessRunner:
    """Runs one test command as a child process without blocking the loop.

    Args:
        echo: If True, child output is printed as it arrives (used for
              whole-repository stages so users can watch progress).
    """

    def __init__(self, *, echo: bool = False) -> None:
        self.echo = echo

    async def run(
        self, command: Sequence[str], cwd: Path | str, timeout: float | None
    ) -> ProcessOutput:
        """Run command in cwd and collect its output.

        Raises:
            ProcessFailure: If the process could not be spawned.
            ProcessTimeout: If it did not exit within timeout seconds.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ProcessFailure(f"Failed to start {command[0]}: {exc}") from exc

        stdout: list[str] = []
        stderr: list[str] = []
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _drain(proc.stdout, stdout, self.echo),
                    _drain(proc.stderr, stderr, self.echo),
                    proc.wait(),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise ProcessTimeout(command, timeout, "".join(stdout) + "".join(stderr))

        return ProcessOutput(
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout="".join(stdout),
            stderr="".join(stderr),
        )


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate the phases of a run in terminal output.
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def fatal(msg: str) -> NoReturn:
    """Print an error message and exit with code 1.

    Use for unrecoverable errors that should halt the run.
    """
    print(f"ERROR: {msg}", file=sys.stderr)
    sys.exit(1)
