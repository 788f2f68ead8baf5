"""
Run a project test command in a workspace.
"""

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from sprintflow.agents.channel import FailureKind
from sprintflow.lib.test_output import format_failure_summary, parse_test_output

logger = logging.getLogger(__name__)


@dataclass
class SuiteResult:
    """Outcome of one test command run."""
    command: str
    success: bool
    exit_code: int | None = None
    failure: FailureKind | None = None
    summary: str = ""
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0


def run_suite(
    command: str,
    cwd: Path,
    timeout: float,
    log_file: Path | None = None,
) -> SuiteResult:
    """Run a test command; exit status 0 is success.

    The command is a configured string, so it runs through ``sh -c``.
    """
    start = time.monotonic()
    try:
        result = subprocess.run(
            ["sh", "-c", command],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        duration = time.monotonic() - start
        logger.warning(f"[TESTS] '{command}' timed out after {timeout}s")
        suite = SuiteResult(
            command=command,
            success=False,
            failure=FailureKind.TIMEOUT,
            summary=f"Test command timed out after {timeout}s",
            stdout=_text(e.stdout),
            stderr=_text(e.stderr),
            duration=duration,
        )
        _write_log(log_file, suite)
        return suite
    except OSError as e:
        suite = SuiteResult(
            command=command,
            success=False,
            failure=FailureKind.TRANSIENT_IO,
            summary=f"Could not run test command: {e}",
            duration=time.monotonic() - start,
        )
        _write_log(log_file, suite)
        return suite

    suite = SuiteResult(
        command=command,
        success=result.returncode == 0,
        exit_code=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
        duration=time.monotonic() - start,
    )
    if not suite.success:
        suite.failure = FailureKind.TESTS_FAILED
        suite.summary = format_failure_summary(parse_test_output(result.stdout, result.stderr))
        logger.info(f"[TESTS] '{command}' failed (exit {result.returncode})")
    else:
        logger.info(f"[TESTS] '{command}' passed in {suite.duration:.1f}s")

    _write_log(log_file, suite)
    return suite


def _text(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def _write_log(log_file: Path | None, suite: SuiteResult) -> None:
    if log_file is None:
        return
    log_file.parent.mkdir(parents=True, exist_ok=True)
    with open(log_file, "w") as f:
        f.write(f"=== COMMAND ===\n{suite.command}\n\n")
        f.write(f"=== EXIT CODE ===\n{suite.exit_code}\n\n")
        f.write(f"=== STDOUT ===\n{suite.stdout}\n\n")
        f.write(f"=== STDERR ===\n{suite.stderr}\n")
        if suite.summary:
            f.write(f"\n=== SUMMARY ===\n{suite.summary}\n")
