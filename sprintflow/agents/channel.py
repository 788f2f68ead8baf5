"""
Agent invocation channel.

Runs one agent role as a subprocess in a sprint's workspace:

1. The context bundle is written to the process's stdin.
2. stdout is read line by line; each line must decode to an event.
3. file_write events are checked and applied by the channel itself, so a
   write that fails its check never reaches the workspace.
4. The invocation ends with exactly one outcome: success, a failure with a
   FailureKind, or a timeout. Whatever the outcome, the process is gone when
   invoke() returns.
"""

import logging
import queue
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from sprintflow.agents.events import (
    AgentError,
    AgentEvent,
    Completion,
    FileWrite,
    MalformedEvent,
    ToolUse,
    decode_event,
)
from sprintflow.agents.policy import ToolPolicy
from sprintflow.lib.agents_config import AgentsConfig, get_role_command

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 5.0


class FailureKind(Enum):
    """Why a phase attempt failed."""
    TRANSIENT_IO = "transient_io"
    TIMEOUT = "timeout"
    MALFORMED_OUTPUT = "malformed_output"
    AGENT_REPORTED_FAILURE = "agent_reported_failure"
    VALIDATION_FAILED = "validation_failed"
    UNSAFE_TOOL_USE = "unsafe_tool_use"
    TESTS_FAILED = "tests_failed"

    @property
    def retryable(self) -> bool:
        return self is not FailureKind.AGENT_REPORTED_FAILURE


@dataclass(frozen=True)
class InvocationBudget:
    """Limits for one invocation: tool-use steps and wall-clock seconds."""
    max_turns: int
    timeout: float


@dataclass
class InvocationResult:
    """Outcome of one agent invocation."""
    role: str
    success: bool
    failure: FailureKind | None = None
    reason: str = ""
    events: list[AgentEvent] = field(default_factory=list)
    files_written: list[str] = field(default_factory=list)
    rejected_writes: list[str] = field(default_factory=list)
    tool_uses: int = 0
    exit_code: int | None = None
    duration: float = 0.0

    @property
    def retryable(self) -> bool:
        return self.failure is not None and self.failure.retryable


# Returns the reason a write must be rejected, or None to accept it
WriteCheck = Callable[[str, str], str | None]

_EOF = object()


@dataclass
class _StdinFailed:
    error: Exception


class AgentChannel:
    """Spawns agent subprocesses and turns their event streams into results."""

    def __init__(self, agents: AgentsConfig | None = None, terminate_grace: float = TERMINATE_GRACE_SECONDS):
        self.agents = agents or AgentsConfig()
        self.terminate_grace = terminate_grace

    def invoke(
        self,
        role: str,
        context: str,
        budget: InvocationBudget,
        workspace_root: Path,
        scope: list[str] | None = None,
        write_check: WriteCheck | None = None,
        log_file: Path | None = None,
    ) -> InvocationResult:
        """Run an agent role to a terminal outcome.

        Args:
            role: Agent role id, resolved through agents.yaml
            context: Serialized context bundle, sent over stdin
            budget: max tool-use steps and wall-clock timeout
            workspace_root: cwd for the process; all writes land under it
            scope: declared paths the agent may overwrite or delete
            write_check: per-write validation, run before a write is applied
            log_file: where to record command, exit code, stdout and stderr
        """
        result = InvocationResult(role=role, success=False)
        try:
            cmd = get_role_command(self.agents, role, {
                "max_turns": str(budget.max_turns),
                "workspace": str(workspace_root),
            })
        except ValueError as e:
            return self._fail(result, FailureKind.TRANSIENT_IO, str(e))

        policy = ToolPolicy(workspace_root, scope)
        start = time.monotonic()
        deadline = start + budget.timeout
        logger.info(f"[AGENT] {role}: starting ({budget.max_turns} turns, {budget.timeout:.0f}s)")

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(workspace_root),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            return self._fail(result, FailureKind.TRANSIENT_IO, f"could not start {cmd[0]}: {e}")

        lines: queue.Queue = queue.Queue()
        stdout_lines: list[str] = []
        stderr_chunks: list[str] = []
        threads = [
            threading.Thread(target=self._feed_stdin, args=(proc, context, lines), daemon=True),
            threading.Thread(target=self._read_stdout, args=(proc, lines), daemon=True),
            threading.Thread(target=self._read_stderr, args=(proc, stderr_chunks), daemon=True),
        ]
        for thread in threads:
            thread.start()

        completed = False
        stream_ended = False
        failure: tuple[FailureKind, str] | None = None
        try:
            while failure is None and not completed and not stream_ended:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    failure = (FailureKind.TIMEOUT, f"no terminal event within {budget.timeout:.0f}s")
                    break
                try:
                    item = lines.get(timeout=remaining)
                except queue.Empty:
                    continue

                if item is _EOF:
                    stream_ended = True
                    break
                if isinstance(item, _StdinFailed):
                    failure = (FailureKind.TRANSIENT_IO, f"writing context to agent failed: {item.error}")
                    break

                stdout_lines.append(item)
                line = item.strip()
                if not line:
                    continue
                try:
                    event = decode_event(line)
                except MalformedEvent as e:
                    failure = (FailureKind.MALFORMED_OUTPUT, str(e))
                    break

                result.events.append(event)
                if isinstance(event, Completion):
                    completed = True
                elif isinstance(event, AgentError):
                    failure = (FailureKind.AGENT_REPORTED_FAILURE, event.message)
                elif isinstance(event, ToolUse):
                    result.tool_uses += 1
                    if result.tool_uses > budget.max_turns:
                        failure = (FailureKind.TIMEOUT, f"exceeded turn budget of {budget.max_turns}")
                    else:
                        violation = policy.check_tool_use(event)
                        if violation:
                            failure = (FailureKind.UNSAFE_TOOL_USE, violation)
                elif isinstance(event, FileWrite):
                    failure = self._apply_write(event, policy, write_check, workspace_root, result)

            if failure is None:
                failure = self._await_exit(proc, deadline, completed, result)
        finally:
            self._terminate(proc)
        result.exit_code = proc.returncode
        for thread in threads:
            thread.join(timeout=self.terminate_grace)
        result.duration = time.monotonic() - start

        self._write_log(log_file, cmd, result, stdout_lines, stderr_chunks)

        if failure is not None:
            return self._fail(result, *failure)
        result.success = True
        logger.info(f"[AGENT] {role}: completed in {result.duration:.1f}s, {len(result.files_written)} file(s) written")
        return result

    def _apply_write(
        self,
        event: FileWrite,
        policy: ToolPolicy,
        write_check: WriteCheck | None,
        workspace_root: Path,
        result: InvocationResult,
    ) -> tuple[FailureKind, str] | None:
        violation = policy.check_write_path(event.path)
        if violation:
            result.rejected_writes.append(event.path)
            return FailureKind.UNSAFE_TOOL_USE, violation

        rel = policy.relative(event.path)
        if write_check is not None:
            problem = write_check(rel, event.content)
            if problem:
                result.rejected_writes.append(rel)
                return FailureKind.VALIDATION_FAILED, f"write to {rel} rejected: {problem}"

        target = workspace_root / rel
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(event.content)
        except OSError as e:
            return FailureKind.TRANSIENT_IO, f"could not write {rel}: {e}"

        if rel not in result.files_written:
            result.files_written.append(rel)
        logger.debug(f"[AGENT] {result.role}: wrote {rel}")
        return None

    def _await_exit(
        self,
        proc: subprocess.Popen,
        deadline: float,
        completed: bool,
        result: InvocationResult,
    ) -> tuple[FailureKind, str] | None:
        # After completion the process still gets the grace period to exit
        remaining = max(deadline - time.monotonic(), self.terminate_grace if completed else 0)
        try:
            code = proc.wait(timeout=remaining)
        except subprocess.TimeoutExpired:
            return FailureKind.TIMEOUT, "agent did not exit before the deadline"

        if code != 0:
            return FailureKind.TRANSIENT_IO, f"agent exited with code {code}"
        if not completed:
            return FailureKind.TRANSIENT_IO, "event stream ended without a completion event"
        return None

    def _terminate(self, proc: subprocess.Popen) -> None:
        if proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            logger.warning(f"[AGENT] pid {proc.pid} ignored SIGTERM, killing")
            proc.kill()
            proc.wait()

    @staticmethod
    def _feed_stdin(proc: subprocess.Popen, context: str, lines: queue.Queue) -> None:
        try:
            proc.stdin.write(context)
            proc.stdin.close()
        except (BrokenPipeError, OSError, ValueError) as e:
            # The process exiting on its own is reported through its exit code
            if proc.poll() is None:
                lines.put(_StdinFailed(e))

    @staticmethod
    def _read_stdout(proc: subprocess.Popen, lines: queue.Queue) -> None:
        try:
            for line in proc.stdout:
                lines.put(line)
        except (OSError, ValueError) as e:
            logger.debug(f"[AGENT] stdout closed: {e}")
        finally:
            lines.put(_EOF)

    @staticmethod
    def _read_stderr(proc: subprocess.Popen, chunks: list[str]) -> None:
        try:
            chunks.append(proc.stderr.read())
        except (OSError, ValueError) as e:
            logger.debug(f"[AGENT] stderr closed: {e}")

    @staticmethod
    def _fail(result: InvocationResult, kind: FailureKind, reason: str) -> InvocationResult:
        result.success = False
        result.failure = kind
        result.reason = reason
        logger.warning(f"[AGENT] {result.role}: {kind.value}: {reason}")
        return result

    @staticmethod
    def _write_log(
        log_file: Path | None,
        cmd: list[str],
        result: InvocationResult,
        stdout_lines: list[str],
        stderr_chunks: list[str],
    ) -> None:
        if log_file is None:
            return
        log_file.parent.mkdir(parents=True, exist_ok=True)
        log_file.write_text(
            f"=== COMMAND ===\n{' '.join(cmd)}\n\n"
            f"=== EXIT CODE ===\n{result.exit_code}\n\n"
            f"=== STDOUT ===\n{''.join(stdout_lines)}\n\n"
            f"=== STDERR ===\n{''.join(stderr_chunks)}\n"
        )
