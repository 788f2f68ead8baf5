"""Tests for sprintflow.workflow.suites module."""

from sprintflow.agents.channel import FailureKind
from sprintflow.workflow.suites import run_suite


class TestRunSuite:
    """Tests for run_suite()."""

    def test_passing_command(self, tmp_path):
        result = run_suite("echo ok", tmp_path, timeout=10)
        assert result.success
        assert result.exit_code == 0
        assert result.failure is None
        assert result.stdout.strip() == "ok"

    def test_runs_in_workspace(self, tmp_path):
        (tmp_path / "marker.txt").write_text("here\n")
        assert run_suite("test -f marker.txt", tmp_path, timeout=10).success

    def test_failing_command_summarized(self, tmp_path):
        command = "echo 'FAILED tests/test_auth.py::test_lockout - AssertionError: not locked'; exit 1"
        result = run_suite(command, tmp_path, timeout=10)

        assert not result.success
        assert result.exit_code == 1
        assert result.failure is FailureKind.TESTS_FAILED
        assert "test_lockout" in result.summary
        assert "not locked" in result.summary

    def test_timeout(self, tmp_path):
        result = run_suite("exec sleep 10", tmp_path, timeout=0.5)
        assert result.failure is FailureKind.TIMEOUT
        assert "timed out" in result.summary
        assert result.duration < 5

    def test_missing_workspace_is_transient(self, tmp_path):
        result = run_suite("true", tmp_path / "gone", timeout=10)
        assert result.failure is FailureKind.TRANSIENT_IO
        assert result.failure.retryable

    def test_log_file(self, tmp_path):
        log = tmp_path / "runs" / "sprint-1" / "run.log"
        run_suite("echo out; echo err >&2; exit 3", tmp_path, timeout=10, log_file=log)

        content = log.read_text()
        assert "=== COMMAND ===" in content
        assert "=== EXIT CODE ===\n3" in content
        assert "out" in content
        assert "err" in content
        assert "=== SUMMARY ===" in content
