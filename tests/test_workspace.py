"""Tests for sprintflow.workspace.manager module.

These run real git commands against a throwaway repository.
"""

import shutil
import subprocess

import pytest

from sprintflow.workspace.manager import (
    MergeConflict,
    WorkspaceError,
    WorkspaceExists,
    WorkspaceManager,
)
from sprintflow.workspace.services import ServiceManager

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(cwd, *args) -> str:
    return subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True).stdout.strip()


def commit_file(cwd, rel, text, message):
    path = cwd / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    git(cwd, "add", rel)
    git(cwd, "commit", "-q", "-m", message)


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    git(root, "init", "-q", "-b", "main")
    git(root, "config", "user.email", "dev@example.com")
    git(root, "config", "user.name", "Dev")
    git(root, "config", "commit.gpgsign", "false")
    commit_file(root, "README.md", "hello\n", "initial")
    state = root / ".sprintflow"
    state.mkdir()
    (state / ".gitignore").write_text("*\n")
    return root


@pytest.fixture
def manager(repo, tmp_path):
    return WorkspaceManager(repo, repo / ".sprintflow", tmp_path / "worktrees")


class TestAcquire:
    """Tests for acquire() and acquire_or_get()."""

    def test_creates_branch_and_worktree(self, manager, repo):
        ws = manager.acquire(1)

        assert ws.branch == "sprint-1"
        assert ws.root.is_dir()
        assert (ws.root / "README.md").read_text() == "hello\n"
        assert ws.base_sha == git(repo, "rev-parse", "main")
        assert git(ws.root, "branch", "--show-current") == "sprint-1"
        assert manager.get(1) == ws
        assert [w.sprint_id for w in manager.list()] == [1]

    def test_second_acquire_refused(self, manager):
        ws = manager.acquire(1)
        with pytest.raises(WorkspaceExists):
            manager.acquire(1)
        assert manager.get(1) == ws
        assert ws.root.is_dir()

    def test_existing_branch_refused(self, manager, repo):
        git(repo, "branch", "sprint-2")
        with pytest.raises(WorkspaceExists, match="branch sprint-2 exists"):
            manager.acquire(2)
        assert manager.get(2) is None

    def test_missing_mainline(self, repo, tmp_path):
        manager = WorkspaceManager(repo, repo / ".sprintflow", tmp_path / "worktrees", mainline="trunk")
        with pytest.raises(WorkspaceError, match="trunk"):
            manager.acquire(1)
        assert manager.get(1) is None

    def test_acquire_or_get_reattaches(self, manager):
        first = manager.acquire_or_get(3)
        assert manager.acquire_or_get(3) == first

    def test_acquire_or_get_stale_record(self, manager):
        ws = manager.acquire(3)
        shutil.rmtree(ws.root)
        with pytest.raises(WorkspaceError, match="roll it back first"):
            manager.acquire_or_get(3)

    def test_service_failure_undoes_worktree(self, repo, tmp_path, monkeypatch):
        commit_file(repo, "docker-compose.yml", "services: {}\n", "compose")
        monkeypatch.setattr("sprintflow.workspace.services.shutil.which", lambda name: "/usr/bin/docker")

        def failing_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 1, "", "port is already allocated")

        services = ServiceManager(enabled=True, run=failing_run)
        manager = WorkspaceManager(repo, repo / ".sprintflow", tmp_path / "worktrees", services=services)

        with pytest.raises(WorkspaceError, match="port is already allocated"):
            manager.acquire(4)
        assert manager.get(4) is None
        assert not (tmp_path / "worktrees" / "sprint-4").exists()
        assert "sprint-4" not in git(repo, "branch", "--list")


class TestChangedFiles:
    """Tests for changed_files()."""

    def test_committed_and_untracked(self, manager):
        ws = manager.acquire(1)
        commit_file(ws.root, "src/app.py", "x = 1\n", "app")
        (ws.root / "notes.md").write_text("draft\n")
        (ws.root / "README.md").write_text("changed\n")

        assert manager.changed_files(ws) == ["README.md", "notes.md", "src/app.py"]

    def test_deleted_files_excluded(self, manager):
        ws = manager.acquire(1)
        (ws.root / "README.md").unlink()
        assert manager.changed_files(ws) == []


class TestMergeAndRelease:
    """Tests for merge_and_release()."""

    def test_merges_and_discards(self, manager, repo):
        ws = manager.acquire(1)
        (ws.root / "feature.py").write_text("def feature():\n    return 1\n")

        merged = manager.merge_and_release(ws, "Sprint 1: Feature")

        assert merged == git(repo, "rev-parse", "main")
        assert (repo / "feature.py").exists()
        assert not ws.root.exists()
        assert "sprint-1" not in git(repo, "branch", "--list")
        assert manager.get(1) is None

    def test_conflict_leaves_mainline_untouched(self, manager, repo):
        ws = manager.acquire(1)
        (ws.root / "README.md").write_text("from the sprint\n")
        commit_file(repo, "README.md", "from mainline\n", "mainline edit")
        main_before = git(repo, "rev-parse", "main")

        with pytest.raises(MergeConflict) as exc:
            manager.merge_and_release(ws)

        assert exc.value.files == ["README.md"]
        assert git(repo, "rev-parse", "main") == main_before
        assert (repo / "README.md").read_text() == "from mainline\n"
        assert git(repo, "status", "--porcelain") == ""
        assert ws.root.exists()
        assert manager.get(1) is not None

    def test_dirty_mainline_refused(self, manager, repo):
        ws = manager.acquire(1)
        (repo / "README.md").write_text("local edit\n")
        with pytest.raises(WorkspaceError, match="uncommitted changes"):
            manager.merge_and_release(ws)
        assert ws.root.exists()


class TestRollback:
    """Tests for rollback()."""

    def test_discards_without_touching_mainline(self, manager, repo):
        main_before = git(repo, "rev-parse", "main")
        ws = manager.acquire(1)
        commit_file(ws.root, "wip.py", "x = 1\n", "wip")

        assert manager.rollback(1) is True

        assert git(repo, "rev-parse", "main") == main_before
        assert not ws.root.exists()
        assert "sprint-1" not in git(repo, "branch", "--list")
        assert manager.get(1) is None
        assert not (repo / "wip.py").exists()

    def test_nothing_to_discard(self, manager):
        assert manager.rollback(7) is False

    def test_acquire_after_rollback(self, manager):
        manager.acquire(1)
        manager.rollback(1)
        assert manager.acquire(1).branch == "sprint-1"

    def test_orphaned_branch(self, manager, repo):
        git(repo, "branch", "sprint-5")
        assert manager.rollback(5) is True
        assert "sprint-5" not in git(repo, "branch", "--list")

    def test_stack_stopped_without_registry_record(self, repo, tmp_path, monkeypatch):
        commit_file(repo, "docker-compose.yml", "services: {}\n", "compose")
        monkeypatch.setattr("sprintflow.workspace.services.shutil.which", lambda name: "/usr/bin/docker")
        calls = []

        def run(cmd, **kwargs):
            calls.append(cmd)
            return subprocess.CompletedProcess(cmd, 0, "", "")

        services = ServiceManager(enabled=True, run=run)
        manager = WorkspaceManager(repo, repo / ".sprintflow", tmp_path / "worktrees", services=services)
        manager.acquire(6)
        (repo / ".sprintflow" / "workspaces" / "sprint-6.json").unlink()

        assert manager.rollback(6) is True
        down = calls[-1]
        assert down[:4] == ["docker", "compose", "-p", "sprint-6"]
        assert down[-2:] == ["down", "-v"]
        assert not (tmp_path / "worktrees" / "sprint-6").exists()
