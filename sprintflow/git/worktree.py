"""Git worktree operations."""

from pathlib import Path

from sprintflow.git.runner import run_git, GitResult


def add_worktree(repo: Path, path: Path, branch: str, start_point: str) -> GitResult:
    """Create branch at start_point and check it out at path."""
    return run_git(["worktree", "add", "-b", branch, str(path), start_point], repo, timeout=120)


def remove_worktree(repo: Path, path: Path, force: bool = False) -> GitResult:
    args = ["worktree", "remove"]
    if force:
        args.append("--force")
    args.append(str(path))
    return run_git(args, repo, timeout=120)


def prune_worktrees(repo: Path) -> GitResult:
    return run_git(["worktree", "prune"], repo)

