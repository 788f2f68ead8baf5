"""Git branch and commit operations."""

from pathlib import Path

from sprintflow.git.runner import run_git, GitResult


def get_current_branch(worktree: Path) -> str | None:
    """Get the current branch name, or None if detached HEAD."""
    result = run_git(["branch", "--show-current"], worktree)
    if result.success:
        return result.stdout.strip() or None
    return None


def branch_exists(repo: Path, branch: str) -> bool:
    """Check if a branch exists."""
    result = run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], repo)
    return result.success


def get_commit_sha(worktree: Path, ref: str = "HEAD") -> str | None:
    """Get the SHA of a ref."""
    result = run_git(["rev-parse", "--verify", ref], worktree)
    if result.success:
        return result.stdout.strip()
    return None


def delete_branch(repo: Path, branch: str, force: bool = False) -> GitResult:
    return run_git(["branch", "-D" if force else "-d", branch], repo)


def checkout_branch(repo: Path, branch: str) -> GitResult:
    return run_git(["checkout", branch], repo)


def stage_all(worktree: Path) -> GitResult:
    """Stage all changes (new, modified, deleted)."""
    return run_git(["add", "-A"], worktree)


def commit(worktree: Path, message: str) -> GitResult:
    """Create a commit with the given message."""
    return run_git(["commit", "-m", message], worktree)
