"""Git status operations."""

from pathlib import Path

from sprintflow.git.runner import run_git


def has_uncommitted_changes(worktree: Path) -> bool:
    """Check if worktree has any uncommitted changes (staged, unstaged, or untracked)."""
    result = run_git(["status", "--porcelain"], worktree)
    return bool(result.stdout.strip())


def get_changed_files(worktree: Path) -> list[str]:
    """Get list of changed files (staged + unstaged + untracked).

    Uses -z for null-separated output to handle filenames with spaces/special chars.
    Returns empty list on git failure (e.g., not a repo).
    """
    result = run_git(["status", "--porcelain", "-z", "--untracked-files=all"], worktree)
    if not result.success or not result.stdout:
        return []

    files = []
    # -z format: "XY filename\0" or "XY new\0old\0" for renames
    entries = result.stdout.split('\0')
    i = 0
    while i < len(entries):
        entry = entries[i]
        if len(entry) < 3:
            i += 1
            continue

        status = entry[:2]
        files.append(entry[3:])
        # Renames and copies carry the source path as an extra entry
        i += 2 if status[0] in ('R', 'C') else 1

    return files


def get_conflicted_files(worktree: Path) -> list[str]:
    """Get list of files with unresolved conflicts."""
    result = run_git(["diff", "--name-only", "--diff-filter=U"], worktree)
    return [f.strip() for f in result.stdout.splitlines() if f.strip()]


def get_diff_names(worktree: Path, ref: str) -> list[str]:
    """Files changed between ref and the working tree, excluding deletions."""
    result = run_git(["diff", "--name-only", "--diff-filter=d", ref], worktree)
    return [f.strip() for f in result.stdout.splitlines() if f.strip()]
