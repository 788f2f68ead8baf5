"""Git merge operations."""

from dataclasses import dataclass, field
from pathlib import Path

from sprintflow.git.runner import run_git
from sprintflow.git.status import get_conflicted_files


@dataclass
class MergeOutcome:
    """Result of merging a branch into the current checkout."""
    success: bool
    conflict: bool = False
    conflicted_files: list[str] = field(default_factory=list)
    message: str = ""


def merge_branch(repo: Path, branch: str, message: str) -> MergeOutcome:
    """
    Merge branch into the branch checked out in repo.

    Fast-forwards when possible, otherwise creates a merge commit. On conflict
    the merge is aborted, so repo is left exactly as it was.
    """
    result = run_git(["merge", "--no-edit", "-m", message, branch], repo, timeout=120)
    if result.success:
        return MergeOutcome(success=True, message=result.stdout.strip())

    if "CONFLICT" in result.output:
        conflicted = get_conflicted_files(repo)
        run_git(["merge", "--abort"], repo)
        return MergeOutcome(
            success=False,
            conflict=True,
            conflicted_files=conflicted,
            message=result.output,
        )

    return MergeOutcome(success=False, message=result.output)
