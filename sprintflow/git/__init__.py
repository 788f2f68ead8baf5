"""Git operations for sprintflow.

Return type conventions:
- Functions returning GitResult: Caller must check .success before using output.
  Examples: commit(), add_worktree(), delete_branch()
- Functions returning bool: True on success/condition met, False otherwise.
  Examples: has_uncommitted_changes(), branch_exists()
- Functions returning parsed values (str, list): Return empty/None on failure.
  Examples: get_changed_files() -> [], get_commit_sha() -> None
"""

from sprintflow.git.runner import GitResult, run_git
from sprintflow.git.status import (
    has_uncommitted_changes,
    get_changed_files,
    get_conflicted_files,
    get_diff_names,
)
from sprintflow.git.branch import (
    get_current_branch,
    branch_exists,
    get_commit_sha,
    delete_branch,
    checkout_branch,
    stage_all,
    commit,
)
from sprintflow.git.worktree import (
    add_worktree,
    remove_worktree,
    prune_worktrees,
)
from sprintflow.git.merge import MergeOutcome, merge_branch

__all__ = [
    "GitResult",
    "run_git",
    # status
    "has_uncommitted_changes",
    "get_changed_files",
    "get_conflicted_files",
    "get_diff_names",
    # branch
    "get_current_branch",
    "branch_exists",
    "get_commit_sha",
    "delete_branch",
    "checkout_branch",
    "stage_all",
    "commit",
    # worktree
    "add_worktree",
    "remove_worktree",
    "prune_worktrees",
    # merge
    "MergeOutcome",
    "merge_branch",
]
