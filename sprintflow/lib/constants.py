"""Shared constants for sprintflow."""

# CLI exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_NOT_FOUND = 3
EXIT_LOCK_TIMEOUT = 4
EXIT_BLOCKED = 8
EXIT_MERGE_CONFLICT = 9

# Layout of the state directory inside the project repo
STATE_DIR_NAME = ".sprintflow"
SPRINTS_FILE = "SPRINTS.yml"
PROJECT_ENV_FILE = "project.env"
AGENTS_FILE = "agents.yaml"

BRANCH_PREFIX = "sprint-"


def branch_for(sprint_id: int) -> str:
    """Branch (and worktree directory) name owned by a sprint."""
    return f"{BRANCH_PREFIX}{sprint_id}"
