"""
sf status - Show sprint phases, workspaces and what can run next.
"""

from sprintflow.data.models import Phase
from sprintflow.data.store import SprintStore, StoreError
from sprintflow.lib.config import ProjectConfig
from sprintflow.lib.constants import EXIT_ERROR, EXIT_NOT_FOUND, EXIT_SUCCESS
from sprintflow.runner.locking import is_locked, sprint_lock_path
from sprintflow.workflow.scheduler import select_runnable
from sprintflow.workspace.manager import WorkspaceManager


def cmd_status(args, config: ProjectConfig) -> int:
    store = SprintStore(config.sprints_file)
    if not store.exists():
        print(f"ERROR: {config.sprints_file} not found. Run 'sf init --plan FILE' first.")
        return EXIT_NOT_FOUND
    try:
        sprints = store.load()
    except StoreError as e:
        print(f"ERROR: {e}")
        return EXIT_ERROR

    workspaces = {ws.sprint_id: ws for ws in WorkspaceManager.from_config(config).list()}
    runnable = {s.id for s in select_runnable(sprints)}

    print(f"Project: {config.name}")
    print("=" * 60)
    print()
    if not sprints:
        print("No sprints defined.")
        return EXIT_SUCCESS

    for sprint in sprints:
        marker = "*" if sprint.id in runnable else " "
        running = " (running)" if is_locked(sprint_lock_path(config.state_dir, sprint.id)) else ""
        print(f"{marker} {sprint.id:>3}  {sprint.phase.value:<17} {sprint.goal}{running}")
        if sprint.retry_counts:
            counts = ", ".join(f"{k}={v}" for k, v in sorted(sprint.retry_counts.items()))
            print(f"        retries: {counts}")
        if sprint.phase is Phase.BLOCKED and sprint.blocked_reason:
            print(f"        blocked: {sprint.blocked_reason.splitlines()[0]}")
        ws = workspaces.get(sprint.id)
        if ws is not None:
            print(f"        workspace: {ws.root} ({ws.branch} from {ws.base_sha[:7]})")

    done = sum(1 for s in sprints if s.phase is Phase.DONE)
    blocked = sum(1 for s in sprints if s.phase is Phase.BLOCKED)
    print()
    print(f"{done}/{len(sprints)} done, {blocked} blocked, {len(runnable)} runnable (*)")
    return EXIT_SUCCESS
