"""
sf merge - Retry the merge of a DONE sprint.
"""

from sprintflow.data.store import SprintNotFound
from sprintflow.lib.config import ProjectConfig
from sprintflow.lib.constants import EXIT_ERROR, EXIT_LOCK_TIMEOUT, EXIT_MERGE_CONFLICT, EXIT_NOT_FOUND, EXIT_SUCCESS
from sprintflow.runner.locking import LockTimeout
from sprintflow.workflow.orchestrator import Orchestrator, SprintNotReady
from sprintflow.workspace.manager import MergeConflict, WorkspaceError


def cmd_merge(args, config: ProjectConfig) -> int:
    orchestrator = Orchestrator.from_config(config)
    try:
        merged_sha = orchestrator.merge(args.id)
    except SprintNotFound:
        print(f"ERROR: Sprint {args.id} not found")
        return EXIT_NOT_FOUND
    except SprintNotReady as e:
        print(f"ERROR: {e}")
        return EXIT_ERROR
    except MergeConflict as e:
        print(f"ERROR: {e}")
        for path in e.files:
            print(f"  {path}")
        return EXIT_MERGE_CONFLICT
    except LockTimeout as e:
        print(f"ERROR: {e}")
        return EXIT_LOCK_TIMEOUT
    except WorkspaceError as e:
        print(f"ERROR: {e}")
        return EXIT_ERROR

    if merged_sha is None:
        print(f"Sprint {args.id} has no workspace left to merge.")
    else:
        print(f"Sprint {args.id} merged into {config.mainline} at {merged_sha[:8]}")
    return EXIT_SUCCESS
