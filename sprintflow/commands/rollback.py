"""
sf rollback - Discard a sprint's workspace without merging.
"""

from sprintflow.data.store import SprintNotFound
from sprintflow.lib.config import ProjectConfig
from sprintflow.lib.constants import EXIT_ERROR, EXIT_LOCK_TIMEOUT, EXIT_NOT_FOUND, EXIT_SUCCESS
from sprintflow.runner.locking import LockTimeout
from sprintflow.workflow.orchestrator import Orchestrator
from sprintflow.workspace.manager import WorkspaceError


def cmd_rollback(args, config: ProjectConfig) -> int:
    orchestrator = Orchestrator.from_config(config)
    try:
        discarded = orchestrator.rollback(args.id, reset=args.reset)
    except SprintNotFound:
        print(f"ERROR: Sprint {args.id} not found")
        return EXIT_NOT_FOUND
    except LockTimeout as e:
        print(f"ERROR: {e}")
        return EXIT_LOCK_TIMEOUT
    except WorkspaceError as e:
        print(f"ERROR: {e}")
        return EXIT_ERROR

    if discarded:
        print(f"Discarded workspace for sprint {args.id}; {config.mainline} unchanged.")
    else:
        print(f"Sprint {args.id} had no workspace.")
    if args.reset:
        print(f"Sprint {args.id} reset to PENDING.")
    return EXIT_SUCCESS
