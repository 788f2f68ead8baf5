"""
sf run - Drive sprints through their phases.
"""

from sprintflow.lib.config import ProjectConfig
from sprintflow.lib.constants import (
    EXIT_BLOCKED,
    EXIT_ERROR,
    EXIT_LOCK_TIMEOUT,
    EXIT_MERGE_CONFLICT,
    EXIT_NOT_FOUND,
    EXIT_SUCCESS,
)
from sprintflow.workflow.orchestrator import Orchestrator

STATUS_EXIT_CODES = {
    "done": EXIT_SUCCESS,
    "ceiling": EXIT_ERROR,
    "error": EXIT_ERROR,
    "not_found": EXIT_NOT_FOUND,
    "locked": EXIT_LOCK_TIMEOUT,
    "blocked": EXIT_BLOCKED,
    "conflict": EXIT_MERGE_CONFLICT,
}

# Most severe first; the worst outcome among the sprints sets the exit code
SEVERITY = ["error", "conflict", "blocked", "ceiling", "locked", "not_found", "done"]


def exit_code_for(results: list[dict]) -> int:
    if not results:
        return EXIT_SUCCESS

    def rank(status: str) -> int:
        return SEVERITY.index(status) if status in SEVERITY else 0

    worst = min((r["status"] for r in results), key=rank)
    return STATUS_EXIT_CODES.get(worst, EXIT_ERROR)


def print_results(results: list[dict]) -> None:
    for r in results:
        line = f"Sprint {r['sprint_id']}: {r['status'].upper()}"
        if r.get("merged_sha"):
            line += f" (merged at {r['merged_sha'][:8]})"
        print(line)
        if r.get("message"):
            for detail in r["message"].splitlines()[:5]:
                print(f"  {detail}")


def cmd_run(args, config: ProjectConfig) -> int:
    workers = args.parallel or config.parallel_workers

    if args.prefect:
        from sprintflow.workflow.flows import SprintRunRequest, sprint_run_flow

        request = SprintRunRequest(
            repo_path=str(config.repo_path),
            sprint_ids=args.sprint or [],
            workers=workers,
        )
        results = sprint_run_flow(request)
    else:
        orchestrator = Orchestrator.from_config(config)
        if args.sprint:
            runs = orchestrator.run_parallel(args.sprint, workers)
        else:
            runs = orchestrator.run_all(workers)
        results = [r.to_dict() for r in runs]

    if not results:
        print("Nothing to run: every sprint is DONE, BLOCKED or waiting on a dependency.")
        return EXIT_SUCCESS

    print_results(results)
    code = exit_code_for(results)
    if code == EXIT_BLOCKED:
        print()
        print("Inspect with 'sf status'; discard a blocked sprint's work with 'sf rollback ID --reset'.")
    elif code == EXIT_MERGE_CONFLICT:
        print()
        print("Resolve the conflict on mainline, then 'sf merge ID'.")
    return code
