"""Prefect flow for sprint runs.

Wraps Orchestrator.run_one in a @task per sprint to get:
- One task run per sprint in the Prefect UI
- Structured logging
- Observability (when connected to Prefect server)

The orchestrator itself stays plain Python; `sf run` calls it directly and
only `sf run --prefect` goes through this flow.
"""

from pathlib import Path

from prefect import flow, get_run_logger, task
from pydantic import BaseModel, Field


class SprintRunRequest(BaseModel):
    """Flow parameters."""
    repo_path: str
    sprint_ids: list[int] = Field(default_factory=list)  # empty: every runnable sprint
    workers: int = Field(default=1, ge=1)


def _orchestrator(repo_path: str):
    # Import here to avoid circular imports at module level
    from sprintflow.lib.config import load_project_config
    from sprintflow.workflow.orchestrator import Orchestrator

    return Orchestrator.from_config(load_project_config(Path(repo_path)))


@task(
    retries=0,
    name="run_sprint",
    description="Drive one sprint through its phases and merge it",
)
def task_run_sprint(repo_path: str, sprint_id: int) -> dict:
    """Run one sprint.

    No Prefect retries: phase retries and blocking are the orchestrator's
    job, and a second attempt would only re-raise SprintBlocked.
    """
    return _orchestrator(repo_path).run_one(sprint_id).to_dict()


@flow(
    name="sprint-run",
    retries=0,
)
def sprint_run_flow(request: SprintRunRequest) -> list[dict]:
    """Run the requested sprints, or every runnable sprint, in batches of `workers`.

    Returns:
        One result dict per attempted sprint, ordered by sprint id
    """
    from sprintflow.workflow.scheduler import select_runnable

    log = get_run_logger()
    log.info(f"Starting sprint run in {request.repo_path} with {request.workers} worker(s)")

    results: list[dict] = []
    attempted: set[int] = set()
    pending = list(request.sprint_ids)

    while True:
        if request.sprint_ids:
            batch, pending = pending[:request.workers], pending[request.workers:]
        else:
            store = _orchestrator(request.repo_path).store
            runnable = [s.id for s in select_runnable(store.load()) if s.id not in attempted]
            batch = runnable[:request.workers]
        if not batch:
            break
        attempted.update(batch)

        futures = [task_run_sprint.submit(request.repo_path, sid) for sid in batch]
        for future in futures:
            result = future.result()
            log.info(f"Sprint {result['sprint_id']}: {result['status']} {result['message']}".rstrip())
            results.append(result)

    return sorted(results, key=lambda r: r["sprint_id"])
