"""
Sprint orchestrator.

Drives one sprint through its phases inside an isolated workspace:

    acquire workspace -> execute phase -> advance / retry / block -> ... -> DONE -> merge

Every transition is persisted before the next phase starts, so a crashed run
resumes exactly at the recorded phase (the workspace record is re-attached).
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from sprintflow.agents.channel import AgentChannel, FailureKind, InvocationBudget
from sprintflow.agents.context import build_sprint_context
from sprintflow.data.models import Phase, Sprint, now_iso
from sprintflow.data.store import SprintNotFound, SprintStore, StoreError
from sprintflow.lib.agents_config import load_agents_config
from sprintflow.lib.config import ProjectConfig
from sprintflow.lib.validate import SchemaRegistry, load_schema_registry
from sprintflow.quality.context import GateContext
from sprintflow.quality.issues import Report
from sprintflow.quality.pipeline import QualityGatePipeline
from sprintflow.runner.locking import LockTimeout, sprint_lock
from sprintflow.workflow.fsm import SprintFSM
from sprintflow.workflow.phases import PHASES, WRITE_GATES, PhaseAction, PhaseSpec, retry_ceiling
from sprintflow.workflow.scheduler import select_runnable
from sprintflow.workflow.suites import SuiteResult, run_suite
from sprintflow.workspace.manager import MergeConflict, Workspace, WorkspaceError, WorkspaceManager

logger = logging.getLogger(__name__)


class SprintBlocked(Exception):
    """The sprint is (now) BLOCKED; blocked_reason says why."""

    def __init__(self, sprint_id: int, reason: str):
        self.sprint_id = sprint_id
        self.reason = reason
        super().__init__(f"Sprint {sprint_id} blocked: {reason}")


class IterationCeilingExceeded(Exception):
    """The run executed max_iterations phases without reaching DONE."""

    def __init__(self, sprint_id: int, limit: int):
        self.sprint_id = sprint_id
        self.limit = limit
        super().__init__(f"Sprint {sprint_id} did not finish within {limit} iterations")


class SprintNotReady(Exception):
    """Merge requested for a sprint that has not reached DONE."""

    def __init__(self, sprint_id: int, phase: Phase):
        self.sprint_id = sprint_id
        self.phase = phase
        super().__init__(f"Sprint {sprint_id} is {phase.value}, not DONE")


@dataclass
class PhaseOutcome:
    """Result of executing one phase once."""
    success: bool
    failure: FailureKind | None = None
    reason: str = ""

    @property
    def retryable(self) -> bool:
        return self.failure is not None and self.failure.retryable


@dataclass
class SprintRunResult:
    """What happened to a sprint in one run, for the CLI and Prefect."""
    sprint_id: int
    phase: str
    status: str  # done, blocked, ceiling, conflict, locked, not_found, error
    message: str = ""
    merged_sha: str | None = None

    def to_dict(self) -> dict:
        return {
            "sprint_id": self.sprint_id,
            "phase": self.phase,
            "status": self.status,
            "message": self.message,
            "merged_sha": self.merged_sha,
        }


SuiteRunner = Callable[..., SuiteResult]


class Orchestrator:
    """The only writer of sprint state."""

    def __init__(
        self,
        config: ProjectConfig,
        store: SprintStore,
        workspaces: WorkspaceManager,
        channel: AgentChannel,
        pipeline: QualityGatePipeline | None = None,
        schemas: SchemaRegistry | None = None,
        suite_runner: SuiteRunner = run_suite,
    ):
        self.config = config
        self.store = store
        self.workspaces = workspaces
        self.channel = channel
        self.pipeline = pipeline or QualityGatePipeline()
        self.schemas = schemas or SchemaRegistry()
        self.suite_runner = suite_runner

    @classmethod
    def from_config(cls, config: ProjectConfig) -> "Orchestrator":
        agents = load_agents_config(config.state_dir, default_model=config.model)
        return cls(
            config=config,
            store=SprintStore(config.sprints_file),
            workspaces=WorkspaceManager.from_config(config),
            channel=AgentChannel(agents),
            schemas=load_schema_registry(config.schemas_dir),
        )

    # --- one sprint ---------------------------------------------------------

    def run_sprint(self, sprint: Sprint) -> str | None:
        """
        Run a sprint from its persisted phase to DONE and merge it.

        Returns:
            The mainline commit after the merge, or None if nothing was merged

        Raises:
            SprintBlocked: the sprint is or became BLOCKED
            IterationCeilingExceeded: max_iterations phases ran without reaching DONE
            MergeConflict: the sprint is DONE but its branch does not merge cleanly
            LockTimeout: another process is running this sprint
        """
        if sprint.phase is Phase.BLOCKED:
            raise SprintBlocked(sprint.id, sprint.blocked_reason or "blocked")

        with sprint_lock(self.config.state_dir, sprint.id):
            # Another process may have moved it on while we waited
            sprint = self.store.get(sprint.id)
            if sprint.phase is Phase.BLOCKED:
                raise SprintBlocked(sprint.id, sprint.blocked_reason or "blocked")
            if sprint.phase is Phase.DONE:
                return self._merge_done(sprint)

            workspace = self.workspaces.acquire_or_get(sprint.id)
            if sprint.started is None:
                sprint.started = now_iso()
                self.store.save_sprint(sprint)

            fsm = SprintFSM(sprint, self.store)
            previous_failure: str | None = None
            iterations = 0

            while sprint.phase is not Phase.DONE:
                if iterations >= self.config.max_iterations:
                    logger.warning(f"[SPRINT {sprint.id}] iteration ceiling {self.config.max_iterations} reached")
                    raise IterationCeilingExceeded(sprint.id, self.config.max_iterations)
                iterations += 1

                phase = sprint.phase
                logger.info(f"[SPRINT {sprint.id}] {phase.value} (iteration {iterations})")
                outcome = self.execute_phase(sprint, workspace, previous_failure)

                if outcome.success:
                    sprint.retry_counts.pop(phase.value, None)
                    if phase is Phase.COMPLETE:
                        sprint.completed_at = now_iso()
                    fsm.fire("advance")
                    previous_failure = None
                else:
                    self._handle_failure(fsm, phase, outcome)
                    previous_failure = outcome.reason

            logger.info(f"[SPRINT {sprint.id}] DONE")
            return self._merge_done(sprint, workspace)

    def _handle_failure(self, fsm: SprintFSM, phase: Phase, outcome: PhaseOutcome) -> None:
        """Retry the phase if allowed, otherwise block and raise SprintBlocked."""
        sprint = fsm.sprint
        kind = outcome.failure.value if outcome.failure else "failure"
        logger.info(f"[SPRINT {sprint.id}] {phase.value} failed ({kind}): {outcome.reason.splitlines()[0] if outcome.reason else ''}")

        if phase.is_retriable and outcome.retryable:
            count = sprint.retries_for(phase) + 1
            sprint.retry_counts[phase.value] = count
            ceiling = retry_ceiling(phase, self.config.retries)
            if count < ceiling:
                logger.info(f"[SPRINT {sprint.id}] retrying {phase.value} ({count}/{ceiling})")
                fsm.fire("retry")
                return
            reason = f"{phase.value} failed {count} time(s): {outcome.reason}"
        else:
            reason = f"{phase.value} failed ({kind}): {outcome.reason}"

        sprint.blocked_reason = reason
        sprint.blocked_count += 1
        fsm.fire("block")
        logger.warning(f"[SPRINT {sprint.id}] BLOCKED: {reason.splitlines()[0]}")
        raise SprintBlocked(sprint.id, reason)

    def _merge_done(self, sprint: Sprint, workspace: Workspace | None = None) -> str | None:
        workspace = workspace or self.workspaces.get(sprint.id)
        if workspace is None:
            logger.info(f"[SPRINT {sprint.id}] DONE with no workspace to merge")
            return None
        return self.workspaces.merge_and_release(workspace, f"Sprint {sprint.id}: {sprint.goal}")

    # --- phases -------------------------------------------------------------

    def execute_phase(
        self,
        sprint: Sprint,
        workspace: Workspace,
        previous_failure: str | None = None,
    ) -> PhaseOutcome:
        """Execute the sprint's current phase once. Never changes the phase."""
        spec = PHASES[sprint.phase]

        if spec.action is PhaseAction.NONE:
            return PhaseOutcome(success=True)
        if spec.action is PhaseAction.TESTS:
            return self._run_tests(sprint, workspace, spec)
        if spec.action is PhaseAction.FINAL_CHECK:
            return self._run_gates(sprint, workspace, self.workspaces.changed_files(workspace))

        ctx = self._gate_context(sprint, workspace, [])
        result = self.channel.invoke(
            spec.role,
            build_sprint_context(sprint, spec.instructions, previous_failure),
            InvocationBudget(max_turns=spec.max_turns, timeout=self.config.agent_timeout),
            workspace.root,
            scope=sprint.integration_points.scope,
            write_check=self.pipeline.write_check(ctx),
            log_file=self._log_file(sprint),
        )
        if not result.success:
            return PhaseOutcome(success=False, failure=result.failure, reason=result.reason)

        if spec.full_gates:
            return self._run_gates(sprint, workspace, self.workspaces.changed_files(workspace))
        return self._run_gates(sprint, workspace, result.files_written, WRITE_GATES)

    def _gate_context(self, sprint: Sprint, workspace: Workspace, paths: list[str]) -> GateContext:
        return GateContext(
            sprint=sprint,
            root=workspace.root,
            paths=paths,
            schemas=self.schemas,
            sprint_phases={s.id: s.phase for s in self.store.load()},
        )

    def _run_gates(
        self,
        sprint: Sprint,
        workspace: Workspace,
        paths: list[str],
        gates: list[str] | None = None,
    ) -> PhaseOutcome:
        ctx = self._gate_context(sprint, workspace, paths)
        report, _ = self.pipeline.check_and_fix(ctx, gates=gates, auto_fix=self.config.auto_fix)
        if report.blocking:
            return PhaseOutcome(success=False, failure=FailureKind.VALIDATION_FAILED, reason=report.summary())
        return PhaseOutcome(success=True)

    def _run_tests(self, sprint: Sprint, workspace: Workspace, spec: PhaseSpec) -> PhaseOutcome:
        command = self.config.unit_test_command if spec.suite == "unit" else self.config.e2e_test_command
        result = self.suite_runner(
            command,
            workspace.root,
            self.config.test_timeout,
            log_file=self._log_file(sprint),
        )
        if result.success:
            return PhaseOutcome(success=True)
        return PhaseOutcome(success=False, failure=result.failure, reason=result.summary)

    def _log_file(self, sprint: Sprint) -> Path:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        attempt = sprint.retries_for(sprint.phase) + 1
        return self.config.runs_dir / f"sprint-{sprint.id}" / f"{stamp}-{sprint.phase.value.lower()}-{attempt}.log"

    # --- many sprints -------------------------------------------------------

    def run_one(self, sprint_id: int) -> SprintRunResult:
        """Run a sprint and fold every expected outcome into a result."""
        try:
            sprint = self.store.get(sprint_id)
        except SprintNotFound as e:
            return SprintRunResult(sprint_id, "", "not_found", str(e))

        try:
            merged_sha = self.run_sprint(sprint)
        except SprintBlocked as e:
            return SprintRunResult(sprint_id, Phase.BLOCKED.value, "blocked", e.reason)
        except IterationCeilingExceeded as e:
            return SprintRunResult(sprint_id, self._phase_of(sprint_id), "ceiling", str(e))
        except MergeConflict as e:
            return SprintRunResult(sprint_id, Phase.DONE.value, "conflict", str(e))
        except LockTimeout as e:
            return SprintRunResult(sprint_id, self._phase_of(sprint_id), "locked", str(e))
        except (WorkspaceError, StoreError) as e:
            logger.error(f"[SPRINT {sprint_id}] {e}")
            return SprintRunResult(sprint_id, self._phase_of(sprint_id), "error", str(e))
        except Exception as e:
            # one broken sprint must not discard the results of the others
            logger.exception(f"[SPRINT {sprint_id}] unexpected error")
            return SprintRunResult(sprint_id, self._phase_of(sprint_id), "error", f"{type(e).__name__}: {e}")

        return SprintRunResult(sprint_id, Phase.DONE.value, "done", merged_sha=merged_sha)

    def _phase_of(self, sprint_id: int) -> str:
        try:
            return self.store.get(sprint_id).phase.value
        except StoreError:
            return ""

    def run_parallel(self, sprint_ids: list[int], workers: int | None = None) -> list[SprintRunResult]:
        """Run independent sprints on a bounded thread pool; results ordered by id."""
        workers = max(1, workers or self.config.parallel_workers)
        if workers == 1 or len(sprint_ids) <= 1:
            return [self.run_one(sid) for sid in sprint_ids]

        results: list[SprintRunResult] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sprint") as pool:
            futures = {pool.submit(self.run_one, sid): sid for sid in sprint_ids}
            for future in as_completed(futures):
                results.append(future.result())
        return sorted(results, key=lambda r: r.sprint_id)

    def run_all(self, workers: int | None = None) -> list[SprintRunResult]:
        """
        Keep starting runnable sprints until none are left.

        Each sprint is attempted at most once per call, so a blocked sprint or
        a merge conflict cannot loop forever.
        """
        workers = max(1, workers or self.config.parallel_workers)
        attempted: set[int] = set()
        results: list[SprintRunResult] = []
        while True:
            runnable = [s for s in select_runnable(self.store.load()) if s.id not in attempted]
            if not runnable:
                break
            batch = [s.id for s in runnable[:workers]]
            attempted.update(batch)
            results.extend(self.run_parallel(batch, workers))
        return results

    # --- operator commands --------------------------------------------------

    def merge(self, sprint_id: int) -> str | None:
        """Merge a DONE sprint whose earlier merge failed.

        Raises:
            SprintNotReady: the sprint is not DONE
            MergeConflict: still conflicts; nothing was changed
        """
        with sprint_lock(self.config.state_dir, sprint_id):
            sprint = self.store.get(sprint_id)
            if sprint.phase is not Phase.DONE:
                raise SprintNotReady(sprint_id, sprint.phase)
            return self._merge_done(sprint)

    def rollback(self, sprint_id: int, reset: bool = False) -> bool:
        """
        Discard a sprint's workspace. Mainline is never touched.

        With reset, the sprint also goes back to PENDING with its retry
        counters and blocked_reason cleared (blocked_count is kept).

        Returns:
            True if a workspace was discarded
        """
        with sprint_lock(self.config.state_dir, sprint_id):
            sprint = self.store.get(sprint_id)
            discarded = self.workspaces.rollback(sprint_id)
            if not reset:
                return discarded

            sprint.retry_counts = {}
            sprint.blocked_reason = None
            sprint.started = None
            sprint.completed_at = None
            if sprint.phase is Phase.BLOCKED:
                SprintFSM(sprint, self.store).fire("reset")
            else:
                sprint.phase = Phase.PENDING
                self.store.save_sprint(sprint)
            logger.info(f"[SPRINT {sprint_id}] reset to PENDING")
            return discarded

    def check_gates(self, sprint_id: int, auto_fix: bool = False) -> Report:
        """Run the full pipeline over a sprint's workspace changes (or the whole repo)."""
        sprint = self.store.get(sprint_id)
        workspace = self.workspaces.get(sprint_id)
        if workspace is not None and workspace.root.exists():
            root = workspace.root
            paths = self.workspaces.changed_files(workspace)
        else:
            root = self.config.repo_path
            paths = GateContext(sprint=sprint, root=root).all_files()

        ctx = GateContext(
            sprint=sprint,
            root=root,
            paths=paths,
            schemas=self.schemas,
            sprint_phases={s.id: s.phase for s in self.store.load()},
        )
        report, _ = self.pipeline.check_and_fix(ctx, auto_fix=auto_fix)
        return report
