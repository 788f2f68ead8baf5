"""
What each phase does.

Agent phases invoke a role and gate what it wrote; test phases run the
project's own test command; COMPLETE is a final full-pipeline check.
"""

from dataclasses import dataclass
from enum import Enum

from sprintflow.data.models import PIPELINE, Phase
from sprintflow.lib.config import RetryPolicy


class PhaseAction(Enum):
    NONE = "none"
    AGENT = "agent"
    TESTS = "tests"
    FINAL_CHECK = "final_check"


# Gates that can judge a single written file on its own
WRITE_GATES = ["syntax", "format", "security"]


@dataclass(frozen=True)
class PhaseSpec:
    phase: Phase
    action: PhaseAction
    role: str | None = None
    max_turns: int = 5
    full_gates: bool = False  # gate every changed file, not just this phase's writes
    suite: str | None = None  # "unit" or "e2e" for test phases
    instructions: str = ""


PHASES: dict[Phase, PhaseSpec] = {
    Phase.PENDING: PhaseSpec(Phase.PENDING, PhaseAction.NONE),
    Phase.WRITE_UNIT_TESTS: PhaseSpec(
        Phase.WRITE_UNIT_TESTS, PhaseAction.AGENT, role="test-writer", max_turns=6,
        instructions="Write unit tests for every task that requires them. Do not write production code yet.",
    ),
    Phase.WRITE_CODE: PhaseSpec(
        Phase.WRITE_CODE, PhaseAction.AGENT, role="code-implementer", max_turns=10,
        instructions="Implement the tasks so the unit tests pass. Stay inside the declared scope.",
    ),
    Phase.CODE_REVIEW: PhaseSpec(
        Phase.CODE_REVIEW, PhaseAction.AGENT, role="reviewer", max_turns=5, full_gates=True,
        instructions="Review the sprint's changes against its business rules and acceptance criteria.",
    ),
    Phase.REVIEW_FIX: PhaseSpec(
        Phase.REVIEW_FIX, PhaseAction.AGENT, role="review-fixer", max_turns=8,
        instructions="Address every review finding.",
    ),
    Phase.RUN_UNIT_TESTS: PhaseSpec(Phase.RUN_UNIT_TESTS, PhaseAction.TESTS, suite="unit"),
    Phase.UNIT_FIX: PhaseSpec(
        Phase.UNIT_FIX, PhaseAction.AGENT, role="unit-fixer", max_turns=8,
        instructions="Make the failing unit tests pass without weakening them.",
    ),
    Phase.WRITE_E2E_TESTS: PhaseSpec(
        Phase.WRITE_E2E_TESTS, PhaseAction.AGENT, role="e2e-writer", max_turns=6,
        instructions="Write end-to-end tests for every task that requires them.",
    ),
    Phase.RUN_E2E_TESTS: PhaseSpec(Phase.RUN_E2E_TESTS, PhaseAction.TESTS, suite="e2e"),
    Phase.E2E_FIX: PhaseSpec(
        Phase.E2E_FIX, PhaseAction.AGENT, role="e2e-fixer", max_turns=10,
        instructions="Make the failing end-to-end tests pass without weakening them.",
    ),
    Phase.COMPLETE: PhaseSpec(Phase.COMPLETE, PhaseAction.FINAL_CHECK),
}

NEXT_PHASE: dict[Phase, Phase] = dict(zip(PIPELINE, PIPELINE[1:]))


def retry_ceiling(phase: Phase, policy: RetryPolicy) -> int:
    """Attempts allowed in a phase before the sprint blocks."""
    ceilings = {
        Phase.REVIEW_FIX: policy.review_fix,
        Phase.UNIT_FIX: policy.unit_fix,
        Phase.E2E_FIX: policy.e2e_fix,
    }
    return ceilings.get(phase, 1)
