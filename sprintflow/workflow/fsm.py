"""Sprint phase state machine using the transitions library.

Triggers:
- advance: move to the next phase in the pipeline
- retry:   re-enter the current phase (fix phases only)
- block:   give up on the sprint; BLOCKED is absorbing
- reset:   operator-only way out of BLOCKED, back to PENDING

Every executed transition persists the sprint before the trigger returns.

Usage:
    from sprintflow.workflow.fsm import SprintFSM

    fsm = SprintFSM(sprint, store)
    fsm.fire("advance")  # PENDING -> WRITE_UNIT_TESTS, saved
"""

import logging
from typing import Callable

from transitions import Machine, MachineError

from sprintflow.data.models import PIPELINE, Phase, RETRIABLE_PHASES, Sprint
from sprintflow.data.store import SprintStore

logger = logging.getLogger(__name__)

STATES = [p.value for p in Phase]

TRANSITIONS = (
    [
        {"trigger": "advance", "source": src.value, "dest": dst.value}
        for src, dst in zip(PIPELINE, PIPELINE[1:])
    ]
    + [{"trigger": "retry", "source": p.value, "dest": "="} for p in PIPELINE if p in RETRIABLE_PHASES]
    + [{"trigger": "block", "source": p.value, "dest": Phase.BLOCKED.value} for p in PIPELINE if not p.is_terminal]
    + [{"trigger": "reset", "source": Phase.BLOCKED.value, "dest": Phase.PENDING.value}]
)


class InvalidTransition(Exception):
    """Raised when a trigger is not allowed from the current phase."""

    def __init__(self, sprint_id: int, phase: str, trigger: str):
        self.sprint_id = sprint_id
        self.phase = phase
        self.trigger = trigger
        super().__init__(f"Sprint {sprint_id}: cannot {trigger} from {phase}")


class SprintFSM:
    """State machine for one sprint's phase.

    The sprint record is the model's backing store: after each transition its
    phase is updated and the whole record is saved.
    """

    def __init__(
        self,
        sprint: Sprint,
        store: SprintStore,
        on_transition: Callable[[str, str, str], None] | None = None,
    ):
        self.sprint = sprint
        self.store = store
        self.on_transition = on_transition

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=sprint.phase.value,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",  # Callback after any transition
        )

    @property
    def phase(self) -> Phase:
        return Phase(self.state)

    def on_state_change(self, event) -> None:
        """Callback after any state transition: persist, then log."""
        from_state = event.transition.source
        to_state = event.transition.dest or from_state
        trigger = event.event.name

        self.sprint.phase = Phase(self.state)
        self.store.save_sprint(self.sprint)

        logger.info(f"[FSM] sprint {self.sprint.id}: {from_state} -> {self.state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def fire(self, trigger: str) -> Phase:
        """Run a trigger by name, returning the new phase.

        Raises:
            InvalidTransition: trigger not allowed from the current phase
        """
        if not self.can(trigger):
            raise InvalidTransition(self.sprint.id, self.state, trigger)
        try:
            self.trigger(trigger)
        except MachineError as e:
            raise InvalidTransition(self.sprint.id, self.state, trigger) from e
        return self.phase

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        """Get list of triggers available in current state."""
        return self.machine.get_triggers(self.state)
