"""
Sprint and task records.

These are the typed form of the entries in SPRINTS.yml. The orchestrator is
the only writer; everything else reads them.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


class Phase(Enum):
    """Lifecycle phase of a sprint. Values are the persisted spellings."""

    PENDING = "PENDING"
    WRITE_UNIT_TESTS = "WRITE_UNIT_TESTS"
    WRITE_CODE = "WRITE_CODE"
    CODE_REVIEW = "CODE_REVIEW"
    REVIEW_FIX = "REVIEW_FIX"
    RUN_UNIT_TESTS = "RUN_UNIT_TESTS"
    UNIT_FIX = "UNIT_FIX"
    WRITE_E2E_TESTS = "WRITE_E2E_TESTS"
    RUN_E2E_TESTS = "RUN_E2E_TESTS"
    E2E_FIX = "E2E_FIX"
    COMPLETE = "COMPLETE"
    DONE = "DONE"
    BLOCKED = "BLOCKED"

    @property
    def is_retriable(self) -> bool:
        return self in RETRIABLE_PHASES

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.DONE, Phase.BLOCKED)


# Linear pipeline order, excluding BLOCKED
PIPELINE = [
    Phase.PENDING,
    Phase.WRITE_UNIT_TESTS,
    Phase.WRITE_CODE,
    Phase.CODE_REVIEW,
    Phase.REVIEW_FIX,
    Phase.RUN_UNIT_TESTS,
    Phase.UNIT_FIX,
    Phase.WRITE_E2E_TESTS,
    Phase.RUN_E2E_TESTS,
    Phase.E2E_FIX,
    Phase.COMPLETE,
    Phase.DONE,
]

RETRIABLE_PHASES = frozenset({Phase.REVIEW_FIX, Phase.UNIT_FIX, Phase.E2E_FIX})


def parse_phase(value: str) -> Phase:
    """Parse a persisted phase string.

    Raises:
        ValueError: for anything outside the thirteen known phases
    """
    try:
        return Phase(value)
    except ValueError:
        raise ValueError(f"Unknown sprint phase: {value!r}") from None


class Priority(Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Lower rank sorts first."""
        return _PRIORITY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Priority):
            return NotImplemented
        # CRITICAL is the greatest priority
        return self.rank > other.rank


_PRIORITY_RANK = {Priority.CRITICAL: 0, Priority.HIGH: 1, Priority.MEDIUM: 2, Priority.LOW: 3}


@dataclass(frozen=True)
class SuiteRequirement:
    required: bool
    reason: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> "SuiteRequirement | None":
        if not data:
            return None
        return cls(required=bool(data.get("required", False)), reason=data.get("reason", ""))


@dataclass(frozen=True)
class TaskTesting:
    """Which kinds of tests a task calls for."""
    unit_tests: SuiteRequirement | None = None
    integration_tests: SuiteRequirement | None = None
    e2e_tests: SuiteRequirement | None = None

    @property
    def needs_unit(self) -> bool:
        return bool(self.unit_tests and self.unit_tests.required)

    @property
    def needs_e2e(self) -> bool:
        return bool(self.e2e_tests and self.e2e_tests.required)


@dataclass(frozen=True)
class Task:
    """A unit of work inside a sprint. Immutable once loaded."""
    id: str
    title: str
    description: str = ""
    effort: str = "4h"
    priority: Priority = Priority.MEDIUM
    feature: str = "core"
    doc_reference: str | None = None
    docs: tuple[str, ...] = ()
    business_rules: tuple[str, ...] = ()
    acceptance_criteria: tuple[str, ...] = ()
    testing: TaskTesting = field(default_factory=TaskTesting)

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        testing = data.get("testing") or {}
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            effort=data.get("effort", "4h"),
            priority=Priority(data.get("priority", "MEDIUM")),
            feature=data.get("feature", "core"),
            doc_reference=data.get("doc_reference"),
            docs=tuple(data.get("docs") or ()),
            business_rules=tuple(data.get("business_rules") or ()),
            acceptance_criteria=tuple(data.get("acceptance_criteria") or ()),
            testing=TaskTesting(
                unit_tests=SuiteRequirement.from_dict(testing.get("unit_tests")),
                integration_tests=SuiteRequirement.from_dict(testing.get("integration_tests")),
                e2e_tests=SuiteRequirement.from_dict(testing.get("e2e_tests")),
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "effort": self.effort,
            "priority": self.priority.value,
            "feature": self.feature,
            "docs": list(self.docs),
            "business_rules": list(self.business_rules),
            "acceptance_criteria": list(self.acceptance_criteria),
        }
        if self.doc_reference:
            data["doc_reference"] = self.doc_reference
        testing = {
            name: asdict(req)
            for name, req in (
                ("unit_tests", self.testing.unit_tests),
                ("integration_tests", self.testing.integration_tests),
                ("e2e_tests", self.testing.e2e_tests),
            )
            if req is not None
        }
        if testing:
            data["testing"] = testing
        return data


@dataclass
class IntegrationPoints:
    """Files a sprint declares it will touch. Defines its allowed scope."""
    modifies: list[str] = field(default_factory=list)
    creates: list[str] = field(default_factory=list)
    tests_existing: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> "IntegrationPoints":
        data = data or {}
        return cls(
            modifies=list(data.get("modifies") or []),
            creates=list(data.get("creates") or []),
            tests_existing=list(data.get("tests_existing") or []),
            patterns=list(data.get("patterns") or []),
        )

    @property
    def scope(self) -> list[str]:
        """Paths the sprint may write or delete."""
        return sorted(set(self.modifies) | set(self.creates))

    def is_empty(self) -> bool:
        return not (self.modifies or self.creates or self.tests_existing or self.patterns)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def iso_dates(value: Any) -> Any:
    """Turn the date/datetime values YAML makes of unquoted timestamps back into ISO strings."""
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: iso_dates(v) for k, v in value.items()}
    if isinstance(value, list):
        return [iso_dates(v) for v in value]
    return value


@dataclass
class Sprint:
    """One sprint and its persisted progress."""
    id: int
    goal: str
    phase: Phase = Phase.PENDING
    duration: str = ""
    total_effort: str = ""
    max_effort: str = ""
    started: str | None = None
    last_updated: str | None = None
    completed_at: str | None = None
    deliverables: list[str] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    dependencies: list[int] = field(default_factory=list)
    must_complete_first: bool = False
    integration_points: IntegrationPoints = field(default_factory=IntegrationPoints)
    blocked_count: int = 0
    blocked_reason: str | None = None
    retry_counts: dict[str, int] = field(default_factory=dict)

    @property
    def is_in_progress(self) -> bool:
        return self.phase not in (Phase.PENDING, Phase.DONE, Phase.BLOCKED)

    def retries_for(self, phase: Phase) -> int:
        return self.retry_counts.get(phase.value, 0)

    def touch(self) -> None:
        self.last_updated = now_iso()

    @classmethod
    def from_dict(cls, data: dict) -> "Sprint":
        return cls(
            id=int(data["id"]),
            goal=data.get("goal", ""),
            phase=parse_phase(data.get("status", "PENDING")),
            duration=data.get("duration", ""),
            total_effort=data.get("total_effort", ""),
            max_effort=data.get("max_effort", ""),
            started=iso_dates(data.get("started")),
            last_updated=iso_dates(data.get("last_updated")),
            completed_at=iso_dates(data.get("completed_at")),
            deliverables=list(data.get("deliverables") or []),
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
            dependencies=[int(d) for d in data.get("dependencies") or []],
            must_complete_first=bool(data.get("must_complete_first", False)),
            integration_points=IntegrationPoints.from_dict(data.get("integration_points")),
            blocked_count=int(data.get("blocked_count", 0)),
            blocked_reason=data.get("blocked_reason"),
            retry_counts={str(k): int(v) for k, v in (data.get("retry_counts") or {}).items()},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "goal": self.goal,
            "status": self.phase.value,
            "duration": self.duration,
            "total_effort": self.total_effort,
            "max_effort": self.max_effort,
            "started": self.started,
            "last_updated": self.last_updated,
            "completed_at": self.completed_at,
            "deliverables": list(self.deliverables),
            "tasks": [t.to_dict() for t in self.tasks],
            "dependencies": list(self.dependencies),
            "must_complete_first": self.must_complete_first,
            "blocked_count": self.blocked_count,
            "blocked_reason": self.blocked_reason,
            "retry_counts": dict(self.retry_counts),
        }
        if not self.integration_points.is_empty():
            data["integration_points"] = asdict(self.integration_points)
        return data
