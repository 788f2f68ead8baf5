"""Findings reported by quality gates."""

from dataclasses import dataclass, field
from enum import Enum


class Severity(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return ["critical", "high", "medium", "low"].index(self.value)


@dataclass(frozen=True)
class Issue:
    """One problem found in an artifact or in the sprint itself."""
    severity: Severity
    category: str  # rule tag, e.g. "format.markdown_fence"
    message: str
    file: str | None = None
    line: int | None = None
    auto_fixable: bool = False

    @property
    def key(self) -> tuple:
        """Identity used to tell whether a fix made the issue go away."""
        return (self.category, self.file or "")

    def sort_key(self) -> tuple:
        return (self.file or "", self.line or 0, self.severity.rank, self.category, self.message)

    def __str__(self) -> str:
        where = self.file or "sprint"
        if self.line:
            where = f"{where}:{self.line}"
        return f"[{self.severity.value.upper()}] {where}: {self.message} ({self.category})"


@dataclass
class GateResult:
    gate: str
    issues: list[Issue] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not any(i.severity in (Severity.CRITICAL, Severity.HIGH) for i in self.issues)

    @property
    def has_critical(self) -> bool:
        return any(i.severity is Severity.CRITICAL for i in self.issues)

    @classmethod
    def from_issues(cls, gate: str, issues: list[Issue]) -> "GateResult":
        unique = sorted(set(issues), key=Issue.sort_key)
        return cls(gate=gate, issues=unique)


@dataclass
class Report:
    """Results of a pipeline run, in gate order."""
    results: list[GateResult] = field(default_factory=list)
    halted_at: str | None = None  # gate whose critical issues stopped the run

    @property
    def issues(self) -> list[Issue]:
        return [issue for result in self.results for issue in result.issues]

    @property
    def critical(self) -> list[Issue]:
        return [i for i in self.issues if i.severity is Severity.CRITICAL]

    @property
    def blocking(self) -> bool:
        return bool(self.critical)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def fixable(self) -> list[Issue]:
        return [i for i in self.issues if i.auto_fixable]

    def summary(self, limit: int = 10) -> str:
        """Short text for blocked_reason and logs."""
        critical = self.critical
        if not critical:
            return "all gates passed" if self.passed else f"{len(self.issues)} non-blocking issue(s)"
        lines = [f"{len(critical)} critical issue(s)"]
        lines += [f"  {issue}" for issue in critical[:limit]]
        if len(critical) > limit:
            lines.append(f"  ... and {len(critical) - limit} more")
        return "\n".join(lines)


@dataclass
class FixOutcome:
    issue: Issue
    fixed: bool
    reason: str = ""


@dataclass
class FixReport:
    outcomes: list[FixOutcome] = field(default_factory=list)

    @property
    def fixed(self) -> list[Issue]:
        return [o.issue for o in self.outcomes if o.fixed]

    @property
    def unresolved(self) -> list[FixOutcome]:
        return [o for o in self.outcomes if not o.fixed]
