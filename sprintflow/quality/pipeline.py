"""
Quality gate pipeline.

Runs the gates in order and stops after the first gate that reports a
critical issue: later gates assume the earlier ones passed (the format gate
cannot reason about a file that does not parse).
"""

import logging

from sprintflow.quality.context import GateContext
from sprintflow.quality.gates import FormatGate, QualityGate, SecurityGate, SyntaxGate, default_gates
from sprintflow.quality.issues import FixOutcome, FixReport, Issue, Report, Severity

logger = logging.getLogger(__name__)

# Gates that can judge a single file in isolation
WRITE_GATES = (SyntaxGate, FormatGate, SecurityGate)


class QualityGatePipeline:
    """Ordered gates plus auto-fix."""

    def __init__(self, gates: list[QualityGate] | None = None):
        self.gates = gates if gates is not None else default_gates()

    def gate(self, name: str) -> QualityGate:
        for gate in self.gates:
            if gate.name == name:
                return gate
        raise KeyError(name)

    def run_all(self, ctx: GateContext, gates: list[str] | None = None) -> Report:
        """Run gates in order; halt after the first with a critical issue.

        Args:
            gates: restrict the run to these gate names (order is unchanged)
        """
        report = Report()
        for gate in self.gates:
            if gates is not None and gate.name not in gates:
                continue
            result = gate.check(ctx)
            report.results.append(result)
            logger.debug(f"[GATE] {gate.name}: {len(result.issues)} issue(s)")
            if result.has_critical:
                report.halted_at = gate.name
                logger.info(f"[GATE] sprint {ctx.sprint.id}: halted at {gate.name}")
                break
        return report

    def auto_fix(self, ctx: GateContext, report: Report | None = None) -> FixReport:
        """Apply fixes for every auto-fixable issue, then re-check each touched gate."""
        if report is None:
            report = self.run_all(ctx)

        fix_report = FixReport()
        for result in report.results:
            fixable = [i for i in result.issues if i.auto_fixable]
            if not fixable:
                continue
            gate = self.gate(result.gate)

            applied: list[Issue] = []
            for issue in fixable:
                if gate.fix(ctx, issue):
                    applied.append(issue)
                else:
                    fix_report.outcomes.append(FixOutcome(issue, fixed=False, reason="fix could not be applied safely"))

            if not applied:
                continue
            remaining = {i.key for i in gate.check(ctx).issues}
            for issue in applied:
                if issue.key in remaining:
                    fix_report.outcomes.append(FixOutcome(issue, fixed=False, reason="still reported after fix"))
                else:
                    fix_report.outcomes.append(FixOutcome(issue, fixed=True))

        if fix_report.outcomes:
            logger.info(
                f"[GATE] sprint {ctx.sprint.id}: auto-fix resolved {len(fix_report.fixed)}, "
                f"left {len(fix_report.unresolved)}"
            )
        return fix_report

    def check_and_fix(
        self,
        ctx: GateContext,
        gates: list[str] | None = None,
        auto_fix: bool = True,
    ) -> tuple[Report, list[FixReport]]:
        """Run the gates, auto-fixing and re-running while fixes make progress.

        Every auto-fixable finding is fixed, blocking or not. Because the
        pipeline halts at the first critical gate, fixing one gate can uncover
        fixable findings in the next, so this loops.
        """
        report = self.run_all(ctx, gates)
        fixes: list[FixReport] = []
        rounds = 0
        while auto_fix and report.fixable and rounds < len(self.gates):
            fix_report = self.auto_fix(ctx, report)
            fixes.append(fix_report)
            rounds += 1
            if not fix_report.fixed:
                break
            report = self.run_all(ctx, gates)
        return report, fixes

    def check_write(self, rel_path: str, content: str, ctx: GateContext) -> list[Issue]:
        """Inline checks for one pending write, before it touches disk."""
        issues: list[Issue] = []
        for gate in self.gates:
            if isinstance(gate, WRITE_GATES):
                issues.extend(gate.check_artifact(rel_path, content, ctx))
        return sorted(set(issues), key=Issue.sort_key)

    def write_check(self, ctx: GateContext):
        """Adapter for AgentChannel: reason to reject a write, or None."""
        def check(rel_path: str, content: str) -> str | None:
            critical = [i for i in self.check_write(rel_path, content, ctx) if i.severity is Severity.CRITICAL]
            if not critical:
                return None
            return "; ".join(f"{i.message} ({i.category})" for i in critical)
        return check
