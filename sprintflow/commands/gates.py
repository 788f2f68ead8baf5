"""
sf gates - Run the quality gate pipeline over a sprint's changes.
"""

from sprintflow.data.store import SprintNotFound
from sprintflow.lib.config import ProjectConfig
from sprintflow.lib.constants import EXIT_ERROR, EXIT_NOT_FOUND, EXIT_SUCCESS
from sprintflow.workflow.orchestrator import Orchestrator


def cmd_gates(args, config: ProjectConfig) -> int:
    orchestrator = Orchestrator.from_config(config)
    try:
        report = orchestrator.check_gates(args.id, auto_fix=args.fix)
    except SprintNotFound:
        print(f"ERROR: Sprint {args.id} not found")
        return EXIT_NOT_FOUND

    for result in report.results:
        status = "PASS" if result.passed else "FAIL"
        print(f"{result.gate:<12} {status}  ({len(result.issues)} issue(s))")
        for issue in result.issues:
            print(f"  {issue}")
    if report.halted_at:
        print()
        print(f"Stopped after {report.halted_at}: critical issues must be fixed first.")

    print()
    print(report.summary())
    return EXIT_ERROR if report.blocking else EXIT_SUCCESS
