"""
Context bundles handed to agents over stdin.

A bundle is a sequence of markdown sections ("# Title" followed by content),
built in a fixed order so the same sprint always yields the same text.
"""

from sprintflow.data.models import Sprint, Task


def _bullets(items) -> str:
    return "\n".join(f"- {item}" for item in items) if items else "- (none)"


def _task_block(task: Task) -> str:
    lines = [f"## {task.id}: {task.title}", ""]
    lines.append(f"Priority: {task.priority.value} | Effort: {task.effort} | Feature: {task.feature}")
    if task.description:
        lines += ["", task.description]
    if task.business_rules:
        lines += ["", "Business rules:", _bullets(task.business_rules)]
    if task.acceptance_criteria:
        lines += ["", "Acceptance criteria:", _bullets(task.acceptance_criteria)]

    required = []
    for label, req in (
        ("unit", task.testing.unit_tests),
        ("integration", task.testing.integration_tests),
        ("e2e", task.testing.e2e_tests),
    ):
        if req and req.required:
            required.append(f"{label} ({req.reason})" if req.reason else label)
    if required:
        lines += ["", f"Tests required: {', '.join(required)}"]

    docs = list(task.docs)
    if task.doc_reference:
        docs.insert(0, task.doc_reference)
    if docs:
        lines += ["", "Docs:", _bullets(docs)]
    return "\n".join(lines)


class ContextBuilder:
    """Accumulates titled sections and renders them as one markdown document."""

    def __init__(self):
        self.sections: list[tuple[str, str]] = []

    def section(self, title: str, content: str) -> "ContextBuilder":
        self.sections.append((title, content))
        return self

    def sprint(self, sprint: Sprint) -> "ContextBuilder":
        summary = (
            f"Sprint #{sprint.id}: {sprint.goal}\n\n"
            f"Phase: {sprint.phase.value}\n"
            f"Total Effort: {sprint.total_effort}\n"
            f"Max Effort: {sprint.max_effort}\n\n"
            f"Deliverables:\n{_bullets(sprint.deliverables)}\n\n"
            f"Tasks:\n{_bullets([f'{t.title} ({t.effort})' for t in sprint.tasks])}"
        )
        self.section("Sprint Details", summary)

        if sprint.tasks:
            self.section("Tasks", "\n\n".join(_task_block(t) for t in sprint.tasks))

        points = sprint.integration_points
        if not points.is_empty():
            parts = []
            for label, paths in (
                ("Modifies", points.modifies),
                ("Creates", points.creates),
                ("Existing tests to keep green", points.tests_existing),
                ("Patterns to follow", points.patterns),
            ):
                if paths:
                    parts.append(f"{label}:\n{_bullets(paths)}")
            self.section("Scope", "\n\n".join(parts))
        return self

    def instruction(self, instruction: str) -> "ContextBuilder":
        return self.section("Instructions", instruction)

    def previous_failure(self, reason: str) -> "ContextBuilder":
        return self.section("Previous Attempt Failed", reason)

    def build(self) -> str:
        return "\n\n".join(f"# {title}\n\n{content}" for title, content in self.sections)


def build_sprint_context(
    sprint: Sprint,
    instructions: str | None = None,
    previous_failure: str | None = None,
) -> str:
    """Context bundle for one phase of a sprint."""
    builder = ContextBuilder().sprint(sprint)
    if previous_failure:
        builder.previous_failure(previous_failure)
    if instructions:
        builder.instruction(instructions)
    return builder.build()
