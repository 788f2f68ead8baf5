"""Tests for sprintflow.agents.context module."""

from sprintflow.agents.context import ContextBuilder, build_sprint_context
from sprintflow.data.models import IntegrationPoints, Phase, Sprint, Task


def _sprint():
    task = Task.from_dict({
        "id": "1.1",
        "title": "Add login endpoint",
        "effort": "6h",
        "priority": "HIGH",
        "business_rules": ["Lock account after 5 failed attempts"],
        "acceptance_criteria": ["POST /login returns a session token"],
        "testing": {"unit_tests": {"required": True, "reason": "auth rules"}},
        "doc_reference": "docs/auth.md",
    })
    return Sprint(
        id=4,
        goal="Authentication",
        phase=Phase.WRITE_CODE,
        total_effort="6h",
        max_effort="8h",
        deliverables=["Login API"],
        tasks=[task],
        integration_points=IntegrationPoints(modifies=["src/app.py"], creates=["src/auth.py"]),
    )


class TestContextBuilder:
    """Tests for ContextBuilder."""

    def test_sections_render_in_order(self):
        text = ContextBuilder().section("One", "first").section("Two", "second").build()
        assert text == "# One\n\nfirst\n\n# Two\n\nsecond"

    def test_sprint_section(self):
        text = ContextBuilder().sprint(_sprint()).build()
        assert "Sprint #4: Authentication" in text
        assert "Phase: WRITE_CODE" in text
        assert "- Add login endpoint (6h)" in text
        assert "- Login API" in text

    def test_task_details(self):
        text = ContextBuilder().sprint(_sprint()).build()
        assert "## 1.1: Add login endpoint" in text
        assert "Priority: HIGH" in text
        assert "- Lock account after 5 failed attempts" in text
        assert "Tests required: unit (auth rules)" in text
        assert "- docs/auth.md" in text

    def test_scope_section(self):
        text = ContextBuilder().sprint(_sprint()).build()
        assert "# Scope" in text
        assert "Modifies:\n- src/app.py" in text
        assert "Creates:\n- src/auth.py" in text

    def test_no_tasks(self):
        text = ContextBuilder().sprint(Sprint(id=1, goal="Empty")).build()
        assert "Tasks:\n- (none)" in text
        assert "# Scope" not in text


class TestBuildSprintContext:
    """Tests for build_sprint_context()."""

    def test_previous_failure_before_instructions(self):
        text = build_sprint_context(_sprint(), "Fix the tests.", "2 test(s) failed")
        assert text.index("# Previous Attempt Failed") < text.index("# Instructions")
        assert "2 test(s) failed" in text

    def test_deterministic(self):
        assert build_sprint_context(_sprint(), "Go.") == build_sprint_context(_sprint(), "Go.")

    def test_without_extras(self):
        text = build_sprint_context(_sprint())
        assert "# Instructions" not in text
        assert "# Previous Attempt Failed" not in text
