"""Tests for the sf command line."""

import pytest

from sprintflow.cli import main
from sprintflow.data.models import Phase
from sprintflow.data.store import SprintStore
from sprintflow.lib.constants import EXIT_CONFIG, EXIT_ERROR, EXIT_NOT_FOUND, EXIT_SUCCESS

PLAN = """\
project:
  name: shop
sprints:
- id: 1
  goal: Catalog
  status: PENDING
  must_complete_first: true
  tasks:
  - id: "1.1"
    title: List products
    business_rules: [Hide discontinued products]
- id: 2
  goal: Checkout
  status: PENDING
  dependencies: [1]
"""


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "shop"
    (root / ".git").mkdir(parents=True)
    return root


@pytest.fixture
def initialized(repo, tmp_path):
    plan = tmp_path / "plan.yml"
    plan.write_text(PLAN)
    assert main(["-C", str(repo), "init", "--plan", str(plan)]) == EXIT_SUCCESS
    return repo


class TestInit:
    """Tests for sf init."""

    def test_requires_git_repo(self, tmp_path, capsys):
        assert main(["-C", str(tmp_path), "init"]) == EXIT_CONFIG
        assert "not a git repository" in capsys.readouterr().out

    def test_imports_plan(self, initialized, capsys):
        sprints = SprintStore(initialized / ".sprintflow" / "SPRINTS.yml").load()
        assert [s.goal for s in sprints] == ["Catalog", "Checkout"]
        assert (initialized / ".sprintflow" / "project.env").exists()
        assert (initialized / ".sprintflow" / ".gitignore").read_text() == "*\n"

    def test_refuses_to_replace_state(self, initialized, tmp_path, capsys):
        plan = tmp_path / "plan.yml"
        assert main(["-C", str(initialized), "init", "--plan", str(plan)]) == EXIT_ERROR
        assert "--force" in capsys.readouterr().out
        assert main(["-C", str(initialized), "init", "--plan", str(plan), "--force"]) == EXIT_SUCCESS

    def test_missing_plan(self, repo, tmp_path):
        assert main(["-C", str(repo), "init", "--plan", str(tmp_path / "nope.yml")]) == EXIT_NOT_FOUND

    def test_invalid_plan(self, repo, tmp_path, capsys):
        plan = tmp_path / "plan.yml"
        plan.write_text(PLAN.replace("status: PENDING", "status: SHIPPED", 1))
        assert main(["-C", str(repo), "init", "--plan", str(plan)]) == EXIT_CONFIG
        assert "SHIPPED" in capsys.readouterr().out

    def test_plan_with_bare_timestamps(self, repo, tmp_path):
        plan = tmp_path / "plan.yml"
        plan.write_text(PLAN.replace("  goal: Catalog\n", "  goal: Catalog\n  started: 2026-01-01T10:00:00Z\n"))
        assert main(["-C", str(repo), "init", "--plan", str(plan)]) == EXIT_SUCCESS
        sprint = SprintStore(repo / ".sprintflow" / "SPRINTS.yml").get(1)
        assert sprint.started == "2026-01-01T10:00:00+00:00"

    def test_without_plan(self, repo):
        assert main(["-C", str(repo), "init"]) == EXIT_SUCCESS
        assert SprintStore(repo / ".sprintflow" / "SPRINTS.yml").load() == []


class TestStatus:
    """Tests for sf status."""

    def test_lists_sprints(self, initialized, capsys):
        capsys.readouterr()
        assert main(["-C", str(initialized), "status"]) == EXIT_SUCCESS
        out = capsys.readouterr().out
        assert "*   1  PENDING" in out
        assert "    2  PENDING" in out
        assert "0/2 done, 0 blocked, 1 runnable (*)" in out

    def test_shows_blocked_reason(self, initialized, capsys):
        store = SprintStore(initialized / ".sprintflow" / "SPRINTS.yml")
        sprint = store.get(1)
        sprint.phase = Phase.BLOCKED
        sprint.blocked_reason = "WRITE_CODE failed (timeout): no output"
        store.save_sprint(sprint)

        main(["-C", str(initialized), "status"])
        assert "blocked: WRITE_CODE failed (timeout): no output" in capsys.readouterr().out

    def test_not_initialized(self, repo, capsys):
        (repo / ".sprintflow").mkdir()
        assert main(["-C", str(repo), "status"]) == EXIT_NOT_FOUND


class TestGates:
    """Tests for sf gates."""

    def test_reports_blocking_issues(self, initialized, capsys):
        (initialized / "catalog.py").write_text("def list_products(:\n")
        assert main(["-C", str(initialized), "gates", "1"]) == EXIT_ERROR
        out = capsys.readouterr().out
        assert "syntax       FAIL" in out
        assert "Stopped after syntax" in out

    def test_clean_repo(self, initialized):
        (initialized / "catalog.py").write_text("def list_products():\n    return []\n")
        assert main(["-C", str(initialized), "gates", "1"]) == EXIT_SUCCESS

    def test_unknown_sprint(self, initialized):
        assert main(["-C", str(initialized), "gates", "9"]) == EXIT_NOT_FOUND


class TestRollback:
    """Tests for sf rollback."""

    def test_reset_blocked_sprint(self, initialized, capsys):
        store = SprintStore(initialized / ".sprintflow" / "SPRINTS.yml")
        sprint = store.get(1)
        sprint.phase = Phase.BLOCKED
        sprint.blocked_reason = "stuck"
        store.save_sprint(sprint)

        assert main(["-C", str(initialized), "rollback", "1", "--reset"]) == EXIT_SUCCESS
        assert store.get(1).phase is Phase.PENDING
        assert "reset to PENDING" in capsys.readouterr().out


class TestRunExitCodes:
    """Tests for sf run result handling."""

    def test_worst_outcome_wins(self):
        from sprintflow.commands.run import exit_code_for
        from sprintflow.lib.constants import EXIT_BLOCKED, EXIT_MERGE_CONFLICT

        assert exit_code_for([]) == EXIT_SUCCESS
        assert exit_code_for([{"status": "done"}, {"status": "blocked"}]) == EXIT_BLOCKED
        assert exit_code_for([{"status": "blocked"}, {"status": "conflict"}]) == EXIT_MERGE_CONFLICT

    def test_internal_error_outranks_everything(self):
        from sprintflow.commands.run import exit_code_for

        results = [{"status": "locked"}, {"status": "error"}, {"status": "not_found"}, {"status": "conflict"}]
        assert exit_code_for(results) == EXIT_ERROR
        assert exit_code_for([{"status": "something-new"}, {"status": "done"}]) == EXIT_ERROR

    def test_nothing_runnable(self, initialized, capsys):
        store = SprintStore(initialized / ".sprintflow" / "SPRINTS.yml")
        for sprint in store.load():
            sprint.phase = Phase.DONE
            store.save_sprint(sprint)
        capsys.readouterr()

        assert main(["-C", str(initialized), "run"]) == EXIT_SUCCESS
        assert "Nothing to run" in capsys.readouterr().out


class TestRunRequest:
    """Tests for the Prefect flow parameters."""

    def test_defaults(self):
        from sprintflow.workflow.flows import SprintRunRequest

        request = SprintRunRequest(repo_path="/repo")
        assert request.sprint_ids == []
        assert request.workers == 1

    def test_workers_must_be_positive(self):
        from pydantic import ValidationError
        from sprintflow.workflow.flows import SprintRunRequest

        with pytest.raises(ValidationError):
            SprintRunRequest(repo_path="/repo", workers=0)
