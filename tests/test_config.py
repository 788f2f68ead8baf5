"""Tests for sprintflow.lib.config and sprintflow.lib.envparse modules."""

import pytest
from unittest.mock import patch

from sprintflow.lib import envparse
from sprintflow.lib.config import (
    RetryPolicy,
    find_repo_root,
    init_state_dir,
    load_project_config,
)


class TestLoadEnv:
    """Tests for the safe env parser."""

    def test_parses_quoted_and_bare_values(self, tmp_path):
        path = tmp_path / "project.env"
        path.write_text('# comment\nPROJECT_NAME="demo"\nMAX_ITERATIONS=20\n\nMODEL=\'fast\'\n')
        assert envparse.load_env(path) == {"PROJECT_NAME": "demo", "MAX_ITERATIONS": "20", "MODEL": "fast"}

    def test_allows_pipes_and_and(self, tmp_path):
        """Test commands commonly chain with && and |."""
        path = tmp_path / "project.env"
        path.write_text('UNIT_TEST_COMMAND="make build && pytest -q | tee out.txt"\n')
        assert envparse.load_env(path)["UNIT_TEST_COMMAND"] == "make build && pytest -q | tee out.txt"

    @pytest.mark.parametrize("value", ['"$(whoami)"', '"`id`"', '"${HOME}"', '"a; rm x"'])
    def test_rejects_shell_expansion(self, tmp_path, value):
        path = tmp_path / "project.env"
        path.write_text(f"UNIT_TEST_COMMAND={value}\n")
        with pytest.raises(ValueError, match="Forbidden pattern"):
            envparse.load_env(path)

    def test_rejects_line_without_equals(self, tmp_path):
        path = tmp_path / "project.env"
        path.write_text("JUST_A_KEY\n")
        with pytest.raises(ValueError, match="no '='"):
            envparse.load_env(path)

    def test_rejects_lowercase_key(self, tmp_path):
        path = tmp_path / "project.env"
        path.write_text("name=demo\n")
        with pytest.raises(ValueError, match="Invalid key"):
            envparse.load_env(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            envparse.load_env(tmp_path / "nope.env")


class TestTypedGetters:
    """Tests for get_int and get_bool."""

    def test_get_int_default_when_missing(self):
        assert envparse.get_int({}, "X", 7) == 7

    def test_get_int_invalid_warns(self, caplog):
        assert envparse.get_int({"X": "ten"}, "X", 7) == 7
        assert "Invalid integer for X" in caplog.text

    def test_get_int_below_minimum(self, caplog):
        assert envparse.get_int({"X": "0"}, "X", 7, minimum=1) == 7
        assert "below minimum" in caplog.text

    @pytest.mark.parametrize("raw,expected", [("true", True), ("YES", True), ("1", True), ("false", False), ("off", False)])
    def test_get_bool(self, raw, expected):
        assert envparse.get_bool({"B": raw}, "B", not expected) is expected


class TestLoadProjectConfig:
    """Tests for load_project_config."""

    def test_defaults_without_env_file(self, tmp_path):
        config = load_project_config(tmp_path)
        assert config.name == tmp_path.name
        assert config.mainline == "main"
        assert config.max_iterations == 50
        assert config.agent_timeout == 900
        assert config.retries == RetryPolicy(review_fix=5, unit_fix=3, e2e_fix=3)
        assert config.auto_fix is True
        assert config.services_enabled is False
        assert config.state_dir == tmp_path.resolve() / ".sprintflow"

    def test_worktrees_dir_defaults_to_sibling(self, tmp_path):
        repo = tmp_path / "app"
        repo.mkdir()
        config = load_project_config(repo)
        assert config.worktrees_dir == tmp_path.resolve() / "app-worktrees"

    def test_reads_env_file(self, tmp_path):
        state = tmp_path / ".sprintflow"
        state.mkdir()
        (state / "project.env").write_text(
            'PROJECT_NAME="shop"\nMAINLINE_BRANCH="trunk"\nUNIT_FIX_RETRIES=4\n'
            'UNIT_TEST_COMMAND="pytest -q"\nAUTO_FIX=false\nWORKTREES_DIR="../wt"\n'
        )
        config = load_project_config(tmp_path)
        assert config.name == "shop"
        assert config.mainline == "trunk"
        assert config.retries.unit_fix == 4
        assert config.retries.review_fix == 5
        assert config.unit_test_command == "pytest -q"
        assert config.auto_fix is False
        assert config.worktrees_dir == (tmp_path / "../wt").resolve()

    @patch("sprintflow.lib.config.envparse.load_env")
    def test_invalid_integer_falls_back(self, mock_load_env, tmp_path, caplog):
        state = tmp_path / ".sprintflow"
        state.mkdir()
        (state / "project.env").write_text("")
        mock_load_env.return_value = {"MAX_ITERATIONS": "many"}
        config = load_project_config(tmp_path)
        assert config.max_iterations == 50
        assert "Invalid integer for MAX_ITERATIONS" in caplog.text

    def test_paths(self, tmp_path):
        config = load_project_config(tmp_path)
        assert config.sprints_file == config.state_dir / "SPRINTS.yml"
        assert config.runs_dir == config.state_dir / "runs"


class TestInitStateDir:
    """Tests for init_state_dir and find_repo_root."""

    def test_creates_ignored_state_dir(self, tmp_path):
        state = init_state_dir(tmp_path, mainline="trunk")
        assert (state / ".gitignore").read_text() == "*\n"
        env = envparse.load_env(state / "project.env")
        assert env["MAINLINE_BRANCH"] == "trunk"
        assert env["PROJECT_NAME"] == tmp_path.name

    def test_keeps_existing_env(self, tmp_path):
        state = tmp_path / ".sprintflow"
        state.mkdir()
        (state / "project.env").write_text('PROJECT_NAME="kept"\n')
        init_state_dir(tmp_path)
        assert (state / "project.env").read_text() == 'PROJECT_NAME="kept"\n'

    def test_default_env_loads(self, tmp_path):
        """The generated project.env passes the safe parser."""
        init_state_dir(tmp_path)
        config = load_project_config(tmp_path)
        assert config.unit_test_command == "make test"

    def test_find_repo_root_walks_up(self, tmp_path):
        init_state_dir(tmp_path)
        nested = tmp_path / "src" / "pkg"
        nested.mkdir(parents=True)
        assert find_repo_root(nested) == tmp_path.resolve()

