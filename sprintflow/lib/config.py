"""
Configuration loaders for sprintflow.

Project settings live in <repo>/.sprintflow/project.env as KEY=value lines.
A missing file means every setting takes its default.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from . import envparse
from .constants import STATE_DIR_NAME, PROJECT_ENV_FILE, SPRINTS_FILE

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 50
DEFAULT_AGENT_TIMEOUT = 900
DEFAULT_TEST_TIMEOUT = 600
DEFAULT_BASE_PORT = 3000


@dataclass
class RetryPolicy:
    """Retry ceilings for the retriable fix phases."""
    review_fix: int = 5
    unit_fix: int = 3
    e2e_fix: int = 3


@dataclass
class ProjectConfig:
    """Project-level configuration from project.env"""
    name: str
    repo_path: Path
    state_dir: Path
    mainline: str = "main"
    worktrees_dir: Path | None = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    parallel_workers: int = 1
    agent_timeout: int = DEFAULT_AGENT_TIMEOUT
    retries: RetryPolicy = field(default_factory=RetryPolicy)
    unit_test_command: str = "make test"
    e2e_test_command: str = "make e2e"
    test_timeout: int = DEFAULT_TEST_TIMEOUT
    auto_fix: bool = True
    services_enabled: bool = False
    base_port: int = DEFAULT_BASE_PORT
    model: str = ""

    def __post_init__(self):
        if self.worktrees_dir is None:
            self.worktrees_dir = self.repo_path.parent / f"{self.repo_path.name}-worktrees"

    @property
    def sprints_file(self) -> Path:
        return self.state_dir / SPRINTS_FILE

    @property
    def runs_dir(self) -> Path:
        return self.state_dir / "runs"

    @property
    def schemas_dir(self) -> Path:
        return self.state_dir / "schemas"


def find_repo_root(start: Path) -> Path | None:
    """Walk up from start looking for a directory holding .sprintflow/."""
    current = start.resolve()
    for candidate in [current, *current.parents]:
        if (candidate / STATE_DIR_NAME).is_dir():
            return candidate
    return None


def load_project_config(repo_path: Path) -> ProjectConfig:
    """Load .sprintflow/project.env for a repo and return ProjectConfig."""
    repo_path = repo_path.resolve()
    state_dir = repo_path / STATE_DIR_NAME
    env_path = state_dir / PROJECT_ENV_FILE

    if env_path.exists():
        env = envparse.load_env(env_path)
    else:
        logger.debug(f"No {env_path}, using defaults")
        env = {}

    worktrees = env.get("WORKTREES_DIR")
    worktrees_dir = None
    if worktrees:
        worktrees_dir = Path(worktrees)
        if not worktrees_dir.is_absolute():
            worktrees_dir = (repo_path / worktrees_dir).resolve()

    return ProjectConfig(
        name=env.get("PROJECT_NAME", repo_path.name),
        repo_path=repo_path,
        state_dir=state_dir,
        mainline=env.get("MAINLINE_BRANCH", "main"),
        worktrees_dir=worktrees_dir,
        max_iterations=envparse.get_int(env, "MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS, minimum=1),
        parallel_workers=envparse.get_int(env, "PARALLEL_WORKERS", 1, minimum=1),
        agent_timeout=envparse.get_int(env, "AGENT_TIMEOUT", DEFAULT_AGENT_TIMEOUT, minimum=1),
        retries=RetryPolicy(
            review_fix=envparse.get_int(env, "REVIEW_FIX_RETRIES", 5, minimum=1),
            unit_fix=envparse.get_int(env, "UNIT_FIX_RETRIES", 3, minimum=1),
            e2e_fix=envparse.get_int(env, "E2E_FIX_RETRIES", 3, minimum=1),
        ),
        unit_test_command=env.get("UNIT_TEST_COMMAND", "make test"),
        e2e_test_command=env.get("E2E_TEST_COMMAND", "make e2e"),
        test_timeout=envparse.get_int(env, "TEST_TIMEOUT", DEFAULT_TEST_TIMEOUT, minimum=1),
        auto_fix=envparse.get_bool(env, "AUTO_FIX", True),
        services_enabled=envparse.get_bool(env, "SERVICES_ENABLED", False),
        base_port=envparse.get_int(env, "BASE_PORT", DEFAULT_BASE_PORT, minimum=1),
        model=env.get("MODEL", ""),
    )


DEFAULT_PROJECT_ENV = """\
# sprintflow project settings
PROJECT_NAME="{name}"
MAINLINE_BRANCH="{mainline}"
MAX_ITERATIONS=50
PARALLEL_WORKERS=1
AGENT_TIMEOUT=900
REVIEW_FIX_RETRIES=5
UNIT_FIX_RETRIES=3
E2E_FIX_RETRIES=3
UNIT_TEST_COMMAND="make test"
E2E_TEST_COMMAND="make e2e"
TEST_TIMEOUT=600
AUTO_FIX=true
SERVICES_ENABLED=false
BASE_PORT=3000
"""


def init_state_dir(repo_path: Path, mainline: str = "main") -> Path:
    """Create .sprintflow/ with a default project.env.

    The directory ignores itself so orchestrator state never dirties the
    mainline checkout.
    """
    state_dir = repo_path / STATE_DIR_NAME
    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / ".gitignore").write_text("*\n")
    env_path = state_dir / PROJECT_ENV_FILE
    if not env_path.exists():
        env_path.write_text(DEFAULT_PROJECT_ENV.format(name=repo_path.name, mainline=mainline))
    return state_dir
