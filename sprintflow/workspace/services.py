"""
Per-workspace auxiliary services.

When a workspace carries a compose file, each sprint gets its own compose
project (sprint-<id>) and its own host port, so parallel sprints can run
their stacks side by side. The port is handed to compose through the PORT
environment variable; compose files are expected to reference ${PORT}.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Callable

from sprintflow.lib.constants import branch_for

logger = logging.getLogger(__name__)

COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")
PORT_STRIDE = 10
COMPOSE_TIMEOUT = 300


class ServiceError(Exception):
    """Provisioning auxiliary services failed."""
    pass


@dataclass
class ServiceHandle:
    """What was started for a workspace, enough to tear it down later."""
    project: str
    port: int
    compose_file: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> "ServiceHandle | None":
        if not data:
            return None
        return cls(project=data["project"], port=int(data["port"]), compose_file=data["compose_file"])


def port_for(sprint_id: int, base_port: int) -> int:
    return base_port + sprint_id * PORT_STRIDE


def find_compose_file(root: Path) -> Path | None:
    for name in COMPOSE_FILES:
        candidate = root / name
        if candidate.exists():
            return candidate
    return None


class ServiceManager:
    """Starts and stops docker compose stacks for workspaces."""

    def __init__(
        self,
        enabled: bool = False,
        base_port: int = 3000,
        env_file: Path | None = None,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.enabled = enabled
        self.base_port = base_port
        self.env_file = env_file
        self._run = run

    def _compose(self, handle: ServiceHandle, root: Path, *args: str) -> subprocess.CompletedProcess:
        cmd = ["docker", "compose", "-p", handle.project, "-f", handle.compose_file]
        if self.env_file and self.env_file.exists():
            cmd += ["--env-file", str(self.env_file)]
        cmd += list(args)
        env = {**os.environ, "PORT": str(handle.port)}
        return self._run(
            cmd,
            cwd=str(root),
            env=env,
            capture_output=True,
            text=True,
            timeout=COMPOSE_TIMEOUT,
        )

    def handle_for(self, sprint_id: int, root: Path) -> ServiceHandle | None:
        """The stack a workspace at root would run, or None without one."""
        if not self.enabled:
            return None
        compose_file = find_compose_file(root)
        if compose_file is None:
            return None
        return ServiceHandle(
            project=branch_for(sprint_id),
            port=port_for(sprint_id, self.base_port),
            compose_file=compose_file.name,
        )

    def provision(self, sprint_id: int, root: Path) -> ServiceHandle | None:
        """Start the workspace's compose stack, if there is one.

        Raises:
            ServiceError: if docker is missing or compose fails
        """
        handle = self.handle_for(sprint_id, root)
        if handle is None:
            return None
        if shutil.which("docker") is None:
            raise ServiceError("docker not found on PATH but workspace has a compose file")

        try:
            result = self._compose(handle, root, "up", "-d")
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ServiceError(f"docker compose up failed: {e}") from e
        if result.returncode != 0:
            raise ServiceError(f"docker compose up failed: {result.stderr.strip()}")

        logger.info(f"[SERVICES] {handle.project} up on port {handle.port}")
        return handle

    def teardown(self, handle: ServiceHandle | None, root: Path) -> bool:
        """Stop and remove a stack. Returns False if compose reported failure."""
        if handle is None:
            return True
        if not root.exists():
            logger.warning(f"[SERVICES] {handle.project}: workspace gone, cannot run compose down")
            return False
        try:
            result = self._compose(handle, root, "down", "-v")
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"[SERVICES] {handle.project}: compose down failed: {e}")
            return False
        if result.returncode != 0:
            logger.warning(f"[SERVICES] {handle.project}: compose down failed: {result.stderr.strip()}")
            return False
        logger.info(f"[SERVICES] {handle.project} down")
        return True
