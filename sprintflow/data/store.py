"""
Persistence for SPRINTS.yml.

The file holds a project block and the list of sprints:

    project:
      name: shop
      total_sprints: 2
      current_sprint: 1
      last_updated: "2026-01-01T10:00:00+00:00"
    sprints:
      - id: 1
        goal: Checkout flow
        status: WRITE_CODE
        ...

Every write is validated against the sprints schema first and lands through a
temp file + os.replace, under a file lock, so a crash never leaves a torn file
and parallel sprints never lose each other's updates.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from sprintflow.data.models import Sprint, iso_dates, now_iso
from sprintflow.lib.validate import ValidationError, validate, validate_before_write
from sprintflow.runner.locking import store_lock

logger = logging.getLogger(__name__)

SCHEMA_NAME = "sprints"


class StoreError(Exception):
    """SPRINTS.yml is missing, unreadable or invalid."""
    pass


class SprintNotFound(StoreError):
    def __init__(self, sprint_id: int):
        self.sprint_id = sprint_id
        super().__init__(f"Sprint {sprint_id} not found")


def atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix=".tmp-", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            os.unlink(temp_path)


class SprintStore:
    """Reads and writes sprint records in one SPRINTS.yml file."""

    def __init__(self, path: Path):
        self.path = path

    @property
    def state_dir(self) -> Path:
        return self.path.parent

    def exists(self) -> bool:
        return self.path.exists()

    def _read_document(self) -> dict[str, Any]:
        if not self.path.exists():
            raise StoreError(f"No sprint state at {self.path}")
        try:
            data = yaml.safe_load(self.path.read_text())
        except yaml.YAMLError as e:
            raise StoreError(f"Invalid YAML in {self.path}: {e}") from None
        if not isinstance(data, dict):
            raise StoreError(f"{self.path} does not contain a mapping")

        data = iso_dates(data)
        data.setdefault("sprints", [])
        try:
            validate(data, SCHEMA_NAME)
        except ValidationError as e:
            raise StoreError(f"{self.path}: {e}") from None
        return data

    def _write_document(self, data: dict[str, Any]) -> None:
        try:
            validate_before_write(data, SCHEMA_NAME, self.path)
        except ValidationError as e:
            raise StoreError(str(e)) from None
        text = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
        atomic_write_text(self.path, text)

    def project(self) -> dict[str, Any]:
        return dict(self._read_document().get("project") or {})

    def load(self) -> list[Sprint]:
        """Load every sprint, ordered by id."""
        data = self._read_document()
        sprints = [Sprint.from_dict(entry) for entry in data["sprints"]]
        return sorted(sprints, key=lambda s: s.id)

    def get(self, sprint_id: int) -> Sprint:
        for sprint in self.load():
            if sprint.id == sprint_id:
                return sprint
        raise SprintNotFound(sprint_id)

    def initialize(self, project: dict[str, Any], sprints: list[Sprint]) -> None:
        """Write a fresh SPRINTS.yml. Overwrites any existing file."""
        with store_lock(self.state_dir):
            project = dict(project)
            project.setdefault("version", "1.0.0")
            project["total_sprints"] = len(sprints)
            project["current_sprint"] = None
            project["last_updated"] = now_iso()
            self._write_document({
                "project": project,
                "sprints": [s.to_dict() for s in sorted(sprints, key=lambda s: s.id)],
            })

    def save_sprint(self, sprint: Sprint) -> None:
        """Replace one sprint record atomically.

        Raises:
            SprintNotFound: if the file has no record with this id
            StoreError: if the result would not validate
        """
        with store_lock(self.state_dir):
            data = self._read_document()
            sprint.touch()
            for index, entry in enumerate(data["sprints"]):
                if int(entry.get("id", -1)) == sprint.id:
                    data["sprints"][index] = sprint.to_dict()
                    break
            else:
                raise SprintNotFound(sprint.id)

            project = data.setdefault("project", {})
            project["current_sprint"] = sprint.id
            project["last_updated"] = sprint.last_updated
            project["total_sprints"] = len(data["sprints"])
            self._write_document(data)

        logger.debug(f"[STORE] sprint {sprint.id} saved at {sprint.phase.value}")
