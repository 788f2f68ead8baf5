"""What a gate run looks at: one sprint, its workspace, and a set of files."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from sprintflow.data.models import Phase, Sprint
from sprintflow.lib.constants import STATE_DIR_NAME
from sprintflow.lib.validate import SchemaRegistry

SKIP_DIRS = {".git", STATE_DIR_NAME, "node_modules", ".venv", "venv", "__pycache__", ".mypy_cache", ".pytest_cache", "dist", "build"}


@dataclass
class GateContext:
    """Inputs for one pipeline run.

    paths are workspace-relative POSIX paths; gates only read files from disk,
    so two runs over unchanged files report the same issues.
    """
    sprint: Sprint
    root: Path
    paths: list[str] = field(default_factory=list)
    schemas: SchemaRegistry = field(default_factory=SchemaRegistry)
    sprint_phases: dict[int, Phase] | None = None  # every sprint in the project, by id
    _all_files: list[str] | None = field(default=None, repr=False)

    def __post_init__(self):
        self.paths = sorted(set(self.paths))

    def read(self, rel_path: str) -> str | None:
        try:
            return (self.root / rel_path).read_text()
        except (OSError, UnicodeDecodeError):
            return None

    def write(self, rel_path: str, text: str) -> None:
        (self.root / rel_path).write_text(text)

    def exists(self, rel_path: str) -> bool:
        return (self.root / rel_path).exists()

    def all_files(self) -> list[str]:
        """Every file in the workspace outside vendored and VCS directories."""
        if self._all_files is None:
            found = []
            for dirpath, dirnames, filenames in os.walk(self.root):
                dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
                base = Path(dirpath).relative_to(self.root)
                for name in filenames:
                    found.append((base / name).as_posix())
            self._all_files = sorted(found)
        return self._all_files
