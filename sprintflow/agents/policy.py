"""
Tool-use policy for agent subprocesses.

An agent may read anything inside its workspace, create new files, and
change files the sprint declared in its integration points. It may not
reach outside the workspace, delete undeclared files, or run commands that
destroy history or the working tree.
"""

import fnmatch
import re
from pathlib import Path, PurePosixPath

from sprintflow.agents.events import ToolUse

DELETE_TOOLS = {"delete", "delete_file", "remove", "rm", "unlink"}
WRITE_TOOLS = {"write", "write_file", "edit", "edit_file", "multiedit", "create", "patch"}
SHELL_TOOLS = {"bash", "shell", "run", "exec", "command", "terminal"}

DESTRUCTIVE_COMMANDS = [
    (re.compile(r'\brm\s+(-\w*r\w*f|-\w*f\w*r|-r\s+-f|-f\s+-r|--recursive\s+--force|--force\s+--recursive)\b'), "rm -rf"),
    (re.compile(r'\bgit\s+push\b.*(\s--force\b|\s-f\b|\s--force-with-lease\b)'), "force push"),
    (re.compile(r'\bgit\s+reset\s+--hard\b'), "git reset --hard"),
    (re.compile(r'\bgit\s+clean\s+-\w*f'), "git clean"),
    (re.compile(r'\bgit\s+(branch\s+-D|checkout\s+--\s+\.)'), "git history rewrite"),
    (re.compile(r'\bmkfs(\.\w+)?\b|\bdd\s+if='), "disk overwrite"),
]


class ToolPolicy:
    """Decides whether one agent action is allowed in a workspace."""

    def __init__(self, workspace_root: Path, scope: list[str] | None = None):
        self.workspace_root = workspace_root.resolve()
        self.scope = [s.strip().rstrip("/") for s in (scope or []) if s.strip()]

    def relative(self, target: str) -> str | None:
        """Workspace-relative POSIX path for target, or None if it escapes."""
        if "\x00" in target:
            return None
        candidate = Path(target)
        if not candidate.is_absolute():
            candidate = self.workspace_root / candidate
        try:
            rel = candidate.resolve().relative_to(self.workspace_root)
        except (ValueError, OSError):
            # escapes the workspace, or the OS cannot resolve it
            return None
        return PurePosixPath(rel).as_posix()

    def in_scope(self, rel_path: str) -> bool:
        for entry in self.scope:
            if rel_path == entry or rel_path.startswith(entry + "/"):
                return True
            if fnmatch.fnmatch(rel_path, entry):
                return True
        return False

    def check_write_path(self, path: str) -> str | None:
        """Reason a file write must be refused, or None."""
        rel = self.relative(path)
        if rel is None or rel == ".":
            return f"write to {path!r} escapes the workspace"
        if rel == ".git" or rel.startswith(".git/"):
            return f"write to {path!r} touches git internals"
        if self.scope and (self.workspace_root / rel).exists() and not self.in_scope(rel):
            return f"overwrite of {rel!r} is outside the sprint's declared scope"
        return None

    def check_tool_use(self, event: ToolUse) -> str | None:
        """Reason a tool use must be refused, or None."""
        tool = event.tool.strip().lower()

        if tool in SHELL_TOOLS:
            for pattern, label in DESTRUCTIVE_COMMANDS:
                if pattern.search(event.target):
                    return f"destructive command ({label}): {event.target!r}"
            return None

        if tool in DELETE_TOOLS:
            rel = self.relative(event.target)
            if rel is None:
                return f"delete of {event.target!r} escapes the workspace"
            if not self.in_scope(rel):
                return f"delete of {rel!r} is outside the sprint's declared scope"
            return None

        if tool in WRITE_TOOLS:
            return self.check_write_path(event.target)

        return None
