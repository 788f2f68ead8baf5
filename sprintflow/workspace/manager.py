"""
Workspace isolation: one branch and one git worktree per sprint.

A workspace is claimed by creating its registry record with O_EXCL, so two
acquirers can never both own sprint-<id>. The registry record is the source
of truth for re-attaching after a crash and for rollback.

Only merge_and_release touches the mainline branch, and only while holding
the merge lock.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from sprintflow.data.models import now_iso
from sprintflow.data.store import atomic_write_text
from sprintflow.git import (
    add_worktree,
    branch_exists,
    checkout_branch,
    commit,
    delete_branch,
    get_changed_files,
    get_commit_sha,
    get_current_branch,
    get_diff_names,
    has_uncommitted_changes,
    merge_branch,
    prune_worktrees,
    remove_worktree,
    stage_all,
)
from sprintflow.lib.config import ProjectConfig
from sprintflow.lib.constants import branch_for
from sprintflow.runner.locking import merge_lock
from sprintflow.workspace.services import ServiceError, ServiceHandle, ServiceManager

logger = logging.getLogger(__name__)


class WorkspaceError(Exception):
    """A workspace operation failed."""
    pass


class WorkspaceExists(WorkspaceError):
    """The sprint already owns a workspace."""

    def __init__(self, sprint_id: int, detail: str = ""):
        self.sprint_id = sprint_id
        message = f"Workspace for sprint {sprint_id} already exists"
        super().__init__(f"{message}: {detail}" if detail else message)


class MergeConflict(WorkspaceError):
    """Merging the sprint branch into mainline conflicted. Nothing was changed."""

    def __init__(self, branch: str, files: list[str]):
        self.branch = branch
        self.files = files
        listing = ", ".join(files) if files else "unknown files"
        super().__init__(f"Merge of {branch} conflicts in: {listing}")


@dataclass
class Workspace:
    """An isolated checkout owned by exactly one sprint."""
    sprint_id: int
    branch: str
    root: Path
    base_sha: str
    services: ServiceHandle | None = None
    created_at: str = ""

    def to_dict(self) -> dict:
        return {
            "sprint_id": self.sprint_id,
            "branch": self.branch,
            "root": str(self.root),
            "base_sha": self.base_sha,
            "services": self.services.to_dict() if self.services else None,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Workspace":
        return cls(
            sprint_id=int(data["sprint_id"]),
            branch=data["branch"],
            root=Path(data["root"]),
            base_sha=data["base_sha"],
            services=ServiceHandle.from_dict(data.get("services")),
            created_at=data.get("created_at", ""),
        )


class WorkspaceManager:
    """Creates, merges and discards sprint workspaces for one repository."""

    def __init__(
        self,
        repo_path: Path,
        state_dir: Path,
        worktrees_dir: Path,
        mainline: str = "main",
        services: ServiceManager | None = None,
    ):
        self.repo_path = repo_path
        self.state_dir = state_dir
        self.worktrees_dir = worktrees_dir
        self.mainline = mainline
        self.services = services or ServiceManager(enabled=False)

    @classmethod
    def from_config(cls, config: ProjectConfig) -> "WorkspaceManager":
        services = ServiceManager(
            enabled=config.services_enabled,
            base_port=config.base_port,
            env_file=config.repo_path / ".env",
        )
        return cls(
            repo_path=config.repo_path,
            state_dir=config.state_dir,
            worktrees_dir=config.worktrees_dir,
            mainline=config.mainline,
            services=services,
        )

    def _registry_path(self, sprint_id: int) -> Path:
        return self.state_dir / "workspaces" / f"{branch_for(sprint_id)}.json"

    def _write_record(self, workspace: Workspace) -> None:
        atomic_write_text(
            self._registry_path(workspace.sprint_id),
            json.dumps(workspace.to_dict(), indent=2) + "\n",
        )

    def get(self, sprint_id: int) -> Workspace | None:
        """Re-attach to the workspace a sprint already owns, if any."""
        path = self._registry_path(sprint_id)
        if not path.exists():
            return None
        try:
            return Workspace.from_dict(json.loads(path.read_text()))
        except (json.JSONDecodeError, KeyError) as e:
            raise WorkspaceError(f"Corrupt workspace record {path}: {e}") from None

    def list(self) -> list[Workspace]:
        registry = self.state_dir / "workspaces"
        if not registry.exists():
            return []
        workspaces = []
        for record in sorted(registry.glob("sprint-*.json")):
            try:
                workspaces.append(Workspace.from_dict(json.loads(record.read_text())))
            except (json.JSONDecodeError, KeyError) as e:
                logger.warning(f"[WORKSPACE] Skipping corrupt record {record}: {e}")
        return workspaces

    def acquire(self, sprint_id: int) -> Workspace:
        """
        Create the branch and worktree for a sprint.

        Raises:
            WorkspaceExists: the sprint already owns a workspace; it is left untouched
            WorkspaceError: git or service provisioning failed; partial work is undone
        """
        registry = self._registry_path(sprint_id)
        registry.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(registry, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise WorkspaceExists(sprint_id) from None
        os.close(fd)

        branch = branch_for(sprint_id)
        root = self.worktrees_dir / branch
        try:
            if branch_exists(self.repo_path, branch):
                raise WorkspaceExists(sprint_id, f"branch {branch} exists")
            if root.exists():
                raise WorkspaceExists(sprint_id, f"{root} exists")

            base_sha = get_commit_sha(self.repo_path, self.mainline)
            if base_sha is None:
                raise WorkspaceError(f"Mainline branch '{self.mainline}' not found")

            root.parent.mkdir(parents=True, exist_ok=True)
            result = add_worktree(self.repo_path, root, branch, base_sha)
            if not result.success:
                raise WorkspaceError(f"git worktree add failed: {result.stderr.strip()}")

            try:
                services = self.services.provision(sprint_id, root)
            except ServiceError as e:
                remove_worktree(self.repo_path, root, force=True)
                delete_branch(self.repo_path, branch, force=True)
                raise WorkspaceError(str(e)) from e

            workspace = Workspace(
                sprint_id=sprint_id,
                branch=branch,
                root=root,
                base_sha=base_sha,
                services=services,
                created_at=now_iso(),
            )
            self._write_record(workspace)
        except BaseException:
            registry.unlink(missing_ok=True)
            raise

        logger.info(f"[WORKSPACE] sprint {sprint_id}: {branch} at {root} from {base_sha[:8]}")
        return workspace

    def acquire_or_get(self, sprint_id: int) -> Workspace:
        existing = self.get(sprint_id)
        if existing is not None and existing.root.exists():
            logger.info(f"[WORKSPACE] sprint {sprint_id}: re-attached {existing.root}")
            return existing
        if existing is not None:
            raise WorkspaceError(
                f"Workspace record for sprint {sprint_id} points at missing {existing.root}; roll it back first"
            )
        return self.acquire(sprint_id)

    def changed_files(self, workspace: Workspace) -> list[str]:
        """Workspace-relative paths changed since the workspace was created."""
        changed = set(get_diff_names(workspace.root, workspace.base_sha))
        changed.update(get_changed_files(workspace.root))
        return sorted(p for p in changed if (workspace.root / p).is_file())

    def merge_and_release(self, workspace: Workspace, message: str | None = None) -> str:
        """
        Merge the sprint branch into mainline, then discard the workspace.

        Returns:
            The mainline commit after the merge

        Raises:
            MergeConflict: mainline and the workspace are left exactly as they were
            WorkspaceError: mainline checkout is dirty or git failed
        """
        if has_uncommitted_changes(workspace.root):
            stage_all(workspace.root)
            result = commit(workspace.root, f"{workspace.branch}: final changes")
            if not result.success:
                raise WorkspaceError(f"Could not commit workspace changes: {result.output}")

        message = message or f"Merge {workspace.branch}"
        with merge_lock(self.state_dir):
            if has_uncommitted_changes(self.repo_path):
                raise WorkspaceError("Mainline checkout has uncommitted changes")

            if get_current_branch(self.repo_path) != self.mainline:
                result = checkout_branch(self.repo_path, self.mainline)
                if not result.success:
                    raise WorkspaceError(f"Could not check out {self.mainline}: {result.output}")

            outcome = merge_branch(self.repo_path, workspace.branch, message)
            if outcome.conflict:
                logger.warning(f"[WORKSPACE] {workspace.branch}: merge conflict in {outcome.conflicted_files}")
                raise MergeConflict(workspace.branch, outcome.conflicted_files)
            if not outcome.success:
                raise WorkspaceError(f"Merge of {workspace.branch} failed: {outcome.message}")

            merged_sha = get_commit_sha(self.repo_path, "HEAD")

        logger.info(f"[WORKSPACE] {workspace.branch} merged into {self.mainline} at {merged_sha[:8]}")
        self._release(workspace)
        return merged_sha

    def _release(self, workspace: Workspace) -> None:
        self.services.teardown(workspace.services, workspace.root)
        result = remove_worktree(self.repo_path, workspace.root, force=True)
        if not result.success and workspace.root.exists():
            raise WorkspaceError(f"Could not remove worktree {workspace.root}: {result.output}")
        prune_worktrees(self.repo_path)
        result = delete_branch(self.repo_path, workspace.branch, force=True)
        if not result.success and branch_exists(self.repo_path, workspace.branch):
            raise WorkspaceError(f"Could not delete branch {workspace.branch}: {result.output}")
        self._registry_path(workspace.sprint_id).unlink(missing_ok=True)

    def rollback(self, sprint_id: int) -> bool:
        """
        Discard a sprint's workspace without merging.

        Never touches the mainline ref. Returns False if there was nothing to
        discard.
        """
        workspace = self.get(sprint_id)
        branch = workspace.branch if workspace else branch_for(sprint_id)
        root = workspace.root if workspace else self.worktrees_dir / branch
        found = workspace is not None

        if workspace is not None:
            self.services.teardown(workspace.services, root)
        elif root.exists():
            # no record left, but the worktree may still run its stack
            self.services.teardown(self.services.handle_for(sprint_id, root), root)

        if root.exists():
            found = True
            result = remove_worktree(self.repo_path, root, force=True)
            if not result.success:
                logger.warning(f"[WORKSPACE] worktree remove failed, deleting {root}: {result.output}")
                shutil.rmtree(root)
        prune_worktrees(self.repo_path)

        if branch_exists(self.repo_path, branch):
            found = True
            result = delete_branch(self.repo_path, branch, force=True)
            if not result.success:
                raise WorkspaceError(f"Could not delete branch {branch}: {result.output}")

        self._registry_path(sprint_id).unlink(missing_ok=True)
        if found:
            logger.info(f"[WORKSPACE] sprint {sprint_id}: rolled back")
        return found
