"""Branch-per-sprint workspace isolation."""

from sprintflow.workspace.manager import (
    MergeConflict,
    Workspace,
    WorkspaceError,
    WorkspaceExists,
    WorkspaceManager,
)
from sprintflow.workspace.services import ServiceError, ServiceHandle, ServiceManager

__all__ = [
    "MergeConflict",
    "Workspace",
    "WorkspaceError",
    "WorkspaceExists",
    "WorkspaceManager",
    "ServiceError",
    "ServiceHandle",
    "ServiceManager",
]
