"""Per-invocation context for the update engine.

A ``SyncContext`` is built once per command invocation and passed to every
component.  It replaces process-wide state: two contexts for two projects
never share anything.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from scaffold_sync.errors import UpdateCancelled
from scaffold_sync.update.backup import ConfirmPrune, deny_prune
from scaffold_sync.update.models import UpdateStage
from scaffold_sync.update.resolver import DEFAULT_LINE_THRESHOLD

DEFAULT_STATE_DIRNAME = ".scaffold_sync"
DEFAULT_BACKUP_RETENTION = 5


@dataclass
class SyncContext:
    """Everything one update run needs to know about its environment.

    Attributes:
        project_root: The project tree being synchronised.
        state_dir: Holds the manifest and the transaction journal.
        backup_dir: Holds backup snapshots.
        conflict_line_threshold: Files with more lines get a diff artifact.
        backup_retention: Number of snapshots kept without asking.
        confirm_prune: Asked before older snapshots are deleted.
        cancel_event: Set to cancel the run at the next stage boundary.
        on_stage: Called with each stage the run enters.
    """

    project_root: Path
    state_dir: Path
    backup_dir: Path
    conflict_line_threshold: int = DEFAULT_LINE_THRESHOLD
    backup_retention: int = DEFAULT_BACKUP_RETENTION
    confirm_prune: ConfirmPrune = deny_prune
    cancel_event: threading.Event = field(default_factory=threading.Event)
    on_stage: Callable[[UpdateStage], None] | None = None

    @classmethod
    def for_project(
        cls,
        project_root: Path,
        state_dir: str | Path = DEFAULT_STATE_DIRNAME,
        backup_dir: str | Path | None = None,
        **kwargs,
    ) -> "SyncContext":
        """Build a context with state paths relative to *project_root*."""
        root = project_root.resolve()
        state = root / state_dir
        backups = root / backup_dir if backup_dir is not None else state / "backups"
        return cls(project_root=root, state_dir=state, backup_dir=backups, **kwargs)

    @property
    def internal_prefix(self) -> str | None:
        """State directory path relative to the project root, if inside it."""
        try:
            return self.state_dir.resolve().relative_to(
                self.project_root.resolve()
            ).as_posix()
        except ValueError:
            return None

    def enter(self, stage: UpdateStage) -> None:
        """Record a stage transition and honour cancellation."""
        if self.on_stage is not None:
            self.on_stage(stage)
        if stage not in (UpdateStage.ROLLING_BACK, UpdateStage.FAILED, UpdateStage.DONE):
            self.raise_if_cancelled()

    def raise_if_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise UpdateCancelled("Update cancelled")
