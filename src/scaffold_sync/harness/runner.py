"""Upgrade-path regression harness.

Exercises many ``(from_version, to_version)`` upgrade paths in parallel.
Every path is one unit of work in its own uniquely named directory:

1. check free disk space against the floor,
2. install ``from_version`` into an empty project (first sync),
3. apply the path's customizations,
4. update to ``to_version``.

Units share nothing except the release source, which is wrapped in a
``ThrottledSource`` so parallel workers never burst past its request
quota.  A unit that exceeds its timeout is signalled to stop and recorded
as ``timeout`` with the stage it was stuck in; its pool slot is freed only
once its thread has returned.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from scaffold_sync.errors import DiskSpaceError, UpdateError
from scaffold_sync.fetch.base import ReleaseSource
from scaffold_sync.fetch.throttle import ThrottledSource
from scaffold_sync.file_handler import (
    remove_file,
    resolve_artifact_path,
    write_text,
)
from scaffold_sync.update.applier import UpdateApplier
from scaffold_sync.update.context import SyncContext
from scaffold_sync.update.models import FailureInfo, UpdateReport, UpdateStage
from scaffold_sync.update.resolver import DEFAULT_LINE_THRESHOLD

from .pool import WorkerPool, gather_ordered

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4
DEFAULT_TIMEOUT = 300.0
DEFAULT_MIN_FREE_BYTES = 50 * 1024 * 1024


class HarnessOutcome(str, Enum):
    SUCCESS = "success"
    NEEDS_ATTENTION = "needs_attention"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class UpgradePath:
    """One upgrade to exercise.

    Attributes:
        from_version: Release installed first.
        to_version: Release updated to.
        customizations: Local edits applied between the two syncs, as
            ``path -> new text``; ``None`` deletes the file.
    """

    from_version: str
    to_version: str
    customizations: dict[str, str | None] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return f"{self.from_version}->{self.to_version}"


@dataclass
class HarnessResult:
    """Outcome of one unit of work, with diagnostics for non-successes."""

    path: UpgradePath
    outcome: HarnessOutcome
    message: str = ""
    workdir: Path | None = None
    report: UpdateReport | None = None
    last_stage: UpdateStage | None = None
    files_present: list[str] = field(default_factory=list)
    duration: float = 0.0


@dataclass
class _Unit:
    """Mutable state shared between the event loop and one worker thread."""

    path: UpgradePath
    workdir: Path
    cancel_event: threading.Event = field(default_factory=threading.Event)
    stages: list[UpdateStage] = field(default_factory=list)
    timed_out_in: UpdateStage | None = None

    @property
    def project(self) -> Path:
        return self.workdir / "project"

    def cancel(self) -> None:
        """Note the stage the unit is stuck in and ask it to stop."""
        self.timed_out_in = self.stages[-1] if self.stages else None
        self.cancel_event.set()


class UpgradeHarness:
    """Run upgrade paths through the update engine with bounded parallelism.

    Args:
        source: Release source shared by every unit.
        work_root: Parent directory for per-unit work directories.
        concurrency: Maximum units running at once.
        timeout: Seconds allowed per unit.
        min_free_bytes: Free-space floor checked before each unit.
        request_interval: Minimum delay between release requests.
        conflict_line_threshold: Passed to every unit's context.
    """

    def __init__(
        self,
        source: ReleaseSource,
        work_root: Path,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float = DEFAULT_TIMEOUT,
        min_free_bytes: int = DEFAULT_MIN_FREE_BYTES,
        request_interval: float = 1.0,
        conflict_line_threshold: int = DEFAULT_LINE_THRESHOLD,
    ) -> None:
        self.source = ThrottledSource(source, request_interval)
        self.work_root = work_root
        self.concurrency = concurrency
        self.timeout = timeout
        self.min_free_bytes = min_free_bytes
        self.conflict_line_threshold = conflict_line_threshold

    def run(self, paths: list[UpgradePath]) -> list[HarnessResult]:
        """Run every path and return results in input order."""
        return asyncio.run(self.run_async(paths))

    async def run_async(self, paths: list[UpgradePath]) -> list[HarnessResult]:
        self.work_root.mkdir(parents=True, exist_ok=True)
        pool = WorkerPool(self.concurrency)
        logger.info(
            "Running %d upgrade paths (concurrency=%d, timeout=%gs)",
            len(paths),
            self.concurrency,
            self.timeout,
        )
        results = await gather_ordered([self._run_unit(pool, p) for p in paths])
        counts: dict[str, int] = {}
        for result in results:
            counts[result.outcome.value] = counts.get(result.outcome.value, 0) + 1
        logger.info("Harness finished: %s", counts)
        return results

    async def _run_unit(
        self, pool: WorkerPool, path: UpgradePath
    ) -> HarnessResult:
        workdir = Path(
            tempfile.mkdtemp(
                prefix=f"upgrade-{_slug(path.name)}-", dir=self.work_root
            )
        )
        unit = _Unit(path=path, workdir=workdir)
        started = time.monotonic()
        try:
            result = await pool.run(
                self._execute, unit, timeout=self.timeout, on_timeout=unit.cancel
            )
        except asyncio.TimeoutError:
            result = HarnessResult(
                path=path,
                outcome=HarnessOutcome.TIMEOUT,
                message=f"timed out after {self.timeout:g}s",
                workdir=workdir,
                last_stage=unit.timed_out_in,
                files_present=_files_present(unit.project),
            )
            logger.warning(
                "%s timed out in stage %s; diagnostics kept at %s",
                path.name,
                result.last_stage.value if result.last_stage else "startup",
                workdir,
            )
        except Exception as exc:
            logger.exception("%s crashed", path.name)
            result = HarnessResult(
                path=path,
                outcome=HarnessOutcome.FAILURE,
                message=f"unexpected error: {exc}",
                workdir=workdir,
                last_stage=unit.stages[-1] if unit.stages else None,
                files_present=_files_present(unit.project),
            )
        result.duration = time.monotonic() - started

        if result.outcome == HarnessOutcome.SUCCESS or result.workdir is None:
            shutil.rmtree(workdir, ignore_errors=True)
            result.workdir = None
        return result

    def _execute(self, unit: _Unit) -> HarnessResult:
        """Blocking body of one unit of work (runs in a worker thread)."""
        path = unit.path
        try:
            self._check_disk_space(unit.workdir)
        except DiskSpaceError as exc:
            logger.error("%s skipped: %s", path.name, exc)
            return HarnessResult(
                path=path, outcome=HarnessOutcome.FAILURE, message=str(exc)
            )

        unit.project.mkdir()
        ctx = SyncContext.for_project(
            unit.project,
            conflict_line_threshold=self.conflict_line_threshold,
            cancel_event=unit.cancel_event,
            on_stage=unit.stages.append,
        )
        applier = UpdateApplier(self.source, ctx)

        install = applier.run(version=path.from_version)
        if install.failure is not None:
            return self._failed(unit, install, install.failure, "install")

        try:
            self._customize(unit)
        except UpdateError as exc:
            return HarnessResult(
                path=path,
                outcome=HarnessOutcome.FAILURE,
                message=f"customization failed: {exc}",
                workdir=unit.workdir,
                files_present=_files_present(unit.project),
            )

        update = applier.run(version=path.to_version)
        if update.failure is not None:
            return self._failed(unit, update, update.failure, "update")

        outcome = (
            HarnessOutcome.NEEDS_ATTENTION
            if update.flagged
            else HarnessOutcome.SUCCESS
        )
        logger.info("%s: %s", path.name, outcome.value)
        return HarnessResult(
            path=path,
            outcome=outcome,
            message=f"{len(update.changed)} changed, {len(update.flagged)} flagged",
            workdir=unit.workdir,
            report=update,
            last_stage=UpdateStage.DONE,
        )

    def _check_disk_space(self, workdir: Path) -> None:
        free = shutil.disk_usage(workdir).free
        if free < self.min_free_bytes:
            raise DiskSpaceError(
                f"Only {free // (1024 * 1024)} MiB free in {workdir}; "
                f"at least {self.min_free_bytes // (1024 * 1024)} MiB required",
                path=str(workdir),
            )

    @staticmethod
    def _customize(unit: _Unit) -> None:
        for rel, text in sorted(unit.path.customizations.items()):
            target = resolve_artifact_path(unit.project, rel)
            if text is None:
                remove_file(target, rel)
            else:
                write_text(target, text, rel)

    @staticmethod
    def _failed(
        unit: _Unit, report: UpdateReport, failure: FailureInfo, step: str
    ) -> HarnessResult:
        outcome = (
            HarnessOutcome.TIMEOUT
            if failure.kind == "cancelled"
            else HarnessOutcome.FAILURE
        )
        logger.error("%s: %s failed: %s", unit.path.name, step, failure.message)
        return HarnessResult(
            path=unit.path,
            outcome=outcome,
            message=f"{step} failed during {failure.stage.value}: {failure.message}",
            workdir=unit.workdir,
            report=report,
            last_stage=failure.stage,
            files_present=_files_present(unit.project),
        )


def _slug(name: str) -> str:
    return "".join(c if c.isalnum() or c in "._" else "_" for c in name)


def _files_present(root: Path) -> list[str]:
    if not root.is_dir():
        return []
    return sorted(
        p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()
    )
