"""Background execution of catalog jobs and pipelines.

Every run is keyed (job name, or ``pipeline:<name>``) and at most one run per
key is live at a time. A run gets a child of the caller's cancellation token,
executes on its own asyncio task, reports lifecycle transitions through the
``notify`` callback and removes itself from the live set when it finishes.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from loguru import logger

from infra.cancellation import CancelToken, OperationCancelled
from jobs.catalog import JobCatalog, JobDefinition, PipelineDefinition

Notifier = Callable[[str], Awaitable[None]]


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunningJob:
    """Live record of one background run. ``list_running`` hands out copies."""

    key: str
    cancel: CancelToken = field(repr=False)
    status: JobStatus = JobStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    error: Optional[str] = None
    task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)

    def _finish(self, status: JobStatus, exit_code: Optional[int] = None, error: Optional[str] = None) -> None:
        self.status = status
        self.exit_code = exit_code
        self.error = error


class _StepFailed(Exception):
    def __init__(self, message: str, exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class JobEngine:
    """Runs jobs and pipelines in the background with single-flight per key."""

    def __init__(self, catalog: JobCatalog, notify: Notifier) -> None:
        self.catalog = catalog
        self._notify = notify
        self._running: Dict[str, RunningJob] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start_job(self, name: str, parent_cancel: CancelToken) -> bool:
        """Start ``name`` in the background.

        Returns False when the job is unknown or already running.
        """
        definition = self.catalog.get_job(name or "")
        if definition is None:
            return False
        return self._start(definition.name, parent_cancel, lambda run: self._run_job(definition, run))

    def start_pipeline(self, name: str, parent_cancel: CancelToken) -> bool:
        """Start pipeline ``name`` in the background under key ``pipeline:<name>``.

        Returns False when the pipeline is unknown or already running.
        """
        pipeline = self.catalog.get_pipeline(name or "")
        if pipeline is None:
            return False
        return self._start(pipeline.key, parent_cancel, lambda run: self._run_pipeline(pipeline, run))

    async def run_pipeline_and_await(self, name: str, cancel: CancelToken) -> bool:
        """Start pipeline ``name`` (or attach to its in-flight run) and wait for it.

        Returns True when the run ends Completed. Raises ``OperationCancelled``
        if ``cancel`` fires while waiting.
        """
        pipeline = self.catalog.get_pipeline(name or "")
        if pipeline is None:
            logger.warning(f"Unknown pipeline: {name}")
            return False

        if not self.start_pipeline(pipeline.name, cancel):
            logger.info(f"Attaching to in-flight run of {pipeline.key}")
        run = self._get(pipeline.key)
        if run is None or run.task is None:
            # Finished between start and lookup: nothing left to wait on
            return False

        await cancel.guard(asyncio.shield(run.task))
        return run.status == JobStatus.COMPLETED

    def cancel(self, key: str) -> bool:
        """Request cancellation of the run registered under ``key``."""
        run = self._get(key or "")
        if run is None:
            return False
        logger.info(f"Cancellation requested: {run.key}")
        run.cancel.cancel()
        return True

    def list_running(self) -> List[RunningJob]:
        """Point-in-time copies of the live runs, oldest first."""
        with self._lock:
            snapshot = [replace(r, task=None) for r in self._running.values()]
        return sorted(snapshot, key=lambda r: r.started_at)

    def is_running(self, key: str) -> bool:
        return self._get(key) is not None

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait for every live run to finish (used after cancelling the root token)."""
        with self._lock:
            tasks = [r.task for r in self._running.values() if r.task is not None]
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} run(s) still active after {timeout}s")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get(self, key: str) -> Optional[RunningJob]:
        with self._lock:
            return self._running.get(key.strip().lower())

    def _start(
        self,
        key: str,
        parent_cancel: CancelToken,
        body: Callable[[RunningJob], Awaitable[None]],
    ) -> bool:
        folded = key.lower()
        with self._lock:
            if folded in self._running:
                return False
            run = RunningJob(key=key, cancel=parent_cancel.child())
            self._running[folded] = run

        try:
            run.task = asyncio.create_task(self._supervise(folded, run, body), name=f"run:{key}")
        except RuntimeError:
            with self._lock:
                self._running.pop(folded, None)
            run.cancel.release()
            raise
        return True

    async def _supervise(
        self,
        folded: str,
        run: RunningJob,
        body: Callable[[RunningJob], Awaitable[None]],
    ) -> None:
        try:
            await body(run)
        finally:
            run.completed_at = datetime.now(timezone.utc)
            with self._lock:
                self._running.pop(folded, None)
            run.cancel.release()
            duration = (run.completed_at - run.started_at).total_seconds()
            logger.info(f"Run {run.key} finished: {run.status.value} in {duration:.1f}s")

    async def _run_job(self, definition: JobDefinition, run: RunningJob) -> None:
        name = definition.name
        await self._notify_safe(f"Started job: {name}")
        try:
            exit_code = await definition.execute(run.cancel)
        except OperationCancelled:
            run._finish(JobStatus.CANCELLED, error="Cancelled")
            await self._notify_safe(f"Cancelled job: {name}")
            return
        except asyncio.CancelledError:
            run._finish(JobStatus.CANCELLED, error="Cancelled")
            await self._notify_safe(f"Cancelled job: {name}")
            raise
        except Exception as e:
            logger.warning(f"Job {name} raised: {e}")
            run._finish(JobStatus.FAILED, error=str(e) or type(e).__name__)
            await self._notify_safe(f"Failed job: {name} ({run.error})")
            return

        if exit_code == 0:
            run._finish(JobStatus.COMPLETED, exit_code=0)
            await self._notify_safe(f"Completed job: {name}")
        elif run.cancel.cancelled:
            run._finish(JobStatus.CANCELLED, exit_code=exit_code, error="Cancelled")
            await self._notify_safe(f"Cancelled job: {name}")
        else:
            run._finish(JobStatus.FAILED, exit_code=exit_code, error=f"exit code {exit_code}")
            await self._notify_safe(f"Failed job: {name} (exit code {exit_code})")

    async def _run_pipeline(self, pipeline: PipelineDefinition, run: RunningJob) -> None:
        name = pipeline.name
        total = len(pipeline.steps)
        await self._notify_safe(f"Started pipeline: {name}")
        try:
            for index, step in enumerate(pipeline.steps, 1):
                run.cancel.raise_if_cancelled()
                await self._run_step(pipeline, step, index, total, run.cancel)
        except OperationCancelled:
            run._finish(JobStatus.CANCELLED, error="Cancelled")
            await self._notify_safe(f"Cancelled pipeline: {name}")
            return
        except asyncio.CancelledError:
            run._finish(JobStatus.CANCELLED, error="Cancelled")
            await self._notify_safe(f"Cancelled pipeline: {name}")
            raise
        except _StepFailed as e:
            logger.warning(f"Pipeline {name} failed: {e}")
            run._finish(JobStatus.FAILED, exit_code=e.exit_code, error=str(e))
            await self._notify_safe(f"Failed {pipeline.key}: {e}")
            return

        run._finish(JobStatus.COMPLETED, exit_code=0)
        await self._notify_safe(f"Completed pipeline: {name}")

    async def _run_step(
        self,
        pipeline: PipelineDefinition,
        step: str,
        index: int,
        total: int,
        cancel: CancelToken,
    ) -> None:
        definition = self.catalog.get_job(step)
        if definition is None:
            raise _StepFailed(f"unknown step '{step}'")

        await self._notify_safe(f"[{pipeline.name}] Step {index}/{total}: {definition.name}")
        try:
            exit_code = await definition.execute(cancel)
        except (OperationCancelled, asyncio.CancelledError):
            raise
        except Exception as e:
            raise _StepFailed(f"step '{definition.name}' failed: {e}") from e

        if exit_code != 0:
            if cancel.cancelled:
                raise OperationCancelled()
            raise _StepFailed(
                f"step '{definition.name}' failed with exit code {exit_code}", exit_code
            )
        await self._notify_safe(f"[{pipeline.name}] Completed step: {definition.name}")

    async def _notify_safe(self, text: str) -> None:
        try:
            await self._notify(text)
        except Exception as e:
            # Notifications are best-effort; run bookkeeping never depends on them.
            logger.debug(f"Notification dropped ({e}): {text}")
