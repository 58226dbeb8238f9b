from __future__ import annotations

import asyncio
import collections
import dataclasses
import logging
import os
import pathlib
import time
from datetime import datetime
from typing import Callable, Optional
from uuid import uuid4

from render_service.clients.render_engine import CancelSignal, RenderEngine, RenderRequest
from render_service.events.notifier import WebhookNotifier
from render_service.events.publisher import JobEventPublisher
from render_service.models.domain import CancelOutcome, JobData, JobStatus, RenderJob
from render_service.storage.repository import RenderJobRepository


def available_memory() -> int:
    """Free physical memory in bytes."""
    return os.sysconf("SC_AVPHYS_PAGES") * os.sysconf("SC_PAGE_SIZE")


@dataclasses.dataclass
class _ActiveRender:
    signal: CancelSignal
    started: float
    last_progress: float
    task: Optional[asyncio.Task[None]] = None


class RenderScheduler:
    """FIFO render queue with a concurrency limit and a free-memory admission gate.

    All bookkeeping happens on the event loop thread between awaits, so the
    queue and the active-render map need no locking. ``create_job`` never
    suspends; the scheduling pass it triggers only starts tasks.
    """

    def __init__(
        self,
        repo: RenderJobRepository,
        engine: RenderEngine,
        renders_dir: str | os.PathLike[str],
        video_base_url: str,
        concurrency: int = 1,
        min_free_memory: int = 2 * 1024 * 1024 * 1024,
        watchdog_interval: float = 30.0,
        watchdog_timeout: float = 15 * 60.0,
        notifier: Optional[WebhookNotifier] = None,
        events: Optional[JobEventPublisher] = None,
        memory_probe: Callable[[], int] = available_memory,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repo = repo
        self.engine = engine
        self.renders_dir = pathlib.Path(renders_dir)
        self.video_base_url = video_base_url.rstrip("/")
        self.concurrency = max(1, concurrency)
        self.min_free_memory = min_free_memory
        self.watchdog_interval = watchdog_interval
        self.watchdog_timeout = watchdog_timeout
        self.notifier = notifier
        self.events = events
        self.memory_probe = memory_probe
        self.clock = clock
        self.log = logger or logging.getLogger(__name__)
        self._queue: collections.deque[str] = collections.deque()
        self._active: dict[str, _ActiveRender] = {}
        self._watchdog_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def queued_ids(self) -> list[str]:
        return list(self._queue)

    def create_job(self, data: JobData) -> str:
        job = RenderJob(id=str(uuid4()), status=JobStatus.QUEUED, data=data)
        self.repo.save(job)
        self._queue.append(job.id)
        self.log.info(
            "render job queued",
            extra={"job_id": job.id, "composition_id": data.composition_id, "queue_length": len(self._queue)},
        )
        self._emit_job_update(job)
        self._schedule()
        return job.id

    def get_job(self, job_id: str) -> RenderJob | None:
        return self.repo.get(job_id)

    def list_jobs(self) -> list[RenderJob]:
        return self.repo.list()

    def cancel_job(self, job_id: str) -> CancelOutcome:
        job = self.repo.get(job_id)
        if job is None:
            return CancelOutcome.NOT_FOUND
        if job.status.terminal:
            return CancelOutcome.NOT_CANCELLABLE
        if job.status == JobStatus.QUEUED and job_id in self._queue:
            # queued jobs leave no record behind
            self._queue.remove(job_id)
            self.repo.delete(job_id)
            self.log.info("queued render job removed", extra={"job_id": job_id})
            return CancelOutcome.CANCELLED
        active = self._active.get(job_id)
        if job.status == JobStatus.IN_PROGRESS and active is not None:
            active.signal.cancel("Render cancelled by request")
            self.log.info("render job cancellation requested", extra={"job_id": job_id})
            return CancelOutcome.CANCELLED
        return CancelOutcome.NOT_CANCELLABLE

    def start(self) -> None:
        if self._watchdog_task is None:
            self._watchdog_task = asyncio.get_running_loop().create_task(self._watchdog_loop())
        self._schedule()

    async def stop(self) -> None:
        self._closed = True
        if self._watchdog_task is not None:
            self._watchdog_task.cancel()
            try:
                await self._watchdog_task
            except asyncio.CancelledError:
                pass
            self._watchdog_task = None
        tasks = []
        for active in list(self._active.values()):
            active.signal.cancel("Render service shutting down")
            if active.task is not None:
                tasks.append(active.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self.notifier is not None:
            await self.notifier.drain()
        if self.events is not None:
            self.events.close()

    def check_stalled(self) -> list[str]:
        """Cancel every in-progress render that reported no progress within the timeout."""
        now = self.clock()
        stalled: list[str] = []
        for job_id, active in list(self._active.items()):
            if active.signal.cancelled or now - active.last_progress <= self.watchdog_timeout:
                continue
            self.log.warning(
                "render job stalled, cancelling",
                extra={"job_id": job_id, "idle_seconds": round(now - active.last_progress, 1)},
            )
            active.signal.cancel(f"Render timed out: no progress for {int(self.watchdog_timeout)} seconds")
            stalled.append(job_id)
        return stalled

    async def _watchdog_loop(self) -> None:
        while True:
            await asyncio.sleep(self.watchdog_interval)
            self.check_stalled()

    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop yet: jobs stay queued until start() runs a pass
            return
        while not self._closed and self._queue and len(self._active) < self.concurrency:
            if self._active and not self._has_memory_headroom():
                return
            job_id = self._queue.popleft()
            job = self.repo.get(job_id)
            if job is None:
                continue
            self._start(job, loop)

    def _has_memory_headroom(self) -> bool:
        try:
            free = self.memory_probe()
        except (OSError, ValueError):
            self.log.warning("free memory probe failed, admitting job", exc_info=True)
            return True
        if free < self.min_free_memory:
            self.log.info(
                "admission deferred on low memory",
                extra={"free_bytes": free, "threshold_bytes": self.min_free_memory, "active": len(self._active)},
            )
            return False
        return True

    def _start(self, job: RenderJob, loop: asyncio.AbstractEventLoop) -> None:
        now = self.clock()
        active = _ActiveRender(signal=CancelSignal(), started=now, last_progress=now)
        self._active[job.id] = active
        job.status = JobStatus.IN_PROGRESS
        job.progress = 0.0
        job.started_at = datetime.utcnow()
        job.updated_at = job.started_at
        self.repo.save(job)
        self._emit_job_update(job)
        self.log.info("render job started", extra={"job_id": job.id, "active": len(self._active)})
        active.task = loop.create_task(self._run(job.id, job.data, active))

    async def _run(self, job_id: str, data: JobData, active: _ActiveRender) -> None:
        output_location = self.renders_dir / f"{job_id}.mp4"
        request = RenderRequest(
            composition_id=data.composition_id,
            input_props=data.input_props,
            output_location=str(output_location),
            width=data.width,
            height=data.height,
        )
        try:
            self.renders_dir.mkdir(parents=True, exist_ok=True)
            await self.engine.render(
                request,
                lambda fraction: self._on_progress(job_id, active, fraction),
                active.signal,
            )
        except asyncio.CancelledError:
            self._finish(job_id, active, error="Render interrupted")
            raise
        except Exception as exc:
            self.log.exception("render job failed", extra={"job_id": job_id})
            self._finish(job_id, active, error=str(exc) or exc.__class__.__name__)
        else:
            self._finish(
                job_id,
                active,
                video_url=f"{self.video_base_url}/{job_id}.mp4",
                output_location=str(output_location),
            )
        finally:
            self._active.pop(job_id, None)
            self._schedule()

    def _on_progress(self, job_id: str, active: _ActiveRender, fraction: float) -> None:
        job = self.repo.get(job_id)
        if job is None or job.status != JobStatus.IN_PROGRESS or active.signal.cancelled:
            return
        now = self.clock()
        active.last_progress = now
        job.progress = min(max(float(fraction), 0.0), 1.0)
        job.elapsed_seconds = now - active.started
        job.updated_at = datetime.utcnow()
        self.repo.save(job)

    def _finish(
        self,
        job_id: str,
        active: _ActiveRender,
        video_url: str | None = None,
        output_location: str | None = None,
        error: str | None = None,
    ) -> None:
        job = self.repo.get(job_id)
        if job is None:
            return
        job.elapsed_seconds = self.clock() - active.started
        job.updated_at = datetime.utcnow()
        if error is None:
            job.status = JobStatus.COMPLETED
            job.progress = 1.0
            job.video_url = video_url
            job.output_location = output_location
            self.log.info("render job completed", extra={"job_id": job_id, "elapsed": job.elapsed_seconds})
        else:
            job.status = JobStatus.FAILED
            job.error = error
        self.repo.save(job)
        self._emit_job_update(job)
        if self.notifier is not None:
            self.notifier.notify(job)

    def _emit_job_update(self, job: RenderJob) -> None:
        if not self.events:
            return
        try:
            self.events.publish_job(job)
        except Exception:  # pragma: no cover
            self.log.warning("job event emission failed", extra={"job_id": job.id}, exc_info=True)
