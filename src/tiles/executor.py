"""Download scheduler.

Turns a job's tile list into stored tiles under a global concurrency bound
and a shared request gate, keeping live per-job counters in memory and
flushing snapshots to the job registry.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from domain.models import JobProgress, TileCoord, progress_percent
from shared.constants import (
    DEFAULT_MAX_CONCURRENT_DOWNLOADS,
    PROGRESS_FLUSH_EVERY,
    JobStatus,
)
from shared.errors import FetchError, PersistenceError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tiles.fetcher import RequestGate, TileFetcher
    from tiles.registry import JobRegistry
    from tiles.store import TileStore

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _ActiveJob:
    job_id: str
    source: str
    # downloaded_tiles persisted by earlier runs of the same job
    baseline: int = 0
    total: int = 0
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    queued: int = 0
    in_flight: int = 0
    last_error: str | None = None
    status: JobStatus = JobStatus.RUNNING
    discard: bool = False
    fetching: set[TileCoord] = field(default_factory=set)
    # tiles still being fetched by a replaced run, counted by this one
    adopted: set[TileCoord] = field(default_factory=set)
    replaced: _ActiveJob | None = None
    done: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def accounted(self) -> int:
        return self.downloaded + self.skipped + self.failed

    @property
    def stored(self) -> int:
        return max(self.baseline, min(self.total, self.baseline + self.downloaded))

    def snapshot(self) -> JobProgress:
        return JobProgress(
            job_id=self.job_id,
            source=self.source,
            total_tiles=self.total,
            stored_tiles=self.stored,
            downloaded_tiles=self.downloaded,
            skipped_tiles=self.skipped,
            failed_tiles=self.failed,
            queued_tiles=self.queued,
            in_flight_tiles=self.in_flight,
            progress=progress_percent(self.stored, self.total),
            status=self.status,
            last_error=self.last_error,
        )


class DownloadScheduler:
    """Bounded-concurrency fetch pool shared by all jobs.

    Features:
    - Tiles already in the store are counted as skipped before using a slot
    - One FIFO queue across jobs, drained one slot at a time
    - Completion checked per job on every fetch completion
    - No automatic retries: failed tiles are counted, recovery is ``extend``
    - Restarting a job carries its persisted counter and in-flight tiles over

    Usage:
        scheduler = DownloadScheduler(store, registry, fetcher, gate=gate)
        scheduler.start_job(job.id, 'arcgis', enumerate_tiles(bounds, 10, 12))
        await scheduler.wait(job.id)
    """

    def __init__(
        self,
        store: TileStore,
        registry: JobRegistry,
        fetcher: TileFetcher,
        *,
        gate: RequestGate,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_DOWNLOADS,
        flush_every: int = PROGRESS_FLUSH_EVERY,
    ) -> None:
        if max_concurrent < 1:
            msg = 'max_concurrent must be at least 1'
            raise ValueError(msg)
        self._store = store
        self._registry = registry
        self._fetcher = fetcher
        self._gate = gate
        self.max_concurrent = max_concurrent
        self._flush_every = max(1, flush_every)
        self._jobs: dict[str, _ActiveJob] = {}
        self._queue: deque[tuple[_ActiveJob, TileCoord]] = deque()
        self._in_flight = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def gate(self) -> RequestGate:
        return self._gate

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def queued(self) -> int:
        return len(self._queue)

    def is_active(self, job_id: str) -> bool:
        return job_id in self._jobs

    def active_jobs(self) -> list[str]:
        return list(self._jobs)

    def start_job(
        self, job_id: str, source: str, tiles: Iterable[TileCoord]
    ) -> JobProgress:
        """Register a job and queue every tile that is not already stored.

        Must be called from inside a running event loop. Restarting an
        active job id replaces its counters and drops its queued tiles.
        Tiles the replaced run is still fetching are counted by the new run
        when they finish instead of being fetched a second time. The
        downloaded counter continues from the value persisted for the job.

        Returns:
            Snapshot of the job right after scheduling.
        """
        asyncio.get_running_loop()

        previous = self._jobs.pop(job_id, None)
        job = _ActiveJob(job_id=job_id, source=source)
        if previous is not None:
            self._drop_queued(previous)
            previous.done.set()
            job.baseline = previous.stored
            if previous.source == source:
                adoptable = previous.fetching | previous.adopted
            else:
                adoptable = set()
            if adoptable:
                job.replaced = previous
            logger.info('Restarting active job %s', job_id)
        else:
            adoptable = set()

        self._jobs[job_id] = job
        try:
            record = self._registry.get(job_id)
            if record is not None:
                job.baseline = max(job.baseline, record.downloaded_tiles)
            self._registry.update_status(job_id, JobStatus.RUNNING)
            for tile in tiles:
                job.total += 1
                if tile in adoptable:
                    job.adopted.add(tile)
                    job.in_flight += 1
                elif self._store.has(source, tile.z, tile.x, tile.y):
                    job.skipped += 1
                else:
                    self._queue.append((job, tile))
                    job.queued += 1
        except PersistenceError:
            del self._jobs[job_id]
            self._drop_queued(job)
            job.done.set()
            raise

        logger.info(
            'Job %s started: %d tiles, %d already stored, %d already in flight',
            job_id,
            job.total,
            job.skipped,
            len(job.adopted),
        )
        if not self._check_completion(job):
            self._pump()
        return job.snapshot()

    def status(self, job_id: str) -> JobProgress | None:
        job = self._jobs.get(job_id)
        return job.snapshot() if job else None

    def cancel_job(self, job_id: str, *, discard: bool = False) -> bool:
        """Drop queued tiles, persist ``cancelled`` and release bookkeeping.

        In-flight fetches are left to finish and no longer count towards the
        job. Their bytes are stored unless ``discard`` is set, which is what
        deleting a job together with its tiles needs.

        Returns:
            False if the job was not active.
        """
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        dropped = self._drop_queued(job)
        job.status = JobStatus.CANCELLED
        if discard:
            run: _ActiveJob | None = job
            while run is not None:
                run.discard = True
                run = run.replaced
        job.done.set()
        self._registry.update_progress(job_id, job.stored)
        self._registry.update_status(job_id, JobStatus.CANCELLED)
        logger.info(
            'Job %s cancelled: %d downloaded, %d dropped from queue',
            job_id,
            job.downloaded,
            dropped,
        )
        return True

    async def wait(self, job_id: str) -> JobProgress | None:
        """Wait until ``job_id`` is no longer active.

        Returns:
            Final counters of the last run, or None if the job was not active.
        """
        last: _ActiveJob | None = None
        while (job := self._jobs.get(job_id)) is not None:
            last = job
            await job.done.wait()
        return last.snapshot() if last else None

    async def aclose(self) -> None:
        """Cancel every active job and wait for in-flight fetches to stop."""
        for job_id in list(self._jobs):
            self.cancel_job(job_id)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _drop_queued(self, job: _ActiveJob) -> int:
        before = len(self._queue)
        self._queue = deque(item for item in self._queue if item[0] is not job)
        job.queued = 0
        return before - len(self._queue)

    def _pump(self) -> None:
        while self._in_flight < self.max_concurrent and self._queue:
            job, tile = self._queue.popleft()
            job.queued -= 1
            job.in_flight += 1
            job.fetching.add(tile)
            self._in_flight += 1
            task = asyncio.create_task(self._run(job, tile))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _is_current(self, job: _ActiveJob) -> bool:
        return self._jobs.get(job.job_id) is job

    async def _run(self, job: _ActiveJob, tile: TileCoord) -> None:
        try:
            error = await self._fetch_and_store(job, tile)
        except asyncio.CancelledError:
            self._release(job, tile)
            raise

        owner = self._release(job, tile)
        if owner is not None:
            if error is None:
                self._record_success(owner)
            else:
                self._record_failure(owner, error)
            self._check_completion(owner)
        self._pump()

    async def _fetch_and_store(self, job: _ActiveJob, tile: TileCoord) -> str | None:
        """Fetch and save one tile; the error message, or None on success."""
        try:
            await self._gate.wait()
            data = await self._fetcher.fetch(job.source, tile.z, tile.x, tile.y)
        except FetchError as e:
            logger.warning('Tile %s/%d/%d/%d failed: %s', job.source, tile.z, tile.x, tile.y, e)
            return str(e)
        except Exception as e:
            logger.exception('Unexpected error fetching %s/%d/%d/%d', job.source, tile.z, tile.x, tile.y)
            return str(e)

        if job.discard:
            logger.debug(
                'Dropping tile %s/%d/%d/%d of deleted job %s',
                job.source,
                tile.z,
                tile.x,
                tile.y,
                job.job_id,
            )
            return None
        try:
            self._store.put(job.source, tile.z, tile.x, tile.y, data)
        except PersistenceError as e:
            logger.error(
                'Failed to store tile %s/%d/%d/%d: %s',
                job.source,
                tile.z,
                tile.x,
                tile.y,
                e,
            )
            return str(e)
        return None

    def _release(self, job: _ActiveJob, tile: TileCoord) -> _ActiveJob | None:
        """Free the slot of a finished fetch and return the run it counts for."""
        self._in_flight -= 1
        job.in_flight -= 1
        job.fetching.discard(tile)
        current = self._jobs.get(job.job_id)
        if current is job:
            return job
        if current is not None and tile in current.adopted:
            current.adopted.discard(tile)
            current.in_flight -= 1
            return current
        return None

    def _record_success(self, job: _ActiveJob) -> None:
        job.downloaded += 1
        if job.downloaded % self._flush_every == 0:
            self._flush_progress(job)

    def _record_failure(self, job: _ActiveJob, message: str) -> None:
        job.failed += 1
        job.last_error = message

    def _flush_progress(self, job: _ActiveJob) -> None:
        try:
            self._registry.update_progress(job.job_id, job.stored)
        except PersistenceError as e:
            logger.error('Failed to persist progress of job %s: %s', job.job_id, e)
            job.last_error = str(e)

    def _check_completion(self, job: _ActiveJob) -> bool:
        if not self._is_current(job):
            return False
        if job.in_flight or job.queued or job.accounted < job.total:
            return False

        status = JobStatus.COMPLETED_WITH_ERRORS if job.failed else JobStatus.COMPLETED
        del self._jobs[job.job_id]
        job.status = status
        job.done.set()
        try:
            self._registry.update_progress(job.job_id, job.stored)
            self._registry.update_status(job.job_id, status)
        except PersistenceError as e:
            logger.error('Failed to persist completion of job %s: %s', job.job_id, e)
        logger.info(
            'Job %s %s: %d downloaded, %d skipped, %d failed',
            job.job_id,
            status.value,
            job.downloaded,
            job.skipped,
            job.failed,
        )
        return True
