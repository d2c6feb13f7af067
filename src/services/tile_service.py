"""Job-oriented façade over the tile store, job registry and scheduler.

This is the only object the HTTP server and the CLI talk to.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from domain.models import (
    DownloadJob,
    DownloadStarted,
    Estimate,
    JobDeleted,
    JobExtended,
    JobProgress,
    JobView,
    Location,
    ServiceSettings,
    SourceDetails,
    StoreStats,
    TileSource,
)
from infrastructure.http.client import close_session, make_http_session
from infrastructure.http.geocoder import clean_location_string, location_for_bounds
from shared.constants import (
    AVERAGE_TILE_SIZE_KB,
    DOWNLOAD_TIME_PER_TILE_S,
    GEOCODER_TIMEOUT_S,
    JobStatus,
)
from shared.errors import JobNotFoundError, PersistenceError, ValidationError
from tiles.coverage import (
    count_tiles,
    enumerate_tiles,
    is_valid_tile,
    tile_range,
    validate_bounds,
    validate_zoom_range,
)
from tiles.database import TileDatabase
from tiles.executor import DownloadScheduler
from tiles.fetcher import RequestGate, TileFetcher
from tiles.registry import JobRegistry
from tiles.sources import available_sources, get_source, is_valid_source
from tiles.store import TileStore

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    import aiohttp

    from domain.models import GeoBounds

logger = logging.getLogger(__name__)


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        msg = 'Job name must be a non-empty string'
        raise ValidationError(msg)
    return name.strip()


class TileService:
    """Download, estimate, serve and manage tile jobs.

    Usage:
        service = TileService(ServiceSettings(db_path='data/tiles.db'))
        started = await service.download('nyc', 'arcgis', bounds, 14, 16)
        await service.wait_for_job(started.job_id)
        await service.aclose()
    """

    def __init__(
        self,
        settings: ServiceSettings | None = None,
        *,
        fetcher: TileFetcher | None = None,
        gate: RequestGate | None = None,
        geocoder: Callable[[GeoBounds], Awaitable[Location]] | None = None,
    ) -> None:
        self.settings = settings or ServiceSettings()
        self.database = TileDatabase(self.settings.db_path)
        self.store = TileStore(self.database, self.settings.cache_size)
        self.registry = JobRegistry(self.database)
        self.fetcher = fetcher or TileFetcher(timeout_s=self.settings.fetch_timeout_s)
        self.scheduler = DownloadScheduler(
            self.store,
            self.registry,
            self.fetcher,
            gate=gate or RequestGate(self.settings.rate_limit_s),
            max_concurrent=self.settings.max_concurrent_downloads,
        )
        self._geocoder = geocoder
        self._geocode_session: aiohttp.ClientSession | None = None
        self._background: set[asyncio.Task[None]] = set()
        logger.info(
            'TileService initialized (db=%s, concurrency=%d, rate limit=%d ms)',
            self.settings.db_path,
            self.settings.max_concurrent_downloads,
            self.settings.rate_limit_ms,
        )

    # ---- downloads -------------------------------------------------------

    async def download(
        self,
        name: str,
        source: str,
        bounds: GeoBounds | Mapping[str, Any],
        min_zoom: int,
        max_zoom: int,
    ) -> DownloadStarted:
        """Create a job and start fetching its tiles in the background.

        Raises:
            ValidationError: for a blank name, unknown source, invalid
                bounds or zoom range. Nothing is persisted in that case.
        """
        name = _clean_name(name)
        get_source(source)
        geo = validate_bounds(bounds)
        validate_zoom_range(min_zoom, max_zoom)

        total = count_tiles(geo, min_zoom, max_zoom)
        job = self.registry.create(name, source, geo, min_zoom, max_zoom, total)
        self.scheduler.start_job(job.id, source, enumerate_tiles(geo, min_zoom, max_zoom))
        if self.settings.geocode_jobs or self._geocoder is not None:
            self._spawn(self._geocode_job(job.id, geo))

        logger.info('Download job started: %s (%d tiles)', job.id, total)
        return DownloadStarted(
            job_id=job.id,
            name=name,
            source=source,
            total_tiles=total,
            status=self._current_status(job.id),
        )

    def estimate(
        self,
        bounds: GeoBounds | Mapping[str, Any],
        min_zoom: int,
        max_zoom: int,
    ) -> Estimate:
        geo = validate_bounds(bounds)
        validate_zoom_range(min_zoom, max_zoom)
        tile_count = count_tiles(geo, min_zoom, max_zoom)
        return Estimate(
            tile_count=tile_count,
            estimated_size_mb=round(tile_count * AVERAGE_TILE_SIZE_KB / 1024, 2),
            estimated_time_minutes=round(tile_count * DOWNLOAD_TIME_PER_TILE_S / 60, 2),
        )

    async def extend_job(self, job_id: str, min_zoom: int, max_zoom: int) -> JobExtended:
        """Widen a job's zoom range and restart it.

        The new range is the union of the stored and requested ranges, so
        extending never drops zoom levels. Stored tiles are skipped.

        Raises:
            JobNotFoundError: if the job does not exist.
            InvalidZoomRangeError: if the requested range is invalid.
        """
        job = self._require_job(job_id)
        validate_zoom_range(min_zoom, max_zoom)
        new_min = min(job.min_zoom, min_zoom)
        new_max = max(job.max_zoom, max_zoom)
        total = count_tiles(job.bounds, new_min, new_max)

        self.registry.update_zoom_range(job_id, new_min, new_max, total)
        self.scheduler.start_job(
            job_id, job.source, enumerate_tiles(job.bounds, new_min, new_max)
        )
        logger.info(
            'Job %s extended to zoom %d-%d (%d tiles)', job_id, new_min, new_max, total
        )
        return JobExtended(
            job_id=job_id,
            min_zoom=new_min,
            max_zoom=new_max,
            total_tiles=total,
            status=self._current_status(job_id),
        )

    async def wait_for_job(self, job_id: str) -> JobProgress | None:
        """Wait for an active job to finish; final counters, or None if idle."""
        return await self.scheduler.wait(job_id)

    def cancel_job(self, job_id: str) -> bool:
        return self.scheduler.cancel_job(job_id)

    def abandon_job(self, job_id: str) -> bool:
        """Mark a job that no live process is running as cancelled.

        A job stays ``pending`` or ``running`` in the registry when the
        process that owned it stopped. Returns False for a finished job.

        Raises:
            JobNotFoundError: if the job does not exist.
        """
        job = self._require_job(job_id)
        if self.scheduler.is_active(job_id):
            return self.cancel_job(job_id)
        if job.status.is_terminal:
            return False
        logger.info('Marking abandoned job %s as cancelled', job_id)
        return self.registry.update_status(job_id, JobStatus.CANCELLED)

    # ---- tiles -----------------------------------------------------------

    def get_tile(self, source: str, z: int, x: int, y: int) -> bytes | None:
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in (z, x, y)):
            return None
        if not is_valid_tile(x, y, z):
            return None
        return self.store.get(source, z, x, y)

    def has_tile(self, source: str, z: int, x: int, y: int) -> bool:
        if not is_valid_tile(x, y, z):
            return False
        return self.store.has(source, z, x, y)

    def get_tile_count(self, source: str | None = None) -> int:
        if source is None:
            return self.store.total_count()
        return self.store.count(source)

    def get_stats(self) -> StoreStats:
        return StoreStats(total_tiles=self.store.total_count(), sources=self.store.stats())

    def get_sources(self) -> list[TileSource]:
        return available_sources()

    def get_source(self, source_id: str) -> SourceDetails | None:
        if not is_valid_source(source_id):
            return None
        source = get_source(source_id)
        return SourceDetails(**source.model_dump(), tile_count=self.store.count(source_id))

    # ---- jobs ------------------------------------------------------------

    def get_job_status(self, job_id: str) -> JobView | None:
        job = self.registry.get(job_id)
        if job is None:
            return None
        return self._view(job)

    def get_jobs(self) -> list[JobView]:
        return [self._view(job) for job in self.registry.list_all()]

    def delete_job(self, job_id: str, delete_tiles: bool = True) -> JobDeleted:
        """Delete a job record and, optionally, every tile inside its bounds.

        An active job is cancelled first.

        Raises:
            JobNotFoundError: if the job does not exist.
        """
        job = self._require_job(job_id)
        self.scheduler.cancel_job(job_id, discard=delete_tiles)

        tiles_deleted = 0
        if delete_tiles:
            for z in range(job.min_zoom, job.max_zoom + 1):
                tiles_deleted += self.store.delete_range(
                    job.source, z, tile_range(job.bounds, z)
                )
        self.registry.delete(job_id)
        logger.info('Job %s deleted (%d tiles removed)', job_id, tiles_deleted)
        return JobDeleted(deleted=True, tiles_deleted=tiles_deleted)

    def rename_job(self, job_id: str, name: str) -> bool:
        name = _clean_name(name)
        self._require_job(job_id)
        return self.registry.rename(job_id, name)

    def update_job_location(
        self, job_id: str, country: str | None, city: str | None
    ) -> bool:
        self._require_job(job_id)
        return self.registry.update_location(
            job_id, clean_location_string(country), clean_location_string(city)
        )

    # ---- lifecycle -------------------------------------------------------

    async def aclose(self) -> None:
        """Cancel active jobs, stop background work and release resources."""
        await self.scheduler.aclose()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.fetcher.close()
        await close_session(self._geocode_session)
        self._geocode_session = None
        self.close()

    def close(self) -> None:
        self.store.close()
        self.database.close()

    async def __aenter__(self) -> TileService:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ---- helpers ---------------------------------------------------------

    def _require_job(self, job_id: str) -> DownloadJob:
        job = self.registry.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _current_status(self, job_id: str) -> JobStatus:
        if self.scheduler.is_active(job_id):
            return JobStatus.RUNNING
        job = self.registry.get(job_id)
        return job.status if job else JobStatus.PENDING

    def _view(self, job: DownloadJob) -> JobView:
        base = {
            'job_id': job.id,
            'name': job.name,
            'source': job.source,
            'bounds': job.bounds,
            'min_zoom': job.min_zoom,
            'max_zoom': job.max_zoom,
            'country': job.country,
            'city': job.city,
            'created_at': job.created_at,
            'updated_at': job.updated_at,
        }
        live = self.scheduler.status(job.id)
        if live is None:
            return JobView(
                **base,
                total_tiles=job.total_tiles,
                downloaded_tiles=job.downloaded_tiles,
                progress=job.progress,
                status=job.status,
            )
        return JobView(
            **base,
            total_tiles=live.total_tiles,
            downloaded_tiles=live.stored_tiles,
            skipped_tiles=live.skipped_tiles,
            failed_tiles=live.failed_tiles,
            queued_tiles=live.queued_tiles,
            progress=live.progress,
            status=live.status,
            active=True,
            last_error=live.last_error,
        )

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _locate(self, bounds: GeoBounds) -> Location:
        if self._geocoder is not None:
            return await self._geocoder(bounds)
        if self._geocode_session is None or self._geocode_session.closed:
            self._geocode_session = make_http_session(GEOCODER_TIMEOUT_S)
        return await location_for_bounds(self._geocode_session, bounds)

    async def _geocode_job(self, job_id: str, bounds: GeoBounds) -> None:
        location = await self._locate(bounds)
        if not (location.country or location.city):
            return
        try:
            self.registry.update_location(job_id, location.country, location.city)
        except PersistenceError as e:
            logger.error('Failed to store location of job %s: %s', job_id, e)
        else:
            logger.debug('Job %s located in %s, %s', job_id, location.city, location.country)
