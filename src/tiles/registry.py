"""Durable job records.

Jobs live in the ``download_jobs`` table of the tile database. Live counters
of running jobs are kept by the scheduler; this module only holds the last
persisted snapshot.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from typing import TYPE_CHECKING, Any

from domain.models import DownloadJob, GeoBounds
from shared.constants import JOB_ID_BYTES, JobStatus

if TYPE_CHECKING:
    from tiles.database import TileDatabase

logger = logging.getLogger(__name__)

_COLUMNS = (
    'id, name, source, bounds, min_zoom, max_zoom, total_tiles, '
    'downloaded_tiles, status, country, city, created_at, updated_at'
)


def new_job_id() -> str:
    return secrets.token_hex(JOB_ID_BYTES)


def _row_to_job(row: tuple[Any, ...]) -> DownloadJob:
    (
        job_id,
        name,
        source,
        bounds,
        min_zoom,
        max_zoom,
        total_tiles,
        downloaded_tiles,
        status,
        country,
        city,
        created_at,
        updated_at,
    ) = row
    return DownloadJob(
        id=job_id,
        name=name,
        source=source,
        bounds=GeoBounds.model_validate(json.loads(bounds)),
        min_zoom=min_zoom,
        max_zoom=max_zoom,
        total_tiles=total_tiles,
        downloaded_tiles=downloaded_tiles,
        status=JobStatus(status),
        country=country,
        city=city,
        created_at=created_at,
        updated_at=updated_at,
    )


class JobRegistry:
    """CRUD over persisted download jobs.

    Every mutation commits before returning, refreshes ``updated_at`` and
    reports whether a row was affected.
    """

    def __init__(self, database: TileDatabase) -> None:
        self.database = database

    def create(
        self,
        name: str,
        source: str,
        bounds: GeoBounds,
        min_zoom: int,
        max_zoom: int,
        total_tiles: int,
        *,
        job_id: str | None = None,
    ) -> DownloadJob:
        """Insert a new ``pending`` job and return it."""
        now = int(time.time())
        job = DownloadJob(
            id=job_id or new_job_id(),
            name=name,
            source=source,
            bounds=bounds,
            min_zoom=min_zoom,
            max_zoom=max_zoom,
            total_tiles=total_tiles,
            created_at=now,
            updated_at=now,
        )
        with self.database.transaction() as conn:
            conn.execute(
                f'INSERT INTO download_jobs ({_COLUMNS}) '
                'VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
                (
                    job.id,
                    job.name,
                    job.source,
                    bounds.model_dump_json(),
                    job.min_zoom,
                    job.max_zoom,
                    job.total_tiles,
                    job.downloaded_tiles,
                    job.status.value,
                    job.country,
                    job.city,
                    job.created_at,
                    job.updated_at,
                ),
            )
        logger.info(
            'Created job %s (%s, %d tiles, z%d-%d)',
            job.id,
            source,
            total_tiles,
            min_zoom,
            max_zoom,
        )
        return job

    def get(self, job_id: str) -> DownloadJob | None:
        row = self.database.query_one(
            f'SELECT {_COLUMNS} FROM download_jobs WHERE id = ?', (job_id,)
        )
        return _row_to_job(row) if row else None

    def list_all(self) -> list[DownloadJob]:
        """All jobs, newest first."""
        rows = self.database.query_all(
            f'SELECT {_COLUMNS} FROM download_jobs '
            'ORDER BY created_at DESC, rowid DESC'
        )
        return [_row_to_job(r) for r in rows]

    def _update(self, assignments: str, params: tuple[Any, ...], job_id: str) -> bool:
        now = int(time.time())
        with self.database.transaction() as conn:
            cursor = conn.execute(
                f'UPDATE download_jobs SET {assignments}, updated_at = ? WHERE id = ?',
                (*params, now, job_id),
            )
        return cursor.rowcount > 0

    def update_progress(self, job_id: str, downloaded_tiles: int) -> bool:
        return self._update('downloaded_tiles = ?', (downloaded_tiles,), job_id)

    def update_status(self, job_id: str, status: JobStatus) -> bool:
        updated = self._update('status = ?', (JobStatus(status).value,), job_id)
        if updated:
            logger.debug('Job %s -> %s', job_id, JobStatus(status).value)
        return updated

    def update_zoom_range(
        self, job_id: str, min_zoom: int, max_zoom: int, total_tiles: int
    ) -> bool:
        return self._update(
            'min_zoom = ?, max_zoom = ?, total_tiles = ?',
            (min_zoom, max_zoom, total_tiles),
            job_id,
        )

    def rename(self, job_id: str, name: str) -> bool:
        return self._update('name = ?', (name,), job_id)

    def update_location(
        self, job_id: str, country: str | None, city: str | None
    ) -> bool:
        return self._update('country = ?, city = ?', (country, city), job_id)

    def delete(self, job_id: str) -> bool:
        with self.database.transaction() as conn:
            cursor = conn.execute('DELETE FROM download_jobs WHERE id = ?', (job_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info('Deleted job %s', job_id)
        return deleted
