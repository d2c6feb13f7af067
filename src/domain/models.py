import math
from typing import NamedTuple

from pydantic import BaseModel, field_validator

from shared.constants import (
    DEFAULT_CACHE_SIZE,
    DEFAULT_DB_PATH,
    DEFAULT_FETCH_TIMEOUT_S,
    DEFAULT_HOST,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_CONCURRENT_DOWNLOADS,
    DEFAULT_PORT,
    DEFAULT_RATE_LIMIT_MS,
    GEOCODE_JOBS_DEFAULT,
    LOG_LEVELS,
    MAX_ZOOM,
    MIN_ZOOM,
    TILE_SIZE,
    JobStatus,
)


def progress_percent(done: int, total: int) -> int:
    """Integer percentage, rounded half away from zero; 0 for an empty job."""
    if total <= 0:
        return 0
    return math.floor(100 * done / total + 0.5)


class TileCoord(NamedTuple):
    """Tile index in the XYZ scheme."""

    x: int
    y: int
    z: int


class GeoBounds(BaseModel):
    """Географический прямоугольник в градусах WGS84."""

    model_config = {'frozen': True}

    north: float
    south: float
    east: float
    west: float

    @field_validator('north', 'south', 'east', 'west', mode='before')
    @classmethod
    def validate_number(cls, v):
        # bool — подкласс int, но координатой не является
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            msg = 'coordinate must be a number'
            raise ValueError(msg)
        v = float(v)
        if not math.isfinite(v):
            msg = 'coordinate must be finite'
            raise ValueError(msg)
        return v

    @property
    def center(self) -> tuple[float, float]:
        """(lat, lng) of the box centre."""
        return (self.north + self.south) / 2, (self.east + self.west) / 2


class TileRange(BaseModel):
    """Inclusive rectangle of tile indices at one zoom level."""

    model_config = {'frozen': True}

    min_x: int
    max_x: int
    min_y: int
    max_y: int
    z: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def count(self) -> int:
        return self.width * self.height


class TileSource(BaseModel):
    """Remote imagery provider with an XYZ URL template."""

    model_config = {'frozen': True}

    id: str
    name: str
    url: str
    attribution: str
    subdomains: tuple[str, ...] = ()
    min_zoom: int = MIN_ZOOM
    max_zoom: int = MAX_ZOOM
    tile_size: int = TILE_SIZE
    type: str = 'satellite'
    terms_of_service: str | None = None


class DownloadJob(BaseModel):
    """Persisted download job record."""

    id: str
    name: str
    source: str
    bounds: GeoBounds
    min_zoom: int
    max_zoom: int
    total_tiles: int
    downloaded_tiles: int = 0
    status: JobStatus = JobStatus.PENDING
    country: str | None = None
    city: str | None = None
    created_at: int
    updated_at: int

    @property
    def progress(self) -> int:
        return progress_percent(self.downloaded_tiles, self.total_tiles)


class JobProgress(BaseModel):
    """Live counters of a job that the scheduler is currently running.

    ``downloaded_tiles``, ``skipped_tiles`` and ``failed_tiles`` describe the
    current run only. ``stored_tiles`` is the job's downloaded counter over
    all of its runs; it is what the registry persists and what ``progress``
    is computed from.
    """

    job_id: str
    source: str
    total_tiles: int
    stored_tiles: int
    downloaded_tiles: int
    skipped_tiles: int
    failed_tiles: int
    queued_tiles: int
    in_flight_tiles: int
    progress: int
    status: JobStatus
    last_error: str | None = None


class JobView(BaseModel):
    """
    Статус задания для внешних потребителей (CLI, HTTP).

    Для активного задания счётчики берутся из памяти планировщика,
    для завершённого — из последнего сохранённого снимка в БД.
    """

    job_id: str
    name: str | None = None
    source: str
    bounds: GeoBounds | None = None
    min_zoom: int | None = None
    max_zoom: int | None = None
    total_tiles: int
    downloaded_tiles: int
    skipped_tiles: int | None = None
    failed_tiles: int | None = None
    queued_tiles: int | None = None
    progress: int
    status: JobStatus
    country: str | None = None
    city: str | None = None
    created_at: int | None = None
    updated_at: int | None = None
    active: bool = False
    last_error: str | None = None


class Location(BaseModel):
    country: str | None = None
    city: str | None = None


class Estimate(BaseModel):
    tile_count: int
    estimated_size_mb: float
    estimated_time_minutes: float


class SourceStats(BaseModel):
    """Aggregates over all stored tiles of one source."""

    source: str
    tile_count: int
    total_size_bytes: int
    oldest_tile: int | None = None
    newest_tile: int | None = None

    @property
    def total_size_mb(self) -> float:
        return round(self.total_size_bytes / 1024 / 1024, 2)


class StoreStats(BaseModel):
    total_tiles: int
    sources: list[SourceStats]


class DownloadStarted(BaseModel):
    job_id: str
    name: str
    source: str
    total_tiles: int
    status: JobStatus


class JobExtended(BaseModel):
    job_id: str
    min_zoom: int
    max_zoom: int
    total_tiles: int
    status: JobStatus


class JobDeleted(BaseModel):
    deleted: bool
    tiles_deleted: int = 0


class ServiceSettings(BaseModel):
    """Настройки сервиса: файл БД, лимиты загрузки, кэш, логирование."""

    model_config = {
        'extra': 'ignore',  # игнорировать лишние поля из конфигурации
    }

    db_path: str = DEFAULT_DB_PATH
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_concurrent_downloads: int = DEFAULT_MAX_CONCURRENT_DOWNLOADS
    rate_limit_ms: int = DEFAULT_RATE_LIMIT_MS
    cache_size: int = DEFAULT_CACHE_SIZE
    fetch_timeout_s: float = DEFAULT_FETCH_TIMEOUT_S
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: str | None = None
    geocode_jobs: bool = GEOCODE_JOBS_DEFAULT

    @field_validator('max_concurrent_downloads')
    @classmethod
    def validate_concurrency(cls, v: int | str) -> int:
        v = int(v)
        if v < 1:
            msg = 'max_concurrent_downloads must be at least 1'
            raise ValueError(msg)
        return v

    @field_validator('rate_limit_ms', 'cache_size')
    @classmethod
    def validate_non_negative(cls, v: int | str) -> int:
        v = int(v)
        if v < 0:
            msg = 'value must not be negative'
            raise ValueError(msg)
        return v

    @field_validator('fetch_timeout_s')
    @classmethod
    def validate_timeout(cls, v: float | str) -> float:
        v = float(v)
        if v <= 0:
            msg = 'fetch_timeout_s must be positive'
            raise ValueError(msg)
        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v: int | str) -> int:
        v = int(v)
        if not (0 < v < 65536):
            msg = 'port must be in range 1..65535'
            raise ValueError(msg)
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = str(v).lower()
        if v not in LOG_LEVELS:
            msg = f'log_level must be one of: {", ".join(LOG_LEVELS)}'
            raise ValueError(msg)
        return v

    @property
    def rate_limit_s(self) -> float:
        return self.rate_limit_ms / 1000.0


class SourceDetails(TileSource):
    """Источник с числом уже сохранённых тайлов."""

    tile_count: int = 0
