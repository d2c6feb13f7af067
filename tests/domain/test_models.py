"""Tests for domain models."""

from __future__ import annotations

import math

import pytest
from pydantic import ValidationError

from domain.models import (
    DownloadJob,
    GeoBounds,
    ServiceSettings,
    SourceStats,
    TileRange,
    progress_percent,
)
from shared.constants import JobStatus


class TestProgressPercent:
    """Tests for progress_percent rounding."""

    @pytest.mark.parametrize(
        ('done', 'total', 'expected'),
        [
            (0, 0, 0),
            (0, 10, 0),
            (1, 3, 33),
            (2, 3, 67),
            (1, 200, 1),
            (1, 8, 13),
            (10, 10, 100),
        ],
    )
    def test_rounding(self, done, total, expected):
        assert progress_percent(done, total) == expected


class TestGeoBounds:
    """Tests for GeoBounds."""

    def test_ints_become_floats(self):
        b = GeoBounds(north=1, south=0, east=2, west=-2)
        assert isinstance(b.north, float)
        assert b.center == (0.5, 0.0)

    @pytest.mark.parametrize('bad', ['1', True, None, math.inf, math.nan])
    def test_rejects_non_numbers(self, bad):
        with pytest.raises(ValidationError):
            GeoBounds(north=bad, south=0, east=1, west=0)

    def test_frozen(self):
        b = GeoBounds(north=1, south=0, east=1, west=0)
        with pytest.raises(ValidationError):
            b.north = 2


class TestTileRange:
    """Tests for TileRange."""

    def test_count(self):
        rng = TileRange(min_x=2, max_x=4, min_y=10, max_y=11, z=5)
        assert rng.width == 3
        assert rng.height == 2
        assert rng.count == 6


class TestDownloadJob:
    """Tests for DownloadJob."""

    def test_progress(self):
        job = DownloadJob(
            id='a',
            name='n',
            source='arcgis',
            bounds=GeoBounds(north=1, south=0, east=1, west=0),
            min_zoom=1,
            max_zoom=2,
            total_tiles=3,
            downloaded_tiles=2,
            created_at=0,
            updated_at=0,
        )
        assert job.progress == 67
        assert job.status == JobStatus.PENDING


class TestSourceStats:
    """Tests for SourceStats."""

    def test_total_size_mb(self):
        stats = SourceStats(source='arcgis', tile_count=1, total_size_bytes=3 * 1024 * 1024 // 2)
        assert stats.total_size_mb == 1.5


class TestServiceSettings:
    """Tests for ServiceSettings validation."""

    def test_defaults(self):
        s = ServiceSettings()
        assert s.port == 3000
        assert s.max_concurrent_downloads == 4
        assert s.rate_limit_ms == 500
        assert s.rate_limit_s == 0.5
        assert s.cache_size == 1000
        assert s.geocode_jobs is False

    def test_extra_keys_ignored(self):
        s = ServiceSettings.model_validate({'port': 8080, 'unknown': 'x'})
        assert s.port == 8080

    def test_log_level_normalised(self):
        assert ServiceSettings(log_level='DEBUG').log_level == 'debug'

    @pytest.mark.parametrize(
        'kwargs',
        [
            {'max_concurrent_downloads': 0},
            {'rate_limit_ms': -1},
            {'cache_size': -5},
            {'fetch_timeout_s': 0},
            {'port': 70000},
            {'log_level': 'verbose'},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValidationError):
            ServiceSettings(**kwargs)
