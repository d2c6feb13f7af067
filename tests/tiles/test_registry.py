"""Tests for JobRegistry."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from domain.models import GeoBounds
from shared.constants import JobStatus
from tiles.database import TileDatabase
from tiles.registry import JobRegistry, new_job_id

BOUNDS = GeoBounds(north=40.76, south=40.74, east=-73.97, west=-73.99)


@pytest.fixture
def registry():
    """Create JobRegistry over a temporary database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = TileDatabase(Path(tmpdir) / 'tiles.db')
        yield JobRegistry(db)
        db.close()


class TestNewJobId:
    """Tests for job id generation."""

    def test_is_32_hex_chars(self):
        job_id = new_job_id()
        assert len(job_id) == 32
        int(job_id, 16)

    def test_unique(self):
        assert len({new_job_id() for _ in range(100)}) == 100


class TestJobRegistry:
    """Tests for JobRegistry CRUD."""

    def test_create_and_get(self, registry):
        job = registry.create('Manhattan', 'arcgis', BOUNDS, 16, 18, 120)
        assert job.status == JobStatus.PENDING
        assert job.downloaded_tiles == 0
        assert job.created_at == job.updated_at

        loaded = registry.get(job.id)
        assert loaded == job
        assert loaded.bounds == BOUNDS

    def test_create_with_explicit_id(self, registry):
        job = registry.create('x', 'google', BOUNDS, 1, 1, 1, job_id='abc')
        assert job.id == 'abc'
        assert registry.get('abc') is not None

    def test_get_unknown(self, registry):
        assert registry.get('missing') is None

    def test_list_newest_first(self, registry):
        first = registry.create('first', 'arcgis', BOUNDS, 1, 1, 1)
        second = registry.create('second', 'arcgis', BOUNDS, 1, 1, 1)
        assert [j.id for j in registry.list_all()] == [second.id, first.id]

    def test_update_progress_and_status(self, registry):
        job = registry.create('a', 'arcgis', BOUNDS, 1, 2, 5)
        assert registry.update_progress(job.id, 3)
        assert registry.update_status(job.id, JobStatus.RUNNING)
        loaded = registry.get(job.id)
        assert loaded.downloaded_tiles == 3
        assert loaded.status == JobStatus.RUNNING
        assert loaded.progress == 60

    def test_update_status_accepts_string(self, registry):
        job = registry.create('a', 'arcgis', BOUNDS, 1, 2, 5)
        registry.update_status(job.id, 'completed')
        assert registry.get(job.id).status == JobStatus.COMPLETED

    def test_update_zoom_range(self, registry):
        job = registry.create('a', 'arcgis', BOUNDS, 16, 18, 10)
        assert registry.update_zoom_range(job.id, 14, 20, 500)
        loaded = registry.get(job.id)
        assert (loaded.min_zoom, loaded.max_zoom, loaded.total_tiles) == (14, 20, 500)

    def test_rename_and_location(self, registry):
        job = registry.create('a', 'arcgis', BOUNDS, 1, 1, 1)
        assert registry.rename(job.id, 'Midtown')
        assert registry.update_location(job.id, 'United States', 'New York')
        loaded = registry.get(job.id)
        assert loaded.name == 'Midtown'
        assert loaded.country == 'United States'
        assert loaded.city == 'New York'

    def test_updates_on_unknown_job_report_false(self, registry):
        assert not registry.update_progress('nope', 1)
        assert not registry.update_status('nope', JobStatus.CANCELLED)
        assert not registry.rename('nope', 'x')
        assert not registry.delete('nope')

    def test_delete(self, registry):
        job = registry.create('a', 'arcgis', BOUNDS, 1, 1, 1)
        assert registry.delete(job.id)
        assert registry.get(job.id) is None
        assert registry.list_all() == []
