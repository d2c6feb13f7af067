"""HTTP API over ``TileService`` built on ``aiohttp.web``.

JSON bodies use camelCase keys; tiles are served as raw bytes.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web
from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from shared.constants import APP_NAME, APP_VERSION, TILE_HTTP_MAX_AGE_S
from shared.errors import (
    InvalidBoundsError,
    InvalidZoomRangeError,
    JobNotFoundError,
    PersistenceError,
    UnknownSourceError,
    ValidationError,
)
from tiles.coverage import is_valid_tile
from tiles.sources import is_valid_source

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from services.tile_service import TileService

logger = logging.getLogger(__name__)

SERVICE_KEY: web.AppKey[TileService] = web.AppKey('service')

_ERROR_TITLES: dict[type[Exception], str] = {
    InvalidBoundsError: 'Invalid bounds',
    InvalidZoomRangeError: 'Invalid zoom range',
    UnknownSourceError: 'Invalid source',
    JobNotFoundError: 'Job not found',
}


def to_wire(value: Any) -> Any:
    """Pydantic models and dicts with camelCase keys, recursively."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode='json')
    if isinstance(value, dict):
        # keys without an underscore are already camelCase
        return {
            (to_camel(k) if '_' in k else k): to_wire(v) for k, v in value.items()
        }
    if isinstance(value, list | tuple):
        return [to_wire(v) for v in value]
    return value


def json_response(data: Any, *, status: int = 200) -> web.Response:
    return web.json_response(to_wire(data), status=status)


def error_response(status: int, error: str, message: str) -> web.Response:
    return web.json_response({'error': error, 'message': message}, status=status)


def _service(request: web.Request) -> TileService:
    return request.app[SERVICE_KEY]


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except json.JSONDecodeError as e:
        msg = 'Request body must be valid JSON'
        raise ValidationError(msg) from e
    if not isinstance(body, dict):
        msg = 'Request body must be a JSON object'
        raise ValidationError(msg)
    return body


def _int_param(request: web.Request, name: str) -> int | None:
    try:
        return int(request.match_info[name])
    except ValueError:
        return None


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    logger.debug('%s %s', request.method, request.path)
    try:
        return await handler(request)
    except JobNotFoundError as e:
        return error_response(404, 'Job not found', str(e))
    except ValidationError as e:
        title = _ERROR_TITLES.get(type(e), 'Invalid request')
        return error_response(400, title, str(e))
    except PersistenceError as e:
        logger.error('Storage error on %s %s: %s', request.method, request.path, e)
        return error_response(500, 'Storage error', str(e))


# ---- service ------------------------------------------------------------


async def index(request: web.Request) -> web.Response:
    return json_response(
        {
            'name': APP_NAME,
            'version': APP_VERSION,
            'endpoints': {
                'tiles': '/tiles/{source}/{z}/{x}/{y}.png',
                'sources': '/api/sources',
                'download': '/api/download',
                'health': '/health',
            },
        }
    )


async def health(request: web.Request) -> web.Response:
    service = _service(request)
    return json_response(
        {
            'status': 'ok',
            'total_tiles': service.get_tile_count(),
            'active_jobs': len(service.scheduler.active_jobs()),
        }
    )


# ---- tiles --------------------------------------------------------------


async def get_tile(request: web.Request) -> web.Response:
    source = request.match_info['source']
    if not is_valid_source(source):
        return error_response(400, 'Invalid source', f'Unknown tile source: {source}')
    z, x, y = (_int_param(request, k) for k in ('z', 'x', 'y'))
    if z is None or x is None or y is None or not is_valid_tile(x, y, z):
        return error_response(400, 'Invalid coordinates', 'Tile coordinates out of range')

    data = _service(request).get_tile(source, z, x, y)
    if data is None:
        return error_response(
            404, 'Tile not found', f'Tile {source}/{z}/{x}/{y} not in cache'
        )
    return web.Response(
        body=data,
        content_type='image/png',
        headers={
            'Cache-Control': f'public, max-age={TILE_HTTP_MAX_AGE_S}',
            'Access-Control-Allow-Origin': '*',
        },
    )


async def tile_count(request: web.Request) -> web.Response:
    source = request.match_info['source']
    if not is_valid_source(source):
        return error_response(400, 'Invalid source', f'Unknown tile source: {source}')
    return json_response({'source': source, 'count': _service(request).get_tile_count(source)})


# ---- sources ------------------------------------------------------------


async def list_sources(request: web.Request) -> web.Response:
    service = _service(request)
    stats = {s.source: s for s in service.get_stats().sources}
    result = []
    for source in service.get_sources():
        stat = stats.get(source.id)
        result.append(
            {
                **source.model_dump(mode='json'),
                'tile_count': stat.tile_count if stat else 0,
                'total_size_mb': stat.total_size_mb if stat else 0,
            }
        )
    return json_response(result)


async def source_stats(request: web.Request) -> web.Response:
    return json_response(
        [
            {
                'source': s.source,
                'tile_count': s.tile_count,
                'total_size_mb': s.total_size_mb,
                'oldest_tile': s.oldest_tile,
                'newest_tile': s.newest_tile,
            }
            for s in _service(request).get_stats().sources
        ]
    )


async def get_source(request: web.Request) -> web.Response:
    source_id = request.match_info['source_id']
    details = _service(request).get_source(source_id)
    if details is None:
        return error_response(404, 'Source not found', f'Unknown source: {source_id}')
    return json_response(details)


# ---- downloads ----------------------------------------------------------


async def start_download(request: web.Request) -> web.Response:
    body = await _read_json(request)
    started = await _service(request).download(
        body.get('name'),
        body.get('source'),
        body.get('bounds'),
        body.get('minZoom'),
        body.get('maxZoom'),
    )
    return json_response({'message': 'Download started', **started.model_dump()}, status=201)


async def list_downloads(request: web.Request) -> web.Response:
    return json_response(_service(request).get_jobs())


async def estimate_download(request: web.Request) -> web.Response:
    body = await _read_json(request)
    estimate = _service(request).estimate(
        body.get('bounds'), body.get('minZoom'), body.get('maxZoom')
    )
    return json_response(
        {
            'tileCount': estimate.tile_count,
            'estimatedSizeMB': estimate.estimated_size_mb,
            'estimatedTimeMinutes': estimate.estimated_time_minutes,
        }
    )


async def get_download(request: web.Request) -> web.Response:
    job_id = request.match_info['job_id']
    view = _service(request).get_job_status(job_id)
    if view is None:
        raise JobNotFoundError(job_id)
    return json_response(view)


async def delete_download(request: web.Request) -> web.Response:
    job_id = request.match_info['job_id']
    delete_tiles = request.query.get('deleteTiles', 'true').lower() != 'false'
    result = _service(request).delete_job(job_id, delete_tiles)
    return json_response(
        {'message': 'Job deleted', 'job_id': job_id, 'tiles_deleted': result.tiles_deleted}
    )


async def rename_download(request: web.Request) -> web.Response:
    job_id = request.match_info['job_id']
    body = await _read_json(request)
    name = body.get('name')
    _service(request).rename_job(job_id, name)
    return json_response({'message': 'Job renamed', 'job_id': job_id, 'name': name.strip()})


async def locate_download(request: web.Request) -> web.Response:
    job_id = request.match_info['job_id']
    body = await _read_json(request)
    service = _service(request)
    service.update_job_location(job_id, body.get('country'), body.get('city'))
    view = service.get_job_status(job_id)
    return json_response(
        {
            'message': 'Location updated',
            'job_id': job_id,
            'country': view.country if view else None,
            'city': view.city if view else None,
        }
    )


async def extend_download(request: web.Request) -> web.Response:
    job_id = request.match_info['job_id']
    body = await _read_json(request)
    extended = await _service(request).extend_job(
        job_id, body.get('minZoom'), body.get('maxZoom')
    )
    return json_response({'message': 'Job extended', **extended.model_dump()})


async def cancel_download(request: web.Request) -> web.Response:
    job_id = request.match_info['job_id']
    service = _service(request)
    if service.get_job_status(job_id) is None:
        raise JobNotFoundError(job_id)
    cancelled = service.cancel_job(job_id)
    return json_response({'job_id': job_id, 'cancelled': cancelled})


def create_app(service: TileService) -> web.Application:
    """Build the application; the service is closed on app cleanup."""
    app = web.Application(middlewares=[error_middleware])
    app[SERVICE_KEY] = service

    app.router.add_get('/', index)
    app.router.add_get('/health', health)

    app.router.add_get('/tiles/{source}/count', tile_count)
    app.router.add_get('/tiles/{source}/{z}/{x}/{y}.png', get_tile)

    app.router.add_get('/api/sources', list_sources)
    app.router.add_get('/api/sources/stats/all', source_stats)
    app.router.add_get('/api/sources/{source_id}', get_source)

    app.router.add_post('/api/download', start_download)
    app.router.add_get('/api/download', list_downloads)
    app.router.add_post('/api/download/estimate', estimate_download)
    app.router.add_get('/api/download/{job_id}', get_download)
    app.router.add_delete('/api/download/{job_id}', delete_download)
    app.router.add_patch('/api/download/{job_id}/rename', rename_download)
    app.router.add_patch('/api/download/{job_id}/location', locate_download)
    app.router.add_patch('/api/download/{job_id}/extend', extend_download)
    app.router.add_post('/api/download/{job_id}/cancel', cancel_download)

    async def _close_service(app: web.Application) -> None:
        await app[SERVICE_KEY].aclose()

    app.on_cleanup.append(_close_service)
    return app
