"""Command-line entry point for TileKeeper."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from aiohttp import web
from pydantic import ValidationError as PydanticValidationError

from domain.models import GeoBounds
from infrastructure.http.api_client import cancel_remote_job, server_url
from infrastructure.http.client import close_session, make_http_session
from server.app import create_app
from services.tile_service import TileService
from shared.config import resolve_settings, save_settings
from shared.constants import APP_NAME, APP_VERSION, CLI_HTTP_TIMEOUT_S
from shared.errors import ServerUnavailableError, TileKeeperError, ValidationError
from shared.progress import ConsoleProgress
from tiles.coverage import tile_range, tile_to_point
from tiles.sources import available_sources

if TYPE_CHECKING:
    from collections.abc import Sequence

    from domain.models import ServiceSettings

logger = logging.getLogger(__name__)

# Период опроса статуса задания для прогресс-бара, сек
PROGRESS_POLL_S = 1.0

_LOG_LEVELS = {
    'error': logging.ERROR,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'info': logging.INFO,
    'debug': logging.DEBUG,
}


def setup_logging(level: str = 'info', log_file: str | Path | None = None) -> None:
    """Configure root logging: stdout plus an optional UTF-8 log file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(path), encoding='utf-8'))
    logging.basicConfig(
        level=_LOG_LEVELS.get(level.lower(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def parse_bounds(text: str) -> GeoBounds:
    """Parse ``south,north,west,east`` into bounds (range checks happen later)."""
    parts = [p.strip() for p in text.split(',')]
    try:
        if len(parts) != 4:
            raise ValueError(text)
        south, north, west, east = (float(p) for p in parts)
    except ValueError:
        msg = 'Invalid bounds format. Use "south,north,west,east"'
        raise ValidationError(msg) from None
    try:
        return GeoBounds(north=north, south=south, east=east, west=west)
    except PydanticValidationError as e:
        msg = f'Invalid bounds: {text}'
        raise ValidationError(msg) from e


def parse_zoom(text: str) -> tuple[int, int]:
    """Parse ``min-max`` (or a single zoom) into a zoom range."""
    parts = [p.strip() for p in text.split('-')]
    try:
        if len(parts) == 1:
            z = int(parts[0])
            return z, z
        if len(parts) != 2:
            raise ValueError(text)
        return int(parts[0]), int(parts[1])
    except ValueError:
        msg = 'Invalid zoom format. Use "min-max" (e.g., "16-20")'
        raise ValidationError(msg) from None


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('-d', '--db', help='Database file path')
    common.add_argument('--config', help='TOML config file')
    common.add_argument(
        '-c', '--concurrent', type=int, help='Max concurrent downloads'
    )
    common.add_argument(
        '-l',
        '--log-level',
        choices=sorted(_LOG_LEVELS),
        help='Log level (error, warn, info, debug)',
    )

    parser = argparse.ArgumentParser(
        prog='tilekeeper',
        description='Offline map tile server - download, store and serve satellite tiles',
    )
    parser.add_argument('--version', action='version', version=f'{APP_NAME} {APP_VERSION}')
    sub = parser.add_subparsers(dest='command', required=True)

    serve = sub.add_parser('serve', parents=[common], help='Start the HTTP server')
    serve.add_argument('-p', '--port', type=int, help='Port to listen on')
    serve.add_argument('--host', help='Interface to bind')

    download = sub.add_parser(
        'download', parents=[common], help='Download tiles for a geographic region'
    )
    download.add_argument('-n', '--name', required=True, help='Name for this download job')
    download.add_argument(
        '-s', '--source', required=True, help='Tile source (arcgis, google, esri-world-imagery)'
    )
    download.add_argument(
        '-b', '--bounds', required=True, help='Geographic bounds as "south,north,west,east"'
    )
    download.add_argument(
        '-z', '--zoom', required=True, help='Zoom range as "min-max" (e.g., "16-20")'
    )

    estimate = sub.add_parser(
        'estimate', parents=[common], help='Estimate download size and time'
    )
    estimate.add_argument('-b', '--bounds', required=True)
    estimate.add_argument('-z', '--zoom', required=True)

    sub.add_parser('jobs', parents=[common], help='List all download jobs')

    status = sub.add_parser('status', parents=[common], help='Get status of a download job')
    status.add_argument('job_id')

    cancel = sub.add_parser(
        'cancel', parents=[common], help='Cancel a job running in the TileKeeper server'
    )
    cancel.add_argument('job_id')
    cancel.add_argument(
        '--server', help='Server URL (default: http://localhost:<port> from settings)'
    )

    delete = sub.add_parser(
        'delete', parents=[common], help='Delete a download job and its stored tiles'
    )
    delete.add_argument('job_id')
    delete.add_argument('--keep-tiles', action='store_true', help='Keep the stored tiles')

    sub.add_parser('sources', parents=[common], help='List available tile sources')
    sub.add_parser('stats', parents=[common], help='Show database statistics')

    config = sub.add_parser(
        'config', parents=[common], help='Write the effective settings to a TOML file'
    )
    config.add_argument('-o', '--output', required=True, help='Destination TOML file')
    return parser


def _settings_for(args: argparse.Namespace) -> ServiceSettings:
    quiet = args.command not in ('serve', 'download', 'config')
    overrides: dict[str, Any] = {
        'db_path': args.db,
        'max_concurrent_downloads': args.concurrent,
        'log_level': args.log_level or ('error' if quiet else None),
        'port': getattr(args, 'port', None),
        'host': getattr(args, 'host', None),
    }
    return resolve_settings(args.config, **overrides)


def _print_job(view: Any) -> None:
    print(f'  {view.job_id}')
    print(f'    Name: {view.name}')
    print(f'    Source: {view.source}')
    print(f'    Status: {view.status.value}')
    print(
        f'    Progress: {view.progress}% ({view.downloaded_tiles}/{view.total_tiles})'
    )
    print(f'    Zoom: {view.min_zoom}-{view.max_zoom}')
    if view.country or view.city:
        print(f'    Location: {", ".join(p for p in (view.city, view.country) if p)}')
    print()


def cmd_serve(settings: ServiceSettings) -> int:
    service = TileService(settings)
    logger.info('Serving on http://%s:%d', settings.host, settings.port)
    web.run_app(
        create_app(service), host=settings.host, port=settings.port, print=None
    )
    return 0


async def _download(args: argparse.Namespace, settings: ServiceSettings) -> int:
    bounds = parse_bounds(args.bounds)
    min_zoom, max_zoom = parse_zoom(args.zoom)
    async with TileService(settings) as service:
        print(f'Starting download: {args.name}')
        print(f'  Source: {args.source}')
        print(
            f'  Bounds: N={bounds.north}, S={bounds.south}, '
            f'E={bounds.east}, W={bounds.west}'
        )
        print(f'  Zoom: {min_zoom}-{max_zoom}')
        started = await service.download(args.name, args.source, bounds, min_zoom, max_zoom)
        print(f'Job started: {started.job_id}')
        print(f'Total tiles: {started.total_tiles}')

        progress = ConsoleProgress(started.total_tiles, label='Downloading')
        waiter = asyncio.ensure_future(service.wait_for_job(started.job_id))
        try:
            while not waiter.done():
                live = service.scheduler.status(started.job_id)
                if live is not None:
                    progress.update(
                        live.downloaded_tiles + live.skipped_tiles + live.failed_tiles,
                        live.total_tiles,
                    )
                await asyncio.wait({waiter}, timeout=PROGRESS_POLL_S)
        finally:
            if not waiter.done():
                waiter.cancel()
                print('\nCancelling download...')
                service.cancel_job(started.job_id)
        final = waiter.result()
        if final is not None:
            progress.update(
                final.downloaded_tiles + final.skipped_tiles + final.failed_tiles,
                final.total_tiles,
            )
        progress.close()

        view = service.get_job_status(started.job_id)
        print(f'Download {view.status.value if view else "finished"}')
        if final is not None:
            print(f'  Downloaded: {final.downloaded_tiles}')
            print(f'  Skipped: {final.skipped_tiles}')
            print(f'  Failed: {final.failed_tiles}')
            if final.last_error:
                print(f'  Last error: {final.last_error}')
    return 0


def cmd_estimate(service: TileService, args: argparse.Namespace) -> int:
    bounds = parse_bounds(args.bounds)
    min_zoom, max_zoom = parse_zoom(args.zoom)
    estimate = service.estimate(bounds, min_zoom, max_zoom)
    print('Download Estimate:')
    print(f'  Tile count: {estimate.tile_count:,}')
    print(f'  Estimated size: {estimate.estimated_size_mb} MB')
    print(f'  Estimated time: {estimate.estimated_time_minutes} minutes')

    # Фактически скачиваемая область: границы тайлов на максимальном зуме
    rng = tile_range(bounds, max_zoom)
    north, west = tile_to_point(rng.min_x, rng.min_y, max_zoom)
    south, east = tile_to_point(rng.max_x + 1, rng.max_y + 1, max_zoom)
    print(
        f'  Tile-aligned extent at zoom {max_zoom}: '
        f'N={north:.6f}, S={south:.6f}, W={west:.6f}, E={east:.6f}'
    )
    return 0


def cmd_jobs(service: TileService) -> int:
    jobs = service.get_jobs()
    if not jobs:
        print('No download jobs found.')
        return 0
    print('Download Jobs:')
    print()
    for view in jobs:
        _print_job(view)
    return 0


def cmd_status(service: TileService, job_id: str) -> int:
    view = service.get_job_status(job_id)
    if view is None:
        print(f'Job not found: {job_id}', file=sys.stderr)
        return 1
    print('Job Status:')
    print(f'  ID: {view.job_id}')
    print(f'  Name: {view.name or "N/A"}')
    print(f'  Source: {view.source}')
    print(f'  Status: {view.status.value}')
    print(f'  Progress: {view.progress}%')
    print(f'  Total tiles: {view.total_tiles}')
    print(f'  Downloaded: {view.downloaded_tiles}')
    if view.skipped_tiles is not None:
        print(f'  Skipped: {view.skipped_tiles}')
    if view.failed_tiles is not None:
        print(f'  Failed: {view.failed_tiles}')
    return 0


async def cmd_cancel(settings: ServiceSettings, job_id: str, base_url: str) -> int:
    """Cancel a job through the server that runs it.

    Jobs only run inside a live process, so the request goes to the HTTP
    API. When no server answers, a job left ``pending`` or ``running`` by a
    stopped process is marked cancelled in the database instead.
    """
    session = make_http_session(CLI_HTTP_TIMEOUT_S)
    try:
        cancelled = await cancel_remote_job(session, base_url, job_id)
    except ServerUnavailableError as e:
        logger.debug('%s', e)
        return _cancel_locally(settings, job_id, base_url)
    finally:
        await close_session(session)

    if cancelled:
        print(f'Job cancelled: {job_id}')
    else:
        print(f'Job not running: {job_id}')
    return 0


def _cancel_locally(settings: ServiceSettings, job_id: str, base_url: str) -> int:
    service = TileService(settings)
    try:
        marked = service.abandon_job(job_id)
    finally:
        service.close()
    if marked:
        print(f'No server at {base_url}; job marked cancelled: {job_id}')
    else:
        print(f'Job not running: {job_id}')
    return 0


def cmd_delete(service: TileService, job_id: str, *, keep_tiles: bool) -> int:
    result = service.delete_job(job_id, delete_tiles=not keep_tiles)
    print(f'Job deleted: {job_id}')
    if not keep_tiles:
        print(f'Tiles removed: {result.tiles_deleted}')
    return 0


def cmd_sources() -> int:
    print('Available Tile Sources:')
    print()
    for source in available_sources():
        print(f'  {source.id}')
        print(f'    Name: {source.name}')
        print(f'    Zoom: {source.min_zoom}-{source.max_zoom}')
        print(f'    Attribution: {source.attribution}')
        print()
    return 0


def cmd_config(settings: ServiceSettings, output: str) -> int:
    path = save_settings(output, settings)
    print(f'Settings written to {path}')
    return 0


def cmd_stats(service: TileService) -> int:
    stats = service.get_stats()
    print('Database Statistics:')
    print(f'  Total tiles: {stats.total_tiles:,}')
    print()
    if not stats.sources:
        print('  No tiles cached yet.')
        return 0
    print('By Source:')
    for s in stats.sources:
        print(f'  {s.source}:')
        print(f'    Tiles: {s.tile_count:,}')
        print(f'    Size: {s.total_size_mb} MB')
    return 0


def _run_sync(args: argparse.Namespace, settings: ServiceSettings) -> int:
    service = TileService(settings)
    try:
        if args.command == 'estimate':
            return cmd_estimate(service, args)
        if args.command == 'jobs':
            return cmd_jobs(service)
        if args.command == 'status':
            return cmd_status(service, args.job_id)
        if args.command == 'delete':
            return cmd_delete(service, args.job_id, keep_tiles=args.keep_tiles)
        return cmd_stats(service)
    finally:
        service.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    try:
        settings = _settings_for(args)
    except (FileNotFoundError, PydanticValidationError) as e:
        print(f'Error: {e}', file=sys.stderr)
        return 1
    setup_logging(settings.log_level, settings.log_file)

    try:
        if args.command == 'sources':
            return cmd_sources()
        if args.command == 'config':
            return cmd_config(settings, args.output)
        if args.command == 'serve':
            return cmd_serve(settings)
        if args.command == 'download':
            return asyncio.run(_download(args, settings))
        if args.command == 'cancel':
            return asyncio.run(
                cmd_cancel(settings, args.job_id, args.server or server_url(settings))
            )
        return _run_sync(args, settings)
    except KeyboardInterrupt:
        print('\nInterrupted')
        return 0
    except TileKeeperError as e:
        print(f'Error: {e}', file=sys.stderr)
        return 1


def cli_main() -> None:
    sys.exit(main())


if __name__ == '__main__':
    cli_main()
