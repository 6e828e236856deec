"""Command line tool: resolve (and seed) tiles through a cached tile layer."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError
from tomlkit.exceptions import TOMLKitError

from domain.errors import StoreUnavailableError
from domain.models import TileCoordinate
from infrastructure.http.client import HttpTransport, make_http_session, resolve_store_dir
from layer_config import LayerProfile, load_layer_profile
from shared.constants import LOG_FILE_NAME, LOG_FORMAT, TileEvent
from tiles.layer import CachedTileLayer
from tiles.store import TileStore

logger = logging.getLogger(__name__)


def setup_logging(log_file: Path | None = None, *, verbose: bool = False) -> Path:
    """Configure logging to stdout and a UTF-8 log file.

    Returns:
        Path of the log file.
    """
    if log_file is None:
        log_file = resolve_store_dir().parent / 'log' / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
        force=True,
    )
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='offline-tiles',
        description='Load map tiles through the offline tile cache.',
    )
    parser.add_argument('profile', type=Path, help='TOML layer profile')
    parser.add_argument(
        'tiles',
        nargs='+',
        type=TileCoordinate.parse,
        metavar='Z/X/Y',
        help='tiles to resolve',
    )
    parser.add_argument('--offline', action='store_true', help='serve from cache only')
    parser.add_argument('--no-save', action='store_true', help='do not save fetched tiles')
    parser.add_argument('--store-dir', type=Path, help='tile store directory')
    parser.add_argument('--log-file', type=Path, help='log file path')
    parser.add_argument('-v', '--verbose', action='store_true', help='debug logging')
    return parser


def apply_overrides(profile: LayerProfile, args: argparse.Namespace) -> LayerProfile:
    update: dict[str, object] = {}
    if args.offline:
        update['use_only_cache'] = True
    if args.no_save:
        update['save_to_cache'] = False
    layer = profile.layer.model_copy(update=update) if update else profile.layer
    store_dir = str(args.store_dir) if args.store_dir else profile.store_dir
    return profile.model_copy(update={'layer': layer, 'store_dir': store_dir})


async def run(profile: LayerProfile, coords: list[TileCoordinate]) -> int:
    store_dir = Path(profile.store_dir).expanduser() if profile.store_dir else resolve_store_dir()
    http_cache_dir = Path(profile.http_cache_dir).expanduser() if profile.http_cache_dir else None

    async with make_http_session(http_cache_dir) as session:
        transport = HttpTransport(session, timeout=profile.http_timeout)
        with TileStore(store_dir) as store:
            layer = CachedTileLayer(profile.layer, transport=transport, store=store)
            layer.on(TileEvent.CACHE_HIT, lambda e: logger.debug('hit %s', e.url))
            layer.on(TileEvent.CACHE_MISS, lambda e: logger.debug('miss %s', e.url))

            results = await layer.resolve_many(coords)

            failed = 0
            for coord in coords:
                result = results[coord]
                if result.ok:
                    src = result.source
                    origin = 'blank' if src.is_blank else ('cache' if src.from_cache else 'origin')
                    print(f'{coord}\tok\t{origin}\t{len(src.data)}\t{src.url}')
                else:
                    failed += 1
                    print(f'{coord}\terror\t{result.error}')

            logger.info('Layer stats: %s', layer.stats)
            if layer.cache_name is not None:
                try:
                    handle = await store.open(layer.cache_name)
                    stats = await store.stats(handle)
                except StoreUnavailableError as e:
                    logger.warning('Cannot read store stats: %s', e)
                else:
                    logger.info(
                        'Store %s: %d tiles, %.1f KB',
                        stats.namespace,
                        stats.total_entries,
                        stats.total_size_bytes / 1024,
                    )
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    log_file = setup_logging(args.log_file, verbose=args.verbose)
    logger.info('Logging to %s', log_file)

    try:
        profile = load_layer_profile(args.profile)
    except (FileNotFoundError, TOMLKitError, ValidationError) as e:
        logger.error('Invalid profile %s: %s', args.profile, e)
        return 2
    profile = apply_overrides(profile, args)
    return asyncio.run(run(profile, list(dict.fromkeys(args.tiles))))


if __name__ == '__main__':
    sys.exit(main())
