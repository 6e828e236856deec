"""Cache-aside tile loading.

This module provides:
- derive_cache_key: Origin URL -> tile store key
- TileStore: SQLite-based tile storage with async access
- CachedTileLayer: Hit/miss orchestration, fetch and save-to-cache
- EventNotifier: tilecachehit / tilecachemiss notifications
"""

from tiles.events import EventNotifier, TileEvent, TileEventData
from tiles.keys import derive_cache_key
from tiles.layer import CachedTileLayer
from tiles.store import StoredEntry, StoreHandle, StoreStats, TileStore
from tiles.urls import EMPTY_IMAGE_URL, format_tile_url

__all__ = [
    'EMPTY_IMAGE_URL',
    'CachedTileLayer',
    'EventNotifier',
    'StoreHandle',
    'StoreStats',
    'StoredEntry',
    'TileEvent',
    'TileEventData',
    'TileStore',
    'derive_cache_key',
    'format_tile_url',
]
