"""Domain layer - tile layer models and errors."""
from domain.errors import (
    StoreUnavailableError,
    StoreWriteError,
    TileCacheError,
    TileNetworkError,
)
from domain.models import (
    ImageSource,
    LayerOptions,
    TileCoordinate,
    TileHandle,
    TileRequest,
    TileResult,
)

__all__ = [
    'ImageSource',
    'LayerOptions',
    'StoreUnavailableError',
    'StoreWriteError',
    'TileCacheError',
    'TileCoordinate',
    'TileHandle',
    'TileNetworkError',
    'TileRequest',
    'TileResult',
]
