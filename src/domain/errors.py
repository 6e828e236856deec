"""Errors raised by the tile cache layer.

Only TileNetworkError ever reaches the rendering grid. Store errors are
recovered inside the layer.
"""


class TileCacheError(RuntimeError):
    """Base class for tile cache layer errors."""


class StoreUnavailableError(TileCacheError):
    """The persistent store (or one of its namespaces) cannot be opened."""


class StoreWriteError(TileCacheError):
    """Writing an entry to the persistent store failed."""


class TileNetworkError(TileCacheError):
    """A tile could not be loaded from the origin or from the cache."""

    def __init__(self, msg: str, *, url: str | None = None, status: int | None = None):
        super().__init__(msg)
        self.url = url
        self.status = status
