from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, field_validator

from shared.constants import (
    CACHE_FORMATS,
    DEFAULT_CACHE_FORMAT,
    DEFAULT_CACHE_MAX_AGE_MS,
    DEFAULT_CACHE_NAME,
    DEFAULT_SUBDOMAINS,
    EMPTY_IMAGE_URL,
    MAX_ZOOM,
)

_COORD_RE = re.compile(r'^\s*(\d+)\s*/\s*(\d+)\s*/\s*(\d+)\s*$')


@dataclass(frozen=True)
class TileCoordinate:
    """Tile address in the pyramid."""

    x: int
    y: int
    z: int

    def __str__(self) -> str:
        return f'{self.z}/{self.x}/{self.y}'

    @classmethod
    def parse(cls, text: str) -> TileCoordinate:
        """Parse a ``z/x/y`` string."""
        m = _COORD_RE.match(text)
        if m is None:
            msg = f'Invalid tile coordinate {text!r}, expected z/x/y'
            raise ValueError(msg)
        z, x, y = (int(g) for g in m.groups())
        return cls(x=x, y=y, z=z)


class LayerOptions(BaseModel):
    """Options of a cached tile layer.

    Fixed at layer construction. Field names accept both snake_case and the
    camelCase spelling used by map front-ends (``useCache``, ``cacheFormat``).
    """

    model_config = {
        'frozen': True,
        'populate_by_name': True,
        'extra': 'ignore',
    }

    # Включает весь путь кэширования
    use_cache: bool = Field(default=False, alias='useCache')
    # Сохранять ли загруженные из сети тайлы в кэш
    save_to_cache: bool = Field(default=True, alias='saveToCache')
    # Offline: не ходить в сеть, отсутствующие тайлы заменяются пустыми
    use_only_cache: bool = Field(default=False, alias='useOnlyCache')
    # MIME-тип сохраняемых тайлов и целевой формат перекодирования
    cache_format: str = Field(default=DEFAULT_CACHE_FORMAT, alias='cacheFormat')
    # Максимальный возраст кэша (мс); не применяется
    cache_max_age: int = Field(default=DEFAULT_CACHE_MAX_AGE_MS, alias='cacheMaxAge')

    # Пространство имён кэша и префикс адреса источника, заменяемый на него
    cache_name: str = Field(default=DEFAULT_CACHE_NAME, alias='cacheName')
    origin_prefix: str = Field(default='', alias='originPrefix')

    # Шаблон адреса тайла в стиле Leaflet
    url_template: str = Field(default='', alias='urlTemplate')
    subdomains: tuple[str, ...] = Field(
        default=tuple(DEFAULT_SUBDOMAINS), alias='subdomains'
    )
    min_zoom: int = Field(default=0, alias='minZoom')
    max_zoom: int = Field(default=MAX_ZOOM, alias='maxZoom')
    max_native_zoom: int | None = Field(default=None, alias='maxNativeZoom')
    zoom_offset: int = Field(default=0, alias='zoomOffset')
    zoom_reverse: bool = Field(default=False, alias='zoomReverse')
    tms: bool = False
    detect_retina: bool = Field(default=False, alias='detectRetina')
    cross_origin: bool = Field(default=False, alias='crossOrigin')
    # Дополнительные переменные шаблона адреса, например {accessToken}
    url_params: dict[str, str] = Field(default_factory=dict, alias='urlParams')

    @field_validator('cache_format')
    @classmethod
    def validate_cache_format(cls, v):
        v = str(v).strip().lower()
        if v not in CACHE_FORMATS:
            supported = ', '.join(sorted(CACHE_FORMATS))
            msg = f'cache_format must be one of: {supported}'
            raise ValueError(msg)
        return v

    @field_validator('cache_max_age')
    @classmethod
    def validate_cache_max_age(cls, v):
        v = int(v)
        if v < 0:
            msg = 'cache_max_age cannot be negative'
            raise ValueError(msg)
        return v

    @field_validator('cache_name')
    @classmethod
    def validate_cache_name(cls, v):
        v = str(v).strip()
        if not v:
            msg = 'cache_name cannot be empty'
            raise ValueError(msg)
        return v

    @field_validator('subdomains', mode='before')
    @classmethod
    def split_subdomains(cls, v):
        # 'abc' -> ('a', 'b', 'c'), как в Leaflet
        if isinstance(v, str):
            return tuple(v)
        return tuple(v)

    @field_validator('url_params', mode='before')
    @classmethod
    def stringify_url_params(cls, v):
        if v is None:
            return {}
        return {str(k): str(val) for k, val in dict(v).items()}

    @field_validator('min_zoom', 'max_zoom')
    @classmethod
    def validate_zoom(cls, v):
        v = int(v)
        if v < 0:
            msg = 'zoom cannot be negative'
            raise ValueError(msg)
        return v

    @property
    def namespace(self) -> str | None:
        """Store namespace for this layer, None when caching is off."""
        return self.cache_name if self.use_cache else None


@dataclass(frozen=True)
class ImageSource:
    """Something the rendering grid can display."""

    url: str
    data: bytes = b''
    content_type: str | None = None
    from_cache: bool = False
    is_blank: bool = False

    @classmethod
    def blank(cls) -> ImageSource:
        return cls(url=EMPTY_IMAGE_URL, content_type='image/gif', is_blank=True)


@dataclass(frozen=True)
class TileResult:
    """Outcome of one tile resolution: an image source or an error."""

    coordinate: TileCoordinate
    source: ImageSource | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.source is not None


@dataclass(eq=False)
class TileHandle:
    """Displayable tile handed back to the rendering grid.

    ``src`` is filled once the tile resolves; ``result`` completes exactly once.
    """

    coordinate: TileCoordinate
    url: str
    src: str | None = None
    alt: str = ''
    cross_origin: str | None = None
    result: asyncio.Future[TileResult] | None = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.result is not None and self.result.done()


DoneCallback = Callable[[BaseException | None, TileHandle], None]


@dataclass
class TileRequest:
    """One in-flight tile request."""

    coordinate: TileCoordinate
    origin_url: str
    tile: TileHandle | None = None
    done: DoneCallback | None = None
