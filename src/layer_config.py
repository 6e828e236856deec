"""TOML profiles for cached tile layers.

A profile looks like::

    [layer]
    url_template = "http://{s}.tile.example.com/toner/{z}/{x}/{y}.png"
    origin_prefix = "http://a.tile.example.com/toner/"
    use_cache = true

    [layer.url_params]
    accessToken = "..."

    [store]
    dir = "~/.offline_tiles/store"

    [http]
    timeout = 20.0
"""

from __future__ import annotations

import logging
from pathlib import Path

import tomlkit
from pydantic import BaseModel, Field, field_validator

from domain.models import LayerOptions
from shared.constants import HTTP_TIMEOUT_DEFAULT

logger = logging.getLogger(__name__)


class LayerProfile(BaseModel):
    """Layer options plus where its store and HTTP cache live."""

    model_config = {'extra': 'ignore'}

    layer: LayerOptions = Field(default_factory=LayerOptions)
    store_dir: str | None = None
    http_cache_dir: str | None = None
    http_timeout: float = HTTP_TIMEOUT_DEFAULT

    @field_validator('http_timeout')
    @classmethod
    def validate_http_timeout(cls, v):
        v = float(v)
        if v <= 0:
            msg = 'http_timeout must be positive'
            raise ValueError(msg)
        return v


def load_layer_profile(path: str | Path) -> LayerProfile:
    """Загрузка и валидация профиля TOML -> LayerProfile."""
    path = Path(path)
    if not path.exists():
        msg = f'Profile not found: {path}'
        raise FileNotFoundError(msg)
    data = tomlkit.parse(path.read_text(encoding='utf-8')).unwrap()

    store = data.get('store', {})
    http = data.get('http', {})
    profile = LayerProfile.model_validate(
        {
            'layer': data.get('layer', {}),
            'store_dir': store.get('dir'),
            'http_cache_dir': http.get('cache_dir'),
            'http_timeout': http.get('timeout', HTTP_TIMEOUT_DEFAULT),
        }
    )
    logger.info(
        'Profile %s loaded: use_cache=%s use_only_cache=%s',
        path,
        profile.layer.use_cache,
        profile.layer.use_only_cache,
    )
    return profile


def load_layer_options(path: str | Path) -> LayerOptions:
    return load_layer_profile(path).layer


def save_layer_profile(path: str | Path, profile: LayerProfile) -> Path:
    """Сохранение профиля в TOML (без атомарности и бэкапов)."""
    path = Path(path)
    layer = profile.layer.model_dump(exclude_none=True)
    layer['subdomains'] = list(layer['subdomains'])
    if not layer['url_params']:
        del layer['url_params']

    doc = tomlkit.document()
    doc['layer'] = layer
    if profile.store_dir is not None:
        doc['store'] = {'dir': profile.store_dir}
    http: dict[str, object] = {'timeout': profile.http_timeout}
    if profile.http_cache_dir is not None:
        http['cache_dir'] = profile.http_cache_dir
    doc['http'] = http

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(tomlkit.dumps(doc), encoding='utf-8')
    return path
