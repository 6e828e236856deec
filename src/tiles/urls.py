"""Leaflet-style tile URL templates."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from shared.constants import EMPTY_IMAGE_URL

if TYPE_CHECKING:
    from domain.models import LayerOptions, TileCoordinate

__all__ = ['EMPTY_IMAGE_URL', 'format_tile_url']

_PLACEHOLDER_RE = re.compile(r'\{ *([\w_-]+) *\}')


def _subdomain(coord: TileCoordinate, subdomains: tuple[str, ...]) -> str:
    if not subdomains:
        return ''
    index = abs(coord.x + coord.y) % len(subdomains)
    return subdomains[index]


def format_tile_url(
    template: str,
    coord: TileCoordinate,
    options: LayerOptions,
    *,
    retina: bool = False,
) -> str:
    """Substitute ``{s} {x} {y} {z} {r}`` in ``template`` for ``coord``.

    - ``zoom_reverse`` counts zoom down from ``max_zoom``, then ``zoom_offset``
      is added and the result is capped by ``max_native_zoom``.
    - ``tms`` flips the y axis.
    - ``{r}`` becomes ``@2x`` when ``detect_retina`` is on and ``retina`` is
      requested.
    - Any other placeholder, for example ``{accessToken}``, is taken from
      ``options.url_params``; a placeholder with no value raises ValueError.
    """
    zoom = coord.z
    if options.zoom_reverse:
        zoom = options.max_zoom - zoom
    zoom += options.zoom_offset

    y = coord.y
    if options.tms:
        y = (1 << coord.z) - 1 - coord.y

    values = {
        'r': '@2x' if options.detect_retina and retina and options.max_zoom > 0 else '',
        's': _subdomain(coord, options.subdomains),
        'x': str(coord.x),
        'y': str(y),
        'z': str(min(zoom, options.max_native_zoom) if options.max_native_zoom else zoom),
    }
    # Как L.extend в Leaflet: параметры слоя перекрывают вычисленные значения
    values.update(options.url_params)

    def _sub(m: re.Match[str]) -> str:
        name = m.group(1)
        if name not in values:
            msg = f'No value provided for variable {m.group(0)} in tile URL template'
            raise ValueError(msg)
        return values[name]

    return _PLACEHOLDER_RE.sub(_sub, template)
