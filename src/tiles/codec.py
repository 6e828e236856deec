"""Re-encoding of fetched tiles into the cache format."""

from __future__ import annotations

import contextlib
from io import BytesIO
from typing import Any

from PIL import Image

from shared.constants import CACHE_FORMATS

# Форматы без альфа-канала
_RGB_ONLY_FORMATS = frozenset({'JPEG'})


def pil_format_for(content_type: str) -> str:
    """Pillow format name for a cache MIME type."""
    try:
        return CACHE_FORMATS[content_type.lower()]
    except KeyError:
        msg = f'Unsupported cache format: {content_type}'
        raise ValueError(msg) from None


def build_save_kwargs(pil_format: str) -> dict[str, Any]:
    """Build PIL.Image.save kwargs for a tile in the given format."""
    if pil_format == 'JPEG':
        return {'format': 'JPEG', 'quality': 90, 'optimize': True}
    if pil_format == 'WEBP':
        return {'format': 'WEBP', 'lossless': True}
    return {'format': pil_format, 'optimize': True}


def reencode_tile(data: bytes, content_type: str) -> bytes:
    """Decode tile bytes and encode them as ``content_type``.

    Raises whatever Pillow raises for undecodable or oversized data
    (OSError, Image.UnidentifiedImageError, Image.DecompressionBombError)
    and ValueError for unsupported formats.
    """
    pil_format = pil_format_for(content_type)
    with Image.open(BytesIO(data)) as src:
        src.load()
        if pil_format in _RGB_ONLY_FORMATS and src.mode != 'RGB':
            img = src.convert('RGB')
        elif src.mode not in ('RGB', 'RGBA', 'L', 'LA', 'P'):
            img = src.convert('RGBA')
        else:
            img = src.copy()
    try:
        buffer = BytesIO()
        img.save(buffer, **build_save_kwargs(pil_format))
        return buffer.getvalue()
    finally:
        with contextlib.suppress(Exception):
            img.close()
