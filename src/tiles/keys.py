"""Cache key derivation for tile URLs."""

from __future__ import annotations


def derive_cache_key(namespace: str, origin_url: str, origin_prefix: str) -> str:
    """Map a remote tile URL to its key in the tile store.

    The first occurrence of ``origin_prefix`` is replaced by ``/`` and the
    namespace is prepended, so ``http://origin/toner/3/4/5.png`` with prefix
    ``http://origin/toner/`` becomes ``<namespace>/3/4/5.png``. A URL without
    the prefix is kept whole: ``<namespace><origin_url>``.

    Lookup and save must both go through this function so their keys match.
    """
    if origin_prefix and origin_prefix in origin_url:
        return namespace + origin_url.replace(origin_prefix, '/', 1)
    return namespace + origin_url
