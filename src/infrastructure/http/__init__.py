"""HTTP client infrastructure."""
from infrastructure.http.client import (
    FetchResponse,
    HttpTransport,
    make_http_session,
    resolve_store_dir,
)

__all__ = [
    'FetchResponse',
    'HttpTransport',
    'make_http_session',
    'resolve_store_dir',
]
