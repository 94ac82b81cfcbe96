"""
aiohttp helpers shared by the source, sink and directory adapters.

Functions return ``(result, HttpError)`` tuples; callers convert errors into
the typed exception hierarchy at their own boundary.
"""

from core.http.client import (
    HttpError,
    JsonResponse,
    create_session,
    fetch_json,
    post_json,
)
from core.http.streaming import CHUNK_SIZE, StreamResponse, open_stream

__all__ = [
    "CHUNK_SIZE",
    "HttpError",
    "JsonResponse",
    "StreamResponse",
    "create_session",
    "fetch_json",
    "open_stream",
    "post_json",
]
