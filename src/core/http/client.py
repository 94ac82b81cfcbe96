"""
Core HTTP client helpers using aiohttp.

Plain request/response helpers without domain coupling. Handles timeouts,
connection pooling and error classification; retry policy is left to callers.
"""

import json
from dataclasses import dataclass
from typing import Any

import aiohttp

from core.errors.exceptions import ErrorCategory, classify_http_status


@dataclass
class JsonResponse:
    """Decoded JSON body with its status code."""

    status_code: int
    data: Any


@dataclass
class HttpError:
    """Error result from a failed HTTP call with retry classification."""

    status_code: int | None
    error_message: str
    error_category: ErrorCategory


def _transport_error(e: Exception, timeout: float | None) -> HttpError:
    if isinstance(e, TimeoutError):
        message = f"Request timeout after {timeout}s" if timeout else "Request timeout"
    elif isinstance(e, aiohttp.ServerTimeoutError):
        message = f"Server timeout: {e}"
    else:
        message = f"Connection error: {e}"
    return HttpError(
        status_code=None,
        error_message=message,
        error_category=ErrorCategory.TRANSIENT,
    )


async def fetch_json(
    url: str,
    session: aiohttp.ClientSession,
    timeout: float | None = 30,
) -> tuple[JsonResponse | None, HttpError | None]:
    """
    GET ``url`` and decode its body as JSON.

    Non-200 statuses, transport failures and undecodable bodies are all
    returned as ``HttpError``.

    Example:
        response, error = await fetch_json(status_url, session)
        if error:
            raise DirectoryError(error.error_message)
        nodes = response.data["CommitteeNodes"]
    """
    try:
        async with session.get(
            url,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            if response.status != 200:
                return None, HttpError(
                    status_code=response.status,
                    error_message=f"HTTP {response.status}",
                    error_category=classify_http_status(response.status),
                )

            body = await response.read()

    except (TimeoutError, aiohttp.ClientError) as e:
        return None, _transport_error(e, timeout)

    try:
        data = json.loads(body)
    except ValueError as e:
        return None, HttpError(
            status_code=200,
            error_message=f"Invalid JSON body: {e}",
            error_category=ErrorCategory.TRANSIENT,
        )

    return JsonResponse(status_code=200, data=data), None


async def post_json(
    url: str,
    body: bytes,
    session: aiohttp.ClientSession,
    timeout: float | None = 30,
) -> tuple[int | None, HttpError | None]:
    """
    POST an already-serialised JSON body.

    Returns:
        ``(status_code, None)`` on any 2xx response, otherwise
        ``(None, HttpError)``.
    """
    try:
        async with session.post(
            url,
            data=body,
            headers={"Content-Type": "application/json"},
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            # Drain so the connection returns to the pool
            await response.read()
            if not 200 <= response.status < 300:
                return None, HttpError(
                    status_code=response.status,
                    error_message=f"HTTP {response.status}",
                    error_category=classify_http_status(response.status),
                )
            return response.status, None

    except (TimeoutError, aiohttp.ClientError) as e:
        return None, _transport_error(e, timeout)


def create_session(
    max_connections: int = 100,
    max_connections_per_host: int = 10,
    timeout_total: int | None = 300,
    timeout_connect: int = 30,
    timeout_sock_read: int = 60,
    timeout_sock_connect: int = 30,
) -> aiohttp.ClientSession:
    """
    Create aiohttp ClientSession with connection pooling and timeouts.

    Connection pool configuration:
    - max_connections: Total concurrent connections across all hosts (0: no limit)
    - max_connections_per_host: Concurrent connections to a single host (0: no limit)

    Timeout configuration prevents indefinite hangs:
    - timeout_total: Total time for the entire request (default: 300s)
    - timeout_connect: Time to establish connection (default: 30s)
    - timeout_sock_read: Time between reads (default: 60s)
    - timeout_sock_connect: Socket connection timeout (default: 30s)

    Note:
        Caller is responsible for session lifecycle management.
    """
    connector = aiohttp.TCPConnector(
        limit=max_connections,
        limit_per_host=max_connections_per_host,
        ttl_dns_cache=300,
    )

    timeout = aiohttp.ClientTimeout(
        total=timeout_total,
        connect=timeout_connect,
        sock_read=timeout_sock_read,
        sock_connect=timeout_sock_connect,
    )

    return aiohttp.ClientSession(connector=connector, timeout=timeout)


__all__ = [
    "JsonResponse",
    "HttpError",
    "fetch_json",
    "post_json",
    "create_session",
]
