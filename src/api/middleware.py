"""
HTTP middleware for the CareerMatch API.

RateLimitMiddleware guards the scoring endpoints. A cache miss on
/api/recommendations scans the whole catalog and /api/insights calls an
upstream model, so each client address gets a fixed number of requests
per window. Health probes are exempt so load balancers never see a 429.

RequestLoggingMiddleware writes one access-log line per request to the
``src.api.access`` logger and tags every response with an X-Request-ID.
"""

import logging
import math
import time
import uuid
from collections import deque
from typing import Iterable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("src.api.access")

REQUEST_ID_HEADER = "X-Request-ID"
DEFAULT_EXEMPT_PATHS = ("/health",)


def get_client_ip(
    request: Request,
    trusted_proxies: Optional[frozenset[str]] = None,
) -> str:
    """Address a request is attributed to for limits and access logs.

    X-Forwarded-For is honoured only when the direct peer is one of
    ``trusted_proxies``; its first entry is then the original client.
    """
    peer = request.client.host if request.client else None

    if trusted_proxies and peer in trusted_proxies:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()

    return peer or "unknown"


class ClientWindows:
    """Request timestamps per client over a sliding window."""

    def __init__(self, limit: int, window_seconds: float = 60.0):
        self.limit = limit
        self.window_seconds = window_seconds
        self._hits: dict[str, deque[float]] = {}

    def admit(self, client: str, now: float) -> float:
        """
        Record a request from ``client`` if it is under the limit.

        Returns:
            0.0 when admitted, otherwise the seconds until the oldest
            request in the window ages out
        """
        cutoff = now - self.window_seconds
        hits = self._hits.setdefault(client, deque())
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if len(hits) >= self.limit:
            return hits[0] - cutoff

        hits.append(now)
        return 0.0

    def __len__(self) -> int:
        return len(self._hits)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client sliding-window limit on API requests.

    Rejected requests get a 429 in the API error envelope with a
    ``Retry-After`` header. Paths in ``exempt_paths`` bypass the limit.
    """

    def __init__(
        self,
        app,
        requests_per_minute: int = 100,
        window_seconds: float = 60.0,
        trusted_proxies: Optional[frozenset[str]] = None,
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.trusted_proxies = trusted_proxies
        self.exempt_paths = frozenset(exempt_paths)
        self.windows = ClientWindows(requests_per_minute, window_seconds)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        client = get_client_ip(request, self.trusted_proxies)
        wait = self.windows.admit(client, time.monotonic())
        if wait:
            logger.debug(f"Rate limited {client} for {wait:.1f}s")
            return JSONResponse(
                status_code=429,
                headers={"Retry-After": str(max(1, math.ceil(wait)))},
                content={
                    "error": {
                        "code": "RATE_LIMITED",
                        "message": f"Rate limit exceeded ({self.requests_per_minute} requests/minute)",
                    }
                },
            )
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log line per request, keyed by X-Request-ID.

    A caller-supplied request ID is echoed back so recommendation calls
    can be traced from the frontend; otherwise a short one is generated.
    Server errors are logged at WARNING.
    """

    def __init__(
        self,
        app,
        trusted_proxies: Optional[frozenset[str]] = None,
    ):
        super().__init__(app)
        self.trusted_proxies = trusted_proxies

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        start = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - start) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.log(
            logging.WARNING if response.status_code >= 500 else logging.INFO,
            "%s %s %d %.0fms %s id=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            get_client_ip(request, self.trusted_proxies),
            request_id,
        )
        return response
