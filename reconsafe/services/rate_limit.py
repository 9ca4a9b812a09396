"""
Rate limiting for the ReconSafe API.
"""
import hashlib
import time
from collections import defaultdict
from typing import Dict, Tuple
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import os

from reconsafe.services.errors import ErrorCode

EXEMPT_PATHS = {"/health", "/docs", "/openapi.json"}

# In-memory store for rate limiting (use Redis in production)
_rate_limit_store: Dict[str, Tuple[int, float]] = defaultdict(lambda: (0, time.time()))


def rate_limit_settings() -> Tuple[bool, int, int]:
    """(enabled, requests per window, window seconds) from the environment."""
    enabled = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    requests = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))
    window = int(os.getenv("RATE_LIMIT_WINDOW", "60"))
    return enabled, requests, window


def get_client_identifier(request: Request) -> str:
    """Get client identifier for rate limiting."""
    auth = request.headers.get("Authorization")
    if auth:
        digest = hashlib.sha256(auth.encode("utf-8")).hexdigest()[:16]
        return f"token:{digest}"

    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def check_rate_limit(client_id: str) -> Tuple[bool, int, int]:
    """
    Check if client has exceeded rate limit.

    Returns:
        Tuple of (allowed, remaining_requests, reset_after_seconds)
    """
    enabled, limit, window = rate_limit_settings()
    if not enabled:
        return True, limit, window

    current_time = time.time()
    request_count, window_start = _rate_limit_store[client_id]

    # Reset window if it has expired
    if current_time - window_start >= window:
        _rate_limit_store[client_id] = (1, current_time)
        return True, limit - 1, window

    if request_count >= limit:
        reset_after = int(window - (current_time - window_start))
        return False, 0, reset_after

    _rate_limit_store[client_id] = (request_count + 1, window_start)
    remaining = limit - (request_count + 1)
    reset_after = int(window - (current_time - window_start))

    return True, remaining, reset_after


def reset_rate_limits():
    _rate_limit_store.clear()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limiting."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_id = get_client_identifier(request)
        allowed, remaining, reset_after = check_rate_limit(client_id)
        _, limit, _ = rate_limit_settings()

        if not allowed:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": f"Rate limit exceeded. Try again in {reset_after} seconds.",
                    "code": ErrorCode.RATE_LIMITED.value,
                },
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(int(time.time()) + reset_after),
                    "Retry-After": str(reset_after),
                },
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(int(time.time()) + reset_after)

        return response
