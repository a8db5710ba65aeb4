"""
Sliding-window request limiting keyed by learner.
"""

from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.shared.config import settings
from src.shared.logging import get_logger
from src.shared.throttle import SlidingWindowRateLimiter

logger = get_logger(__name__)

UNLIMITED_PREFIXES = ("/health", "/docs", "/redoc", "/openapi.json")


def get_rate_limit_key(request: Request) -> Optional[str]:
    """Learner header first, then bearer token, then client address."""
    learner_id = request.headers.get("X-Learner-Id")
    if learner_id:
        return "learner:" + learner_id[:64]

    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return "bearer:" + auth[len("Bearer "):][:64]

    if request.client:
        return "ip:" + request.client.host
    return None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects callers over the per-minute limit with 429 and Retry-After."""

    def __init__(
        self,
        app,
        requests_per_minute: Optional[int] = None,
        unlimited_prefixes: Iterable[str] = UNLIMITED_PREFIXES,
    ):
        super().__init__(app)
        self.limiter = SlidingWindowRateLimiter(
            requests_per_minute or settings.api.rate_limit_requests_per_minute
        )
        self.unlimited_prefixes = tuple(unlimited_prefixes)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        key = None
        if not request.url.path.startswith(self.unlimited_prefixes):
            key = get_rate_limit_key(request)

        if key is None:
            return await call_next(request)

        if self.limiter.is_allowed(key):
            self.limiter.record(key)
            return await call_next(request)

        retry_after = self.limiter.retry_after_seconds(key)
        logger.warning(
            f"Rate limit exceeded, retry in {retry_after}s",
            extra={"action": "rate_limited"},
        )
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded. Try again later."},
            headers={"Retry-After": str(retry_after)},
        )
