import time
from collections import defaultdict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

# path prefix -> (bucket, limit, window seconds); first match wins
_RULES = (
    ("/api/birthday-report", "review", 20, 300),
    ("/api/admin", "admin", 30, 60),
)
_DEFAULT_RULE = ("global", 300, 60)


class SlidingWindowCounter:
    """In-memory sliding window rate limiter."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._windows: dict[str, list[float]] = defaultdict(list)

    def is_allowed(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        now = self._clock()
        cutoff = now - window_seconds
        self._windows[key] = [t for t in self._windows[key] if t > cutoff]

        if len(self._windows[key]) >= limit:
            retry_after = int(self._windows[key][0] - cutoff) + 1
            return False, max(retry_after, 1), 0

        self._windows[key].append(now)
        return True, 0, limit - len(self._windows[key])


_limiter = SlidingWindowCounter()


def _rule_for(path: str) -> tuple[str, int, int]:
    for prefix, bucket, limit, window in _RULES:
        if path.startswith(prefix):
            return bucket, limit, window
    return _DEFAULT_RULE


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Throttles approval-link guessing and admin job triggers per client IP."""

    def __init__(self, app, limiter: SlidingWindowCounter | None = None):
        super().__init__(app)
        self._limiter = limiter or _limiter

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path == "/api/health":
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        bucket, limit, window = _rule_for(path)
        allowed, retry_after, remaining = self._limiter.is_allowed(
            f"{bucket}:{client_ip}", limit=limit, window_seconds=window
        )
        if not allowed:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded"},
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
