"""API middleware: request logging and rate limiting."""

import asyncio
import hashlib
import time
import uuid
from datetime import UTC, datetime, timedelta

import structlog
from cachetools import TTLCache  # type: ignore[import-untyped]
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing; echo a request id back to the caller."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            elapsed = time.time() - start_time
            logger.info(
                "request_completed",
                status_code=response.status_code,
                elapsed_ms=elapsed * 1000,
            )
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{elapsed * 1000:.2f}ms"
            return response
        except Exception as e:
            logger.error("request_failed", error=str(e))
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-process fixed-window rate limiting per API key and user."""

    def __init__(self, app, requests_per_minute: int = 120):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self._buckets: TTLCache[str, tuple[int, datetime]] = TTLCache(
            maxsize=10000,
            ttl=120,
        )
        self._lock = asyncio.Lock()

    async def dispatch(self, request: Request, call_next):
        key = self._bucket_key(request)
        if not await self._check_rate_limit(key):
            logger.warning("rate_limit_exceeded", key=key, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
            )
        return await call_next(request)

    @staticmethod
    def _bucket_key(request: Request) -> str:
        # Key from the credential (hashed) plus the end user; fall back to client IP.
        api_key = request.headers.get("X-API-Key")
        if api_key:
            digest = hashlib.sha256(api_key.encode()).hexdigest()[:16]
            user = request.headers.get("X-User-Id") or "-"
            return f"apikey:{digest}:user:{user}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    async def _check_rate_limit(self, key: str) -> bool:
        async with self._lock:
            now = datetime.now(UTC)
            if key in self._buckets:
                count, window_start = self._buckets[key]
                if now - window_start > timedelta(minutes=1):
                    self._buckets[key] = (1, now)
                    return True
                if count >= self.requests_per_minute:
                    return False
                self._buckets[key] = (count + 1, window_start)
                return True
            self._buckets[key] = (1, now)
            return True
