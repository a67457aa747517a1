"""
Security middleware: per-IP rate limiting, response headers, CORS, trusted hosts.
"""
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable, Optional

from fastapi import Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from core.logger import logger
import config

MINUTE = 60
HOUR = 3600


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window request limits per client IP, kept in memory."""

    def __init__(
        self,
        app,
        requests_per_minute: int = 60,
        requests_per_hour: int = 1000,
        exempt_paths: Optional[Iterable[str]] = None
    ):
        """
        Args:
            app: FastAPI application
            requests_per_minute: Max requests per minute per IP
            requests_per_hour: Max requests per hour per IP
            exempt_paths: Exact paths never counted (health checks)
        """
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour
        self.exempt_paths = set(exempt_paths or ("/health",))
        self.hits: Dict[str, Deque[float]] = defaultdict(deque)
        self.cleanup_interval = 300
        self.last_cleanup = time.time()

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        if now - self.last_cleanup > self.cleanup_interval:
            self._cleanup(now)
            self.last_cleanup = now

        retry_after = self._register_hit(client_ip, now)
        if retry_after is not None:
            logger.warning(f"Rate limit exceeded for IP: {client_ip} ({request.method} {request.url.path})")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": "Rate limit exceeded. Please try again later."},
                headers={"Retry-After": str(retry_after)}
            )
        return await call_next(request)

    def _register_hit(self, client_ip: str, now: float) -> Optional[int]:
        """Record a request; return seconds to wait if over a limit, else None."""
        hits = self.hits[client_ip]
        while hits and now - hits[0] >= HOUR:
            hits.popleft()

        if len(hits) >= self.requests_per_hour:
            return int(HOUR - (now - hits[0])) + 1
        last_minute = sum(1 for t in hits if now - t < MINUTE)
        if last_minute >= self.requests_per_minute:
            oldest_in_minute = next(t for t in hits if now - t < MINUTE)
            return int(MINUTE - (now - oldest_in_minute)) + 1

        hits.append(now)
        return None

    def _cleanup(self, now: float) -> None:
        for ip in list(self.hits.keys()):
            hits = self.hits[ip]
            while hits and now - hits[0] >= HOUR:
                hits.popleft()
            if not hits:
                del self.hits[ip]


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Camera and location are used by the submission console
        response.headers["Permissions-Policy"] = "camera=(self), geolocation=(self)"
        return response


def setup_cors(app, allowed_origins: list[str], allowed_methods: list[str] = None):
    """
    Setup CORS middleware.

    Args:
        app: FastAPI application
        allowed_origins: List of allowed origins
        allowed_methods: List of allowed HTTP methods
    """
    if allowed_methods is None:
        allowed_methods = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=config.CORS_ALLOW_CREDENTIALS,
        allow_methods=allowed_methods,
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["Content-Disposition", "Retry-After"],
    )


def setup_trusted_hosts(app, allowed_hosts: list[str]):
    """Reject requests whose Host header is not in ``allowed_hosts``."""
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)
