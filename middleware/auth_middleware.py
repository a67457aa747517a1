"""
Early authentication check. Requests to protected routes without a bearer
token are logged; validation and the error response stay with the FastAPI
dependencies.
"""
from typing import List

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.logger import logger
import config

# Exact public paths
PUBLIC_ROUTES: List[str] = [
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/api/session",
    "/api/session/navigate",
    "/api/auth/signup",
    "/api/auth/login",
    "/api/auth/refresh",
    "/api/auth/password-reset/request",
    "/api/auth/password-reset/verify",
]

# Public path prefixes
PUBLIC_PREFIXES: List[str] = [
    "/docs/",
    config.PUBLIC_UPLOADS_URL.rstrip("/") + "/",
]


class AuthRequiredMiddleware(BaseHTTPMiddleware):
    """Log unauthenticated calls to protected routes."""

    def __init__(self, app, public_routes: List[str] = None, public_prefixes: List[str] = None):
        """
        Args:
            app: FastAPI application
            public_routes: Exact paths that don't require auth
            public_prefixes: Path prefixes that don't require auth
        """
        super().__init__(app)
        self.public_routes = set(public_routes or PUBLIC_ROUTES)
        self.public_prefixes = tuple(public_prefixes or PUBLIC_PREFIXES)

    def is_public(self, path: str) -> bool:
        return path in self.public_routes or path.startswith(self.public_prefixes)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if request.method == "OPTIONS" or self.is_public(path):
            return await call_next(request)

        if not request.headers.get("authorization"):
            logger.warning(
                f"Request without authentication headers: {request.method} {path} "
                f"from {request.client.host if request.client else 'unknown'}"
            )
        return await call_next(request)
