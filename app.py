"""
Campus issue reporting API: students report campus problems, officials and
staff triage and resolve them.
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi_mail import FastMail, ConnectionConfig
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import config
from database.connection import Database
from storage.s3_client import S3Client
from storage.local_store import LocalObjectStore
from core.logger import logger
from middleware.security import (
    RateLimitMiddleware, SecurityHeadersMiddleware,
    setup_cors, setup_trusted_hosts
)
from middleware.auth_middleware import AuthRequiredMiddleware
from routers.auth import router as auth_router
from routers.session import router as session_router
from routers.access_requests import router as access_requests_router
from routers.reports import router as reports_router
from routers.users import router as users_router
from routers.maintenance import router as maintenance_router
from routers.dashboards import router as dashboards_router


def _init_object_store():
    """S3 when enabled, otherwise the local uploads directory."""
    if config.USE_S3:
        try:
            return S3Client(
                bucket_name=config.S3_BUCKET_NAME,
                aws_access_key_id=config.S3_ACCESS_KEY_ID,
                aws_secret_access_key=config.S3_SECRET_ACCESS_KEY,
                region_name=config.S3_REGION,
                endpoint_url=config.S3_ENDPOINT_URL,
                public_base_url=config.S3_PUBLIC_BASE_URL,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to initialize S3 client: {e}", exc_info=True)
            logger.warning("Continuing with local storage")
    else:
        logger.info("S3 storage disabled - using local storage")
    return LocalObjectStore(config.UPLOADS_DIR, public_url=config.PUBLIC_UPLOADS_URL)


def _init_mail():
    """FastAPI-Mail client, or None when SMTP credentials are missing."""
    if not (config.SMTP_USER and config.SMTP_PASSWORD):
        logger.warning("SMTP credentials not set (SMTP_USER/SMTP_PASSWORD). Reset codes will not be sent.")
        return None
    mail_conf = ConnectionConfig(
        MAIL_USERNAME=config.SMTP_USER,
        MAIL_PASSWORD=config.SMTP_PASSWORD,
        MAIL_FROM=config.SMTP_FROM_EMAIL or config.SMTP_USER,
        MAIL_FROM_NAME=config.SMTP_FROM_NAME,
        MAIL_PORT=config.SMTP_PORT,
        MAIL_SERVER=config.SMTP_HOST,
        MAIL_STARTTLS=config.SMTP_USE_TLS,
        MAIL_SSL_TLS=config.SMTP_USE_SSL,
        USE_CREDENTIALS=True,
        VALIDATE_CERTS=True,
    )
    logger.info("FastAPI-Mail initialized successfully")
    return FastMail(mail_conf)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan events for FastAPI app.
    Initialize database, attachment store and mail on startup.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {config.APP_NAME}...")
    logger.info("=" * 60)

    if config.db is None:
        try:
            config.db = Database(
                database_url=config.DATABASE_URL,
                pool_size=config.DB_POOL_SIZE,
                max_overflow=config.DB_MAX_OVERFLOW
            )
            config.db.create_tables()
            logger.info("Database initialized successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise

    if config.object_store is None:
        config.object_store = _init_object_store()

    if getattr(app.state, "mail", None) is None:
        app.state.mail = _init_mail()

    logger.info(f"Server ready! Environment: {config.ENVIRONMENT}")

    yield

    # Cleanup on shutdown
    logger.info("Shutting down...")
    if config.db:
        config.db.engine.dispose()
        logger.info("Database connections closed")


# Initialize FastAPI app
app = FastAPI(
    title=config.APP_NAME,
    description="Campus issue reporting: submissions, triage, resolution and live alerts",
    version=config.APP_VERSION,
    lifespan=lifespan
)
app.state.mail = None


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=503,
        content={"detail": "The service is temporarily unavailable. Please try again."}
    )


# Setup security middleware
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    requests_per_minute=config.RATE_LIMIT_PER_MINUTE,
    requests_per_hour=config.RATE_LIMIT_PER_HOUR
)
app.add_middleware(AuthRequiredMiddleware)
setup_cors(app, config.CORS_ORIGINS)
if config.ENVIRONMENT == "production":
    setup_trusted_hosts(app, config.TRUSTED_HOSTS)

# Include routers
app.include_router(auth_router)
app.include_router(session_router)
app.include_router(access_requests_router)
app.include_router(reports_router)
app.include_router(users_router)
app.include_router(maintenance_router)
app.include_router(dashboards_router)

# Local photos are public like the S3 bucket
if not config.USE_S3:
    app.mount(
        config.PUBLIC_UPLOADS_URL,
        StaticFiles(directory=str(config.UPLOADS_DIR), check_dir=False),
        name="uploads"
    )


@app.get("/")
async def root():
    """Root endpoint with API information. Public endpoint."""
    return {
        "message": config.APP_NAME,
        "version": config.APP_VERSION,
        "environment": config.ENVIRONMENT,
        "docs": "/docs",
        "s3_enabled": isinstance(config.object_store, S3Client),
    }


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint for monitoring. Public endpoint."""
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "checks": {}
    }

    if config.db is None:
        health_status["checks"]["database"] = {"status": "error", "error": "not initialized"}
        health_status["status"] = "degraded"
    else:
        try:
            with config.db.get_session() as db:
                db.execute(text("SELECT 1"))
            health_status["checks"]["database"] = {"status": "ok"}
        except SQLAlchemyError as e:
            health_status["checks"]["database"] = {"status": "error", "error": str(e)}
            health_status["status"] = "degraded"

    if config.object_store is None:
        health_status["checks"]["storage"] = {"status": "error", "error": "not initialized"}
        health_status["status"] = "degraded"
    else:
        health_status["checks"]["storage"] = {
            "status": "ok",
            "backend": "s3" if isinstance(config.object_store, S3Client) else "local",
        }

    health_status["checks"]["mail"] = {
        "configured": getattr(request.app.state, "mail", None) is not None
    }
    return health_status


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
