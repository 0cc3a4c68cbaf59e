"""Main FastAPI application for the ESG-Lite authentication kernel."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from esg_auth import __version__
from esg_auth.api.router import api_router
from esg_auth.config import settings
from esg_auth.database import close_db, init_db
from esg_auth.errors import AuthError
from esg_auth.security.rate_limiting import configure_rate_limiting
from esg_auth.tasks.scheduler import MaintenanceScheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Creates tables on startup and runs the maintenance scheduler while the
    application is up.
    """
    logger.info("Starting ESG-Lite authentication service...")
    scheduler = MaintenanceScheduler(interval_seconds=settings.cleanup_interval_seconds)

    try:
        await init_db()
        logger.info("Database initialized successfully")

        if settings.enable_background_tasks:
            scheduler.start()

        yield

    except Exception as e:
        logger.error(f"Failed to initialize application: {e}")
        raise

    finally:
        logger.info("Shutting down ESG-Lite authentication service...")
        await scheduler.stop()
        await close_db()
        logger.info("Database connections closed")


app = FastAPI(
    title="ESG-Lite Authentication",
    description="Passwordless authentication: passkeys, recovery codes and magic links",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=settings.allowed_methods,
    allow_headers=settings.allowed_headers,
)

configure_rate_limiting(app)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render expected authentication failures; internal detail stays in the log."""
    logger.info(
        f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc}"
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    content = {"ok": False, "code": "internal_error", "message": "Internal server error"}
    if settings.debug:
        content.update({"error": str(exc), "type": type(exc).__name__})

    return JSONResponse(status_code=500, content=content)


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "esg-auth",
        "version": __version__,
        "environment": settings.environment,
    }


app.include_router(api_router, prefix="/api")
