"""Teachstream FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import teach
from .core.background import get_background_executor
from .core.config import settings
from .core.logging import setup_logging
from .db.base import close_all, init_databases
from .observability.langsmith import initialize_langsmith
from .speech.synthesizer import close_speech_synthesizer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context for startup and shutdown events."""
    # Startup
    setup_logging(settings)
    logger.info(f"{settings.APP_NAME} starting up...")
    initialize_langsmith(settings)
    await init_databases()
    yield
    # Shutdown
    logger.info(f"{settings.APP_NAME} shutting down...")
    await get_background_executor().shutdown()
    await close_speech_synthesizer()
    await close_all()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        description="Multi-agent teaching with streamed text and progressive speech",
        version="0.1.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # CORS middleware
    cors_origins = settings.cors_origins_list
    cors_headers = settings.cors_allow_headers_list
    logger.debug(f"CORS origins: {cors_origins}, headers: {cors_headers}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=cors_headers,
    )

    # Include routers
    app.include_router(teach.router, prefix=settings.API_V1_PREFIX)

    # Health check
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "background": get_background_executor().stats(),
        }

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "app": settings.APP_NAME,
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/health"
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "error": str(exc) if settings.DEBUG else "An error occurred"
            }
        )

    return app


# Create the app instance
app = create_app()
