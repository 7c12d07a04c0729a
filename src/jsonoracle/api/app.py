"""
JSON Oracle FastAPI Application.

Main API application for integration management, analysis submission and
live result streaming.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jsonoracle import __version__
from jsonoracle.api.auth import IdentityVerifier
from jsonoracle.api.routes import analyses, integrations, stream
from jsonoracle.api.schemas import HealthResponse
from jsonoracle.config import Settings, get_settings
from jsonoracle.container import ServiceContainer
from jsonoracle.exceptions import (
    AuthError,
    IntegrationSuspendedError,
    JsonOracleError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)
from jsonoracle.logging_config import setup_logging

logger = logging.getLogger(__name__)

# Checked in order; subclasses before their bases
ERROR_STATUS: list[tuple[type[JsonOracleError], int]] = [
    (IntegrationSuspendedError, 403),
    (AuthError, 401),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ValidationError, 422),
    (RateLimitError, 429),
]


def status_for(error: JsonOracleError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


async def handle_domain_error(request: Request, exc: JsonOracleError) -> JSONResponse:
    """Map domain exceptions to HTTP responses."""
    status_code = status_for(exc)
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(max(1, int(exc.retry_after + 0.999)))
    elif status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"

    if status_code >= 500:
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
        detail = "Internal server error"
    else:
        detail = str(exc)
    return JSONResponse(status_code=status_code, content={"detail": detail}, headers=headers)


def create_app(
    container: Optional[ServiceContainer] = None,
    settings: Optional[Settings] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the application.

    Args:
        container: Prebuilt components (tests); built from settings when omitted
        settings: Settings for a container built here
        configure_logging: Install the logging handlers on startup
    """
    settings = settings or (container.settings if container else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logging:
            setup_logging(context="api", settings=settings)

        app.state.container = container or ServiceContainer(settings=settings)
        app.state.identity = IdentityVerifier.from_settings(settings)
        if not app.state.identity.configured:
            logger.warning("No identity provider configured; /user endpoints will reject all requests")

        await app.state.container.start()
        logger.info("Application startup complete")

        yield

        logger.info("Application shutdown initiated...")
        try:
            await app.state.container.stop()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)
        logger.info("Application shutdown complete")

    app = FastAPI(
        lifespan=lifespan,
        title="JSON Oracle API",
        description="Multi-model conversational analysis of JSON payloads",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(JsonOracleError, handle_domain_error)

    @app.get("/health", response_model=HealthResponse)
    def health(request: Request) -> HealthResponse:
        """Health check endpoint."""
        database = request.app.state.container.database
        db_status = "healthy" if database.check_connection() else "unhealthy"
        return HealthResponse(
            status="healthy" if db_status == "healthy" else "degraded",
            database=db_status,
        )

    app.include_router(analyses.router)
    app.include_router(integrations.router)
    app.include_router(stream.router)
    return app
