"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from healthquest import __version__
from healthquest.api.auth import SessionRegistry
from healthquest.api.middleware import setup_cors, setup_rate_limiting
from healthquest.api.routes import router
from healthquest.exceptions import (
    AuthError,
    DatabaseError,
    GenerationError,
    HealthQuestError,
    RecordNotFoundError,
    ValidationError,
)
from healthquest.services.container import ServiceContainer, init_container, install_container

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES: list[tuple[type, int]] = [
    (ValidationError, 422),
    (AuthError, 401),
    (RecordNotFoundError, 404),
    (GenerationError, 502),
    (DatabaseError, 503),
]


def status_for(exc: HealthQuestError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


def create_api_application(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure FastAPI application

    Args:
        container: Pre-built service container (tests); built from
            configuration at startup when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for FastAPI application"""
        # Startup
        logger.info("Starting API server...")
        services = install_container(container) if container is not None else init_container()
        await services.gateway.connect()
        await services.gateway.apply_schema()
        logger.info("Data gateway connected")

        yield

        # Shutdown
        logger.info("Shutting down API server...")
        await services.gateway.close()
        logger.info("Data gateway closed")

    app = FastAPI(
        title="HealthQuest API",
        description="Health engagement API: daily metrics, mini-games and goals with points",
        version=__version__,
        lifespan=lifespan
    )
    app.state.sessions = SessionRegistry()

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)

    # Include routes
    app.include_router(router)

    @app.exception_handler(HealthQuestError)
    async def healthquest_exception_handler(request: Request, exc: HealthQuestError):
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)}
        )

    logger.info("FastAPI application created")

    return app
