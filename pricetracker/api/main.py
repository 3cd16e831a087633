"""
FastAPI application factory with CORS, error handlers, and middleware.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pricetracker import __version__
from pricetracker.api.health import router as health_router
from pricetracker.api.routes.jobs import router as jobs_router
from pricetracker.api.routes.products import router as products_router
from pricetracker.api.routes.sources import router as sources_router
from pricetracker.core.config import settings
from pricetracker.core.database import close_db
from pricetracker.core.exceptions import APIException
from pricetracker.core.logging import (
    clear_request_id,
    get_logger,
    set_request_id,
    setup_logging,
)
from pricetracker.models.base import ErrorResponse
from pricetracker.services.job_orchestrator import JobOrchestrator, build_orchestrator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager for startup and shutdown events.

    Args:
        app: FastAPI application instance
    """
    logger.info(
        "Starting Price Tracker API",
        extra={
            "environment": settings.ENVIRONMENT,
            "debug": settings.DEBUG,
        },
    )

    yield

    logger.info("Shutting down application")
    await close_db()
    logger.info("Application shutdown complete")


def create_application(orchestrator: Optional[JobOrchestrator] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        orchestrator: Job orchestrator to serve; defaults to the HTTP-backed one

    Returns:
        Configured FastAPI application
    """
    setup_logging()

    app = FastAPI(
        title="Price Tracker API",
        description="Product discovery, price updates and price history",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator or build_orchestrator()

    configure_cors(app)
    register_middleware(app)
    register_exception_handlers(app)
    register_routes(app)
    register_inngest(app)

    @app.get("/", tags=["Root"])
    async def root() -> Dict[str, Any]:
        """API information."""
        return {
            "name": "Price Tracker API",
            "version": __version__,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs" if settings.DEBUG else None,
            "health": "/health",
        }

    return app


def configure_cors(app: FastAPI) -> None:
    """
    Configure CORS middleware.

    Args:
        app: FastAPI application
    """
    if isinstance(settings.CORS_ORIGINS, str):
        origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
    else:
        origins = settings.CORS_ORIGINS

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    logger.info("CORS configured", extra={"allowed_origins": origins})


def register_middleware(app: FastAPI) -> None:
    """
    Register application middleware.

    Args:
        app: FastAPI application
    """

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Log all requests with timing information."""
        start_time = time.time()

        logger.info(
            "Request started",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            },
        )

        response = await call_next(request)

        duration_ms = round((time.time() - start_time) * 1000, 2)
        logger.info(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response

    # Registered last so it runs first and the id is set for the timing logs
    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add request ID to all requests for tracing."""
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        finally:
            clear_request_id()

        response.headers["X-Request-ID"] = request_id
        return response

    logger.info("Middleware registered")


def error_response(
    request: Request,
    status_code: int,
    message: str,
    error_code: Optional[str] = None,
    errors: Optional[list] = None,
) -> JSONResponse:
    """Build the standard ``{success: false, error, errorCode, requestId}`` body."""
    body = ErrorResponse(
        error=message,
        error_code=error_code,
        errors=errors,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers.

    Args:
        app: FastAPI application
    """

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        """Handle custom API exceptions."""
        logger.warning(
            "API exception occurred",
            extra={
                "error_code": exc.error_code,
                "status_code": exc.status_code,
                "error": exc.message,
                "path": request.url.path,
            },
        )
        return error_response(request, exc.status_code, exc.message, exc.error_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        logger.warning(
            "HTTP exception occurred",
            extra={
                "status_code": exc.status_code,
                "detail": exc.detail,
                "path": request.url.path,
            },
        )
        return error_response(request, exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors as 400 Bad Request."""
        errors = jsonable_encoder(exc.errors())
        logger.warning(
            "Validation error occurred",
            extra={"errors": errors, "path": request.url.path},
        )
        return error_response(
            request,
            status.HTTP_400_BAD_REQUEST,
            "Validation error",
            "INVALID_INPUT",
            errors,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(
            "Unexpected exception occurred",
            extra={"error": str(exc), "path": request.url.path},
            exc_info=True,
        )

        # Don't expose internal errors in production
        detail = str(exc) if settings.DEBUG else "Internal server error"
        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail,
            "INTERNAL_SERVER_ERROR",
        )

    logger.info("Exception handlers registered")


def register_routes(app: FastAPI) -> None:
    """
    Register API routes.

    Args:
        app: FastAPI application
    """
    app.include_router(health_router)
    app.include_router(jobs_router)
    app.include_router(sources_router)
    app.include_router(products_router)

    logger.info("Routes registered")


def register_inngest(app: FastAPI) -> None:
    """Serve background functions at ``/api/inngest`` when enabled."""
    if not settings.INNGEST_ENABLED:
        logger.info("Inngest disabled")
        return

    import inngest.fast_api

    from pricetracker.core.inngest import inngest_client
    from pricetracker.services.inngest_functions.rediscovery import (
        requested_rediscovery_function,
        scheduled_rediscovery_function,
    )
    from pricetracker.services.inngest_functions.scheduled_update import (
        requested_update_function,
        scheduled_update_function,
    )

    functions = [
        scheduled_update_function,
        requested_update_function,
        scheduled_rediscovery_function,
        requested_rediscovery_function,
    ]
    inngest.fast_api.serve(app, inngest_client, functions)
    logger.info("Inngest functions served", extra={"function_count": len(functions)})


# Create application instance
app = create_application()

# Export
__all__ = ["app", "create_application", "error_response"]
