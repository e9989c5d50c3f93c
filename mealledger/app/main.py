from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from mealledger.app.api.allocations import router as allocations_router
from mealledger.app.api.analytics import router as analytics_router
from mealledger.app.api.metrics import (
    MetricsMiddleware,
    get_metrics_collector,
    router as metrics_router,
)
from mealledger.app.api.redemption import router as redemption_router
from mealledger.app.core.config import settings
from mealledger.app.core.logging import get_logger, setup_logging
from mealledger.app.db import models  # noqa: F401 - import to register models
from mealledger.app.db.async_session import close_async_engine, get_async_engine
from mealledger.app.db.init_db import init_database, verify_connection
from mealledger.app.exceptions import LedgerError
from mealledger.app.middleware.request_id import RequestIdMiddleware


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Verify the database and create tables on startup; dispose the
        engine on shutdown.
        """
        if not await verify_connection():
            logger.error("Database connection failed!")
            raise RuntimeError("Cannot connect to database")

        await init_database(drop_first=settings.debug)  # Only drop in debug mode

        logger.info(
            "Application startup complete",
            extra={
                "debug_mode": settings.debug,
                "timezone": settings.timezone,
            },
        )

        yield

        await close_async_engine()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Meal Ledger",
        description="Meal allocation quotas and the student claim ledger",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )

    # Metrics middleware - collects request metrics
    app.add_middleware(MetricsMiddleware)

    # Request ID middleware (innermost - closest to route)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(redemption_router)
    app.include_router(allocations_router)
    app.include_router(analytics_router)
    app.include_router(metrics_router, prefix="")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with database connectivity."""
        health_status: dict[str, Any] = {"status": "ok", "components": {}}
        try:
            engine = get_async_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            health_status["components"]["database"] = {"status": "ok"}
        except Exception as e:
            # Error detail goes to the log only
            logger.warning(
                f"Health check database connection failed: {e}",
                extra={"exception_type": type(e).__name__},
            )
            health_status["status"] = "degraded"
            health_status["components"]["database"] = {"status": "error"}
        return health_status

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        """Render domain errors with their status code and error code."""
        await get_metrics_collector().record_error(exc.error_code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request bodies and query strings are plain 400s."""
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": "Invalid request",
                "details": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; debug mode adds the
        exception message and type.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        await get_metrics_collector().record_error(type(exc).__name__)

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
                "path": request.url.path,
                "method": request.method,
            }
        )

        if settings.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                    "request_id": request_id,
                }
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error",
                "request_id": request_id,  # Include for support correlation
            }
        )

    return app


# Create the application instance
app = create_app()
