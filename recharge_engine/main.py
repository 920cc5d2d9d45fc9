"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from recharge_engine import __version__
from recharge_engine.config import ConfigurationError
from recharge_engine.logging_config import configure_logging, get_logger
from recharge_engine.middleware import ContextMiddleware, RequestLoggingMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the reminder scheduler when enabled and stop it on shutdown."""
    from recharge_engine.config import get_config
    from recharge_engine.services.reminder_scheduler import get_reminder_scheduler

    logger.info("engine_starting", version=__version__)
    scheduler_enabled = get_config().scheduler_settings.enabled

    try:
        if scheduler_enabled:
            get_reminder_scheduler().start()
        else:
            logger.info("reminder_scheduler_disabled")

        logger.info("engine_started", status="ready")
        yield
    finally:
        logger.info("engine_shutting_down")
        if scheduler_enabled:
            get_reminder_scheduler().stop()

        from recharge_engine.services.whatsapp import reset_notification_transport

        reset_notification_transport()
        logger.info("engine_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_format = os.getenv("LOG_FORMAT", "json").lower() == "json"
    configure_logging(log_level=log_level, json_format=json_format)

    app = FastAPI(
        title="Recharge Engine",
        description="Recharge-code inventory, allocation and expiry reminders",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    from recharge_engine.api.control import router as control_router
    from recharge_engine.api.dashboard import router as dashboard_router
    from recharge_engine.api.inventory import router as inventory_router
    from recharge_engine.api.reminders import router as reminders_router
    from recharge_engine.api.sales import router as sales_router

    app.include_router(inventory_router)
    app.include_router(sales_router)
    app.include_router(reminders_router)
    app.include_router(dashboard_router)
    app.include_router(control_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        logger.debug("root_endpoint_called")
        return {
            "service": "recharge-engine",
            "status": "running",
            "version": __version__,
        }

    @app.get("/health")
    def health() -> dict[str, str]:
        """Detailed health check."""
        from recharge_engine.repositories.plan_repository import get_plan_repository
        from recharge_engine.repositories.storage import get_store
        from recharge_engine.services.whatsapp import get_notification_transport

        store = get_store()
        plan_repo = get_plan_repository()
        transport = get_notification_transport()

        return {
            "status": "healthy",
            "store": type(store).__name__,
            "plans": f"loaded ({len(plan_repo)} plans)",
            "whatsapp": "configured" if transport.is_configured else "disabled",
        }

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request, exc: ConfigurationError) -> JSONResponse:
        """Report a broken engine.yaml instead of a generic failure."""
        logger.error("configuration_error", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=503,
            content={"error": "configuration_error", "message": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app


app = create_app()
