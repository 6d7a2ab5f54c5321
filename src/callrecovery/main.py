"""
FastAPI application entry point.
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from callrecovery import __version__
from callrecovery.api.router import router as api_router
from callrecovery.api.service import run_recovery_cycle
from callrecovery.commerce.router import router as commerce_router
from callrecovery.config import get_settings
from callrecovery.shared.database import get_database_manager
from callrecovery.shared.exceptions import (
    AppException,
    NotFoundError,
    WebhookAuthError,
    WebhookPayloadError,
)
from callrecovery.shared.logging import correlation_id_var, get_logger, setup_logging
from callrecovery.telephony.factory import get_call_provider
from callrecovery.telephony.webhooks.router import (
    close_transcript_summarizer,
    router as provider_webhooks_router,
)

logger = get_logger(__name__)

_STATUS_BY_EXCEPTION: tuple[tuple[type[AppException], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (WebhookAuthError, status.HTTP_401_UNAUTHORIZED),
    (WebhookPayloadError, status.HTTP_400_BAD_REQUEST),
)


async def _scheduler_loop(interval_seconds: int) -> None:
    """Run classify -> enqueue -> dispatch every ``interval_seconds``.

    Overlapping runs in other processes are safe: each job is claimed with a
    conditional update, so no leader election is needed.
    """
    db_manager = get_database_manager()
    provider = get_call_provider()

    logger.info("Scheduler loop starting", extra={"interval_seconds": interval_seconds})
    while True:
        token = correlation_id_var.set(f"cycle-{uuid.uuid4().hex[:12]}")
        try:
            async with db_manager.session() as session:
                await run_recovery_cycle(session, provider=provider)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduler tick failed")
        finally:
            correlation_id_var.reset(token)

        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()
    db_manager = get_database_manager()

    logger.info("Application starting", extra={"env": settings.app_env})

    if settings.database_auto_create:
        await db_manager.create_all()
        logger.info("Database tables ensured")

    scheduler_task: asyncio.Task[None] | None = None
    if settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(_scheduler_loop(settings.scheduler_interval_seconds))
        app.state.scheduler_task = scheduler_task
        logger.info("Scheduler enabled; background task created")

    yield

    logger.info("Shutting down application")

    if scheduler_task is not None:
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduler background task stopped")

    await get_call_provider().aclose()
    await close_transcript_summarizer()
    await db_manager.close()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Checkout Call Recovery API",
        description="Outbound AI calls for abandoned checkouts",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    @app.exception_handler(AppException)
    async def _app_exception(_: Request, exc: AppException) -> JSONResponse:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        for exc_type, mapped in _STATUS_BY_EXCEPTION:
            if isinstance(exc, exc_type):
                status_code = mapped
                break
        return JSONResponse(
            status_code=status_code,
            content={"detail": {"code": exc.code, "message": exc.message}},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    app.include_router(api_router)
    app.include_router(provider_webhooks_router)
    app.include_router(commerce_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
