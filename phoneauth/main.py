from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response

from phoneauth.api.v1 import api_router
from phoneauth.core.config import settings
from phoneauth.core.db import close_db, get_sessionmaker, health_check_db, init_db
from phoneauth.core.exceptions import register_exception_handlers
from phoneauth.core.logging import LoggingContextMiddleware, audit_logger, get_logger, setup_logging
from phoneauth.core.metrics import render_latest
from phoneauth.workers.tasks import ExpirySweeper

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if not settings.is_production:
        await init_db()

    sweeper = None
    if settings.OTP_EXPIRY_SWEEP_SECONDS > 0:
        sweeper = ExpirySweeper(get_sessionmaker(), settings.otp_policy(), settings.OTP_EXPIRY_SWEEP_SECONDS)
        sweeper.start()

    audit_logger.log_system_event(
        "startup",
        {"environment": settings.ENVIRONMENT, "dev_mode": settings.OTP_DEV_MODE, "sms_provider": settings.SMS_PROVIDER},
    )
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()
        delivery = getattr(app.state, "delivery", None)
        if delivery is not None:
            await delivery.client.aclose()
        await close_db()
        audit_logger.log_system_event("shutdown")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.add_middleware(LoggingContextMiddleware)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "version": settings.VERSION}

    @app.get("/ready", tags=["Health"])
    async def ready():
        await health_check_db()
        return {"status": "ready"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        payload, content_type = render_latest()
        return Response(content=payload, media_type=content_type)

    return app


app = create_app()
