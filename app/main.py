"""
FastAPI application factory.

Assembles the app, registers all routers, and wires up lifecycle
events.  Database schema is managed by Alembic, NOT create_all.
"""

import logging

from fastapi import FastAPI

from app.controllers.admin_controller import router as admin_router
from app.controllers.auth_controller import router as auth_router
from app.controllers.security_controller import router as security_router
from app.core.config import settings
from app.core.database import engine
from app.models import Base  # noqa: F401  (registers every model)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(auth_router)
    app.include_router(security_router)
    app.include_router(admin_router)

    # ── Startup / Shutdown ───────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "Lockout policy: max %d devices/day, %dh lock, advisory lock %s",
            settings.MAX_DEVICES_PER_DAY,
            settings.DEVICE_LOCK_DURATION_HOURS,
            "on" if settings.ENFORCEMENT_ADVISORY_LOCK else "off",
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await engine.dispose()
        logger.info("Database engine disposed.")

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
