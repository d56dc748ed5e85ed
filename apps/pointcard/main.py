# apps/pointcard/main.py
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from apps.pointcard.db import create_store_client
from apps.pointcard.routes.admin import router as admin_router
from apps.pointcard.routes.health import router as health_router
from apps.pointcard.routes.points import router as points_router
from apps.pointcard.services.errors import CoreError
from apps.pointcard.services.logging import configure_logging
from apps.pointcard.services.loyalty.loyalty_service import LoyaltyService
from apps.pointcard.services.scheduler import schedule_integrity_scan
from apps.pointcard.services.settings import Settings, get_settings
from apps.pointcard.utils.envelope import error

log = logging.getLogger("pointcard.main")


# -------------------------------------------------------------------
# Error handling (stable envelopes, no stack leaks)
# -------------------------------------------------------------------
def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CoreError)
    async def core_error_handler(request: Request, exc: CoreError):
        return error(exc.message, code=exc.code, status=exc.status_code, detail=exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in e.get("loc", ())) for e in exc.errors()]
        return error("invalid request", code="invalid", status=400, detail={"fields": fields})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.exception("unhandled error on %s %s", request.method, request.url.path)
        return error("internal error", code="internal_error", status=500)


def create_app(settings: Optional[Settings] = None, client: Any = None) -> FastAPI:
    """
    Build the application. A supplied client is used as-is and left open at
    shutdown; otherwise the app owns the store client it creates.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = client is None
        store = create_store_client(settings) if owned else client

        app.state.loyalty = None
        scheduler = None
        if store is not None:
            app.state.loyalty = LoyaltyService.from_settings(store, settings)
            scheduler = schedule_integrity_scan(app.state.loyalty, settings.INTEGRITY_SCAN_INTERVAL_SECONDS)
            if scheduler is not None:
                scheduler.start()

        log.info(
            "Point card ledger starting (env=%s, store=%s)",
            settings.ENVIRONMENT,
            "configured" if store is not None else "disabled",
        )
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
            if owned and store is not None:
                store.close()
            log.info("Point card ledger stopped")

    app = FastAPI(
        title="Point Card Ledger",
        version=settings.POINTCARD_VERSION,
        description="Location check-in loyalty ledger with integrity checks",
        lifespan=lifespan,
    )
    app.state.settings = settings
    install_error_handlers(app)

    # -------------------------------------------------------------------
    # Routers
    # -------------------------------------------------------------------
    app.include_router(health_router)
    app.include_router(points_router)
    app.include_router(admin_router)

    # -------------------------------------------------------------------
    # Root
    # -------------------------------------------------------------------
    @app.get("/")
    def root():
        return {
            "status": "Point Card Online",
            "mode": settings.ENVIRONMENT,
            "routes": ["/health", "/points", "/admin"],
        }

    return app


configure_logging()
app = create_app()
