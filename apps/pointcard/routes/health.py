from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from apps.pointcard.services.settings import Settings, get_settings

from .health_checks.store_healthcheck import store_healthcheck


router = APIRouter(prefix="/health", tags=["health"])


def _settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


@router.get("")
def health_root(request: Request):
    return {
        "ok": True,
        "version": _settings(request).POINTCARD_VERSION,
        "store_configured": getattr(request.app.state, "loyalty", None) is not None,
    }


@router.get("/store")
async def health_store(request: Request):
    res = await store_healthcheck(_settings(request))
    return JSONResponse(content=res, status_code=200 if res.get("ok") else 503)
