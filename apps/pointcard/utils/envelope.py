from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse


def ok(data=None, meta=None):
    return JSONResponse(
        content={
            "ok": True,
            "data": data,
            "meta": meta or {},
        }
    )


def error(message: str, code: str = "error", status: int = 400, detail: Optional[Dict[str, Any]] = None):
    return JSONResponse(
        status_code=status,
        content={
            "ok": False,
            "error": code,
            "message": message,
            "detail": detail or {},
        },
    )
