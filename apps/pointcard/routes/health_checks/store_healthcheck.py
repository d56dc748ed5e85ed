from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from apps.pointcard.services.settings import Settings

COLLECTIONS = {
    "customers": "NOTION_CUSTOMER_DB_ID",
    "transactions": "NOTION_POINT_HISTORY_DB_ID",
    "locations": "NOTION_STORE_DB_ID",
    "rewards": "NOTION_REWARD_DB_ID",
}


async def store_healthcheck(
    settings: Settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """
    Read-only probe: fetch each configured collection schema once.
    Never writes; safe to call repeatedly.
    """
    checks: Dict[str, Any] = {name: False for name in COLLECTIONS}

    if not settings.NOTION_API_KEY:
        checks["store_error"] = "NOTION_API_KEY not set"
        return {"ok": False, "checks": checks}

    headers = {
        "Authorization": f"Bearer {settings.NOTION_API_KEY.strip()}",
        "Notion-Version": settings.NOTION_VERSION,
        "Accept": "application/json",
    }
    base_url = settings.NOTION_BASE_URL.rstrip("/")

    async with httpx.AsyncClient(
        timeout=settings.STORE_TIMEOUT_SECONDS, headers=headers, transport=transport
    ) as client:
        for name, setting in COLLECTIONS.items():
            collection_id = getattr(settings, setting)
            if not collection_id:
                checks[f"{name}_error"] = f"{setting} not set"
                continue
            try:
                r = await client.get(f"{base_url}/databases/{collection_id}")
            except httpx.HTTPError as e:
                checks[f"{name}_error"] = str(e)
                continue
            if r.status_code == 200:
                checks[name] = True
            else:
                checks[f"{name}_error"] = f"HTTP {r.status_code}"

    return {"ok": all(checks[name] for name in COLLECTIONS), "checks": checks}
