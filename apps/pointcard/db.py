import logging
from typing import Optional

from apps.pointcard.services.settings import Settings, get_settings
from apps.pointcard.services.store_client import DocumentStoreClient

log = logging.getLogger("pointcard.db")


def create_store_client(settings: Optional[Settings] = None) -> Optional[DocumentStoreClient]:
    """
    Build the process-wide store client, or None when the store is not configured.
    The caller owns the instance and must close() it at shutdown.
    """
    settings = settings or get_settings()
    if not settings.NOTION_API_KEY:
        log.warning("NOTION_API_KEY not set; document store disabled")
        return None

    missing = settings.missing_collections()
    if missing:
        log.warning("Point card collections not fully configured: %s", ", ".join(missing))

    return DocumentStoreClient(
        settings.NOTION_API_KEY,
        base_url=settings.NOTION_BASE_URL,
        api_version=settings.NOTION_VERSION,
        timeout=settings.STORE_TIMEOUT_SECONDS,
        max_retries=settings.STORE_MAX_RETRIES,
    )
