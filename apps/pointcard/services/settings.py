from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration for the point card ledger."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    POINTCARD_VERSION: str = "1.0.0"

    # Document store (Notion-style REST API)
    NOTION_API_KEY: str = ""
    NOTION_BASE_URL: str = "https://api.notion.com/v1"
    NOTION_VERSION: str = "2022-06-28"
    STORE_TIMEOUT_SECONDS: float = 20.0
    STORE_MAX_RETRIES: int = 3

    # Collections
    NOTION_CUSTOMER_DB_ID: str = ""
    NOTION_POINT_HISTORY_DB_ID: str = ""
    NOTION_STORE_DB_ID: str = ""
    NOTION_REWARD_DB_ID: str = ""

    # Schema registry memo lifetime; 0 re-reads the schema on every call
    SCHEMA_CACHE_TTL_SECONDS: float = 300.0

    # Program rules
    ADMIN_IDENTITIES: str = ""  # comma-separated external identities
    EARN_AWARD_POINTS: int = 1
    DEFAULT_RADIUS_METERS: float = 50.0

    # Integrity scans
    INTEGRITY_PAGE_SIZE: int = 100
    INTEGRITY_SCAN_INTERVAL_SECONDS: int = 0

    # Per-request deadline wrapped around protocol steps; 0 disables it
    REQUEST_DEADLINE_SECONDS: float = 0.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def admin_identities(self) -> List[str]:
        return [x.strip() for x in self.ADMIN_IDENTITIES.split(",") if x.strip()]

    def missing_collections(self) -> List[str]:
        names = {
            "NOTION_CUSTOMER_DB_ID": self.NOTION_CUSTOMER_DB_ID,
            "NOTION_POINT_HISTORY_DB_ID": self.NOTION_POINT_HISTORY_DB_ID,
            "NOTION_STORE_DB_ID": self.NOTION_STORE_DB_ID,
            "NOTION_REWARD_DB_ID": self.NOTION_REWARD_DB_ID,
        }
        return [k for k, v in names.items() if not v]


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
