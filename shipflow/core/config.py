"""
Application configuration

SECURITY: Defaults are fail-safe for production.
- DEBUG defaults to False
- DATABASE_URL has no default (will fail if not set)
- Carrier credentials default to empty; a carrier without credentials is
  simply not registered and requests fall back to the sandbox carrier
"""
import json
import logging
from typing import List, Optional, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # App - defaults are PRODUCTION safe
    APP_NAME: str = "Shipflow"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"

    # Database - NO DEFAULT (will fail if not set)
    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def convert_database_url(cls, v):
        """Convert plain postgres:// URLs to asyncpg format."""
        if not v:
            return v
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://") and "+asyncpg" not in v:
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # Database Pool Configuration
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_RECYCLE: int = 3600  # 1 hour

    # Carrier network behaviour
    CARRIER_HTTP_TIMEOUT_SECONDS: float = 10.0
    CARRIER_MAX_RETRIES: int = 3
    CARRIER_RETRY_BASE_DELAY_SECONDS: float = 1.0
    # Overall budget for one carrier operation across all attempts; None = bounded by retries only
    CARRIER_CALL_DEADLINE_SECONDS: Optional[float] = None

    # Delhivery
    DELHIVERY_TOKEN: str = ""
    DELHIVERY_BASE_URL: str = "https://track.delhivery.com"

    # BlueDart
    BLUEDART_API_KEY: str = ""
    BLUEDART_LOGIN_ID: str = ""
    BLUEDART_BASE_URL: str = "https://www.bluedart.com"

    # FedEx India (OAuth client credentials)
    FEDEX_CLIENT_ID: str = ""
    FEDEX_CLIENT_SECRET: str = ""
    FEDEX_ACCOUNT_NUMBER: str = ""
    FEDEX_BASE_URL: str = "https://apis.fedex.com"

    # Ecom Express
    ECOM_EXPRESS_USERNAME: str = ""
    ECOM_EXPRESS_PASSWORD: str = ""
    ECOM_EXPRESS_BASE_URL: str = "https://www.ecomexpress.in"

    # Gati
    GATI_CLIENT_ID: str = ""
    GATI_API_KEY: str = ""
    GATI_BASE_URL: str = "https://www.gati.com"

    # Shadowfax
    SHADOWFAX_API_KEY: str = ""
    SHADOWFAX_SECRET_KEY: str = ""
    SHADOWFAX_BASE_URL: str = "https://www.shadowfax.in"

    # Rate shopping
    RATE_SHOP_ENABLED: bool = True
    RATE_SHOP_WEIGHT_COST: float = 0.6
    RATE_SHOP_WEIGHT_SLA: float = 0.4
    RATE_SHOP_MAX_SLA_DAYS: Optional[int] = None
    # Accepts JSON array or comma-separated string
    RATE_SHOP_PREFERRED_CARRIERS: Union[str, List[str]] = []

    @field_validator("RATE_SHOP_PREFERRED_CARRIERS", mode="before")
    @classmethod
    def parse_preferred_carriers(cls, v):
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [name.strip() for name in v.split(",") if name.strip()]
        return v

    # Bulk operations
    BULK_BATCH_SIZE: int = 10
    BULK_LABEL_MAX_ITEMS: int = 100
    BULK_PICKUP_MAX_ITEMS: int = 50

    # Label-created notifications (empty = log only)
    LABEL_WEBHOOK_URL: str = ""

    # Background dispatcher queue bound; events beyond it are dropped
    DISPATCHER_MAX_QUEUE: int = 1000

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
