"""
Application configuration

Carrier credentials, fan-out timeouts and pricing constants.
- Credentials default to empty strings; a carrier without credentials fails
  its own quote with AdapterAuthError instead of breaking startup
- Timeouts and multipliers are validated at load time
"""
import logging
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

GULF_COUNTRIES = ("SA", "AE", "KW", "QA", "BH", "OM")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    APP_NAME: str = "ParcelHub"
    ENVIRONMENT: str = "production"

    # Database (order-management schema, consumed not owned)
    DATABASE_URL: str = ""

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def convert_database_url(cls, v):
        """Convert postgres:// URLs to asyncpg format."""
        if not v:
            return v
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://") and "+asyncpg" not in v:
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # Shipentegra (OAuth client credentials)
    SHIPENTEGRA_ENABLED: bool = True
    SHIPENTEGRA_CLIENT_ID: str = ""
    SHIPENTEGRA_CLIENT_SECRET: str = ""
    SHIPENTEGRA_BASE_URL: str = "https://publicapi.shipentegra.com"

    # Aramex (credentials travel in the request body)
    ARAMEX_ENABLED: bool = True
    ARAMEX_USERNAME: str = ""
    ARAMEX_PASSWORD: str = ""
    ARAMEX_ACCOUNT_NUMBER: str = ""
    ARAMEX_ACCOUNT_PIN: str = ""
    ARAMEX_ACCOUNT_ENTITY: str = "IST"
    ARAMEX_ACCOUNT_COUNTRY_CODE: str = "TR"
    ARAMEX_BASE_URL: str = "https://ws.aramex.net/ShippingAPI.V2"

    # AFS Transport (static API key header)
    AFS_ENABLED: bool = True
    AFS_API_KEY: str = ""
    AFS_BASE_URL: str = "https://panel.afstransport.com"

    # Fan-out timing
    CARRIER_HTTP_TIMEOUT_SECONDS: float = 30.0
    QUOTE_ADAPTER_TIMEOUT_SECONDS: float = 8.0
    QUOTE_OVERALL_DEADLINE_SECONDS: float = 10.0
    TOKEN_REFRESH_MARGIN_SECONDS: int = 300  # Refresh 5 minutes before expiry

    # Label purchase
    LABEL_PURCHASE_CONCURRENCY: int = 4
    LABEL_PDF_RESOLUTION_DPI: float = 72.0  # 72 dpi -> 1px == 1pt

    # Pricing
    DEFAULT_PRICE_MULTIPLIER: float = 1.0
    MAX_PRICING_OPTIONS: int = 4
    VOLUMETRIC_DIVISOR: int = 5000
    TRY_USD_FALLBACK_RATE: float = 40.0
    EUR_USD_RATE: float = 1.08
    CURRENCY_CONVERSION_MARKUP: float = 1.03

    # Shipper (origin) data for waybills
    SHIPPER_NAME: str = ""
    SHIPPER_COMPANY: str = ""
    SHIPPER_PHONE: str = ""
    SHIPPER_EMAIL: str = ""
    SHIPPER_ADDRESS_LINE1: str = ""
    SHIPPER_CITY: str = "Istanbul"
    SHIPPER_POSTAL_CODE: str = ""
    SHIPPER_COUNTRY_CODE: str = "TR"

    @field_validator(
        "CARRIER_HTTP_TIMEOUT_SECONDS",
        "QUOTE_ADAPTER_TIMEOUT_SECONDS",
        "QUOTE_OVERALL_DEADLINE_SECONDS",
        "LABEL_PDF_RESOLUTION_DPI",
    )
    @classmethod
    def positive_float(cls, v):
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("LABEL_PURCHASE_CONCURRENCY", "MAX_PRICING_OPTIONS", "VOLUMETRIC_DIVISOR")
    @classmethod
    def positive_int(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("DEFAULT_PRICE_MULTIPLIER")
    @classmethod
    def multiplier_not_discount(cls, v):
        """Markups never reduce the carrier cost."""
        if v < 1.0:
            raise ValueError("DEFAULT_PRICE_MULTIPLIER must be >= 1.0")
        return v

    def carrier_enabled(self, carrier_code: str) -> bool:
        return bool(getattr(self, f"{carrier_code.upper()}_ENABLED", False))

    def shipper_address(self, order_reference: Optional[str] = None) -> dict:
        """Origin block shared by every waybill payload."""
        return {
            "name": self.SHIPPER_NAME,
            "company": self.SHIPPER_COMPANY or self.SHIPPER_NAME,
            "phone": self.SHIPPER_PHONE,
            "email": self.SHIPPER_EMAIL,
            "address": self.SHIPPER_ADDRESS_LINE1,
            "city": self.SHIPPER_CITY,
            "postal_code": self.SHIPPER_POSTAL_CODE,
            "country_code": self.SHIPPER_COUNTRY_CODE,
            "reference": order_reference,
        }


settings = Settings()
