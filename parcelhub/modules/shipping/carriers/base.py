"""
Base Carrier Interface

- All carriers implement this interface
- Carriers share request/error-mapping code through BaseCarrier
- Each carrier provides its own:
  - Authentication (OAuth token, body credentials, or API-key header)
  - Rate quote request/response schema
  - Waybill (label) creation schema
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

import httpx

from parcelhub.core.config import Settings, settings as default_settings
from parcelhub.core.exceptions import (
    AdapterAuthError,
    AdapterInvalidResponse,
    AdapterTimeout,
)
from parcelhub.core.token_cache import TokenCache
from parcelhub.models.carrier import CarrierCode
from parcelhub.models.shipment import Shipment

logger = logging.getLogger(__name__)


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass(frozen=True)
class Dimensions:
    """Package dimensions in centimetres."""
    length: float
    width: float
    height: float

    def volumetric_weight(self, divisor: int = 5000) -> float:
        """Volumetric (dimensional) weight in kg."""
        return (self.length * self.width * self.height) / divisor


def chargeable_weight(weight: float, dimensions: Dimensions, divisor: int = 5000) -> float:
    """Carriers bill the greater of actual and volumetric weight."""
    return round(max(weight, dimensions.volumetric_weight(divisor)), 2)


def to_minor_units(amount: Any) -> int:
    """Convert a decimal carrier price to integer cents."""
    return int(round(float(amount) * 100))


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def guess_label_format(url: Optional[str]) -> Optional[str]:
    """Infer png/gif/pdf from a label URL path, if it has an extension."""
    if not url:
        return None
    path = urlparse(url).path.lower()
    for fmt in ("pdf", "png", "gif"):
        if path.endswith(f".{fmt}"):
            return fmt
    return None


@dataclass
class RawQuote:
    """One carrier rate before normalization and margin (prices in USD cents)."""
    carrier_code: CarrierCode
    provider_code: str
    service_name: str
    total_price: int
    cargo_price: int = 0
    fuel_cost: int = 0
    additional_fee: int = 0
    currency: str = "USD"
    service_type: Optional[str] = None
    delivery_days: Optional[int] = None
    delivery_estimate: Optional[str] = None
    description: Optional[str] = None
    raw: Optional[Dict[str, Any]] = field(default=None, repr=False)


@dataclass(frozen=True)
class RoutingDecision:
    """Concrete carrier endpoint + parameters resolved for one shipment."""
    service_code: str
    carrier: CarrierCode
    api_endpoint: str
    special_service: Union[str, int]
    display_name: str
    fallback_applied: bool = False


@dataclass
class WaybillResult:
    """Result of waybill creation."""
    tracking_number: str
    label_url: Optional[str] = None
    label_data: Optional[bytes] = None
    label_format: Optional[str] = None  # png, gif, pdf
    carrier_response: Optional[Any] = None


# =============================================================================
# Base Carrier Interface
# =============================================================================

class BaseCarrier(ABC):
    """
    Abstract base class for all carrier adapters.

    Every failure an adapter raises is an AdapterError subclass so the
    aggregator can isolate it; nothing else should escape `quote`.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        token_cache: Optional[TokenCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the carrier.

        Args:
            config: Settings holding credentials and endpoints
            token_cache: Shared single-flight token cache (OAuth carriers only)
            http_client: Optional pre-built client (tests inject MockTransport here)
        """
        self._config = config or default_settings
        self._token_cache = token_cache or TokenCache(self._config.TOKEN_REFRESH_MARGIN_SECONDS)
        self._http_client = http_client

    @property
    @abstractmethod
    def carrier_code(self) -> CarrierCode:
        """Return the carrier code enum value."""
        pass

    @property
    @abstractmethod
    def carrier_name(self) -> str:
        """Return the human-readable carrier name."""
        pass

    @abstractmethod
    async def quote(
        self,
        dimensions: Dimensions,
        weight: float,
        destination_country: str,
    ) -> List[RawQuote]:
        """
        Get raw rate quotes from the carrier.

        Args:
            dimensions: Package dimensions (cm)
            weight: Actual weight (kg)
            destination_country: ISO-3166 alpha-2 code

        Returns:
            List of RawQuote, prices in USD cents

        Raises:
            AdapterError subclasses only
        """
        pass

    @abstractmethod
    async def create_waybill(self, shipment: Shipment, routing: RoutingDecision) -> WaybillResult:
        """
        Purchase a label for the shipment at the routed endpoint.

        Args:
            shipment: Shipment row with receiver, package and customs fields
            routing: Resolved endpoint and special-service parameter

        Returns:
            WaybillResult with tracking number and label reference
        """
        pass

    # ==================== HTTP plumbing ====================

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._config.CARRIER_HTTP_TIMEOUT_SECONDS,
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        operation: str = "request",
    ) -> Dict[str, Any]:
        """
        POST JSON and return the decoded body, mapping failures to AdapterError.

        401/403 -> AdapterAuthError, timeouts -> AdapterTimeout,
        other HTTP/network/JSON problems -> AdapterInvalidResponse.
        """
        client = await self._get_http_client()
        code = self.carrier_code.value

        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"{self.carrier_name} {operation} timed out: {e}")
            raise AdapterTimeout(f"{self.carrier_name} {operation} timed out", carrier_code=code)
        except httpx.RequestError as e:
            logger.error(f"{self.carrier_name} {operation} request failed: {e}")
            raise AdapterInvalidResponse(
                f"Network error during {operation}", carrier_code=code, code="NETWORK_ERROR"
            )

        logger.debug(f"{self.carrier_name} POST {url} -> {response.status_code}")

        if response.status_code in (401, 403):
            raise AdapterAuthError(
                f"{self.carrier_name} rejected credentials",
                carrier_code=code,
                details={"status": response.status_code},
            )
        if response.status_code >= 400:
            logger.error(f"{self.carrier_name} {operation} error: {response.status_code} - {response.text[:500]}")
            raise AdapterInvalidResponse(
                f"{self.carrier_name} returned HTTP {response.status_code}",
                carrier_code=code,
                details={"status": response.status_code},
            )

        try:
            data = response.json()
        except ValueError:
            raise AdapterInvalidResponse(
                f"{self.carrier_name} returned non-JSON body", carrier_code=code
            )
        if not isinstance(data, dict):
            raise AdapterInvalidResponse(
                f"{self.carrier_name} returned unexpected payload type", carrier_code=code
            )
        return data
