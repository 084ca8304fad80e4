"""
Shipentegra Carrier Implementation

- OAuth client-credentials token (JSON body, not Basic auth), cached with
  single-flight refresh through TokenCache
- One pricing call returns every Shipentegra product for the destination
- Label endpoints differ per product; the router supplies the URL and the
  specialService value
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from parcelhub.core.exceptions import AdapterAuthError, AdapterInvalidResponse
from parcelhub.models.carrier import CarrierCode
from parcelhub.models.shipment import Shipment
from parcelhub.modules.shipping.carriers import register_carrier
from parcelhub.modules.shipping.carriers.base import (
    BaseCarrier,
    Dimensions,
    RawQuote,
    RoutingDecision,
    WaybillResult,
    chargeable_weight,
    guess_label_format,
    slugify,
    to_minor_units,
)

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1/auth/token"
PRICE_PATH = "/v1/tools/calculate/all"

# Destinations where Shipentegra requires an IOSS/HMRC number on the label
IOSS_COUNTRIES = {
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR",
    "HU", "IE", "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK",
    "SI", "ES", "SE", "GB",
}

# "3-5 iş günü" (business days) in additionalDescription
DELIVERY_PATTERN = re.compile(r"(\d+)\s*-\s*(\d+)\s*iş\s*günü", re.IGNORECASE)


def provider_code_for(entry: Dict[str, Any]) -> str:
    """
    Service identifier for a price entry.

    The own-brand product comes back as serviceName "Shipentegra"; its ECO
    variant is the primary ECO service and any other variant is billed as
    the widect ECO product.
    """
    name = entry["serviceName"]
    if str(name).strip().lower() == "shipentegra":
        if str(entry.get("serviceType") or "").upper() == "ECO":
            return "shipentegra-eco-primary"
        return "shipentegra-widect"
    code = slugify(name)
    if not code.startswith("shipentegra"):
        code = f"shipentegra-{code}"
    return code


def parse_delivery_estimate(description: Optional[str]) -> Optional[str]:
    if not description:
        return None
    match = DELIVERY_PATTERN.search(description)
    if not match:
        return None
    return f"{match.group(1)}-{match.group(2)} business days"


@register_carrier(CarrierCode.SHIPENTEGRA)
class ShipentegraCarrier(BaseCarrier):
    """Shipentegra aggregator (UPS, FedEx, DHL eCommerce and own ECO products)."""

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.SHIPENTEGRA

    @property
    def carrier_name(self) -> str:
        return "Shipentegra"

    @property
    def base_url(self) -> str:
        return self._config.SHIPENTEGRA_BASE_URL.rstrip("/")

    async def _fetch_token(self) -> Tuple[str, int]:
        """Exchange client credentials for an access token."""
        client_id = self._config.SHIPENTEGRA_CLIENT_ID
        client_secret = self._config.SHIPENTEGRA_CLIENT_SECRET
        if not client_id or not client_secret:
            raise AdapterAuthError(
                "Shipentegra credentials not configured",
                carrier_code=self.carrier_code.value,
                code="CREDENTIALS_MISSING",
            )

        data = await self._post_json(
            f"{self.base_url}{TOKEN_PATH}",
            {"clientId": client_id, "clientSecret": client_secret},
            operation="token exchange",
        )
        token_data = data.get("data") or {}
        if data.get("status") != "success" or not token_data.get("accessToken"):
            logger.error(f"Shipentegra OAuth failed: {str(data)[:500]}")
            raise AdapterAuthError(
                "Failed to authenticate with Shipentegra",
                carrier_code=self.carrier_code.value,
            )
        return token_data["accessToken"], int(token_data.get("expiresIn", 3600))

    async def _ensure_token(self) -> str:
        return await self._token_cache.get_token(self.carrier_code.value, self._fetch_token)

    async def _authorized_post(self, url: str, payload: Dict[str, Any], operation: str) -> Dict[str, Any]:
        token = await self._ensure_token()
        try:
            return await self._post_json(
                url, payload, headers={"Authorization": f"Bearer {token}"}, operation=operation
            )
        except AdapterAuthError:
            # Token revoked early; next call fetches a fresh one
            self._token_cache.invalidate(self.carrier_code.value)
            raise

    # ==================== Rates ====================

    async def quote(
        self,
        dimensions: Dimensions,
        weight: float,
        destination_country: str,
    ) -> List[RawQuote]:
        kg_desi = chargeable_weight(weight, dimensions, self._config.VOLUMETRIC_DIVISOR)
        payload = {
            "country": destination_country.upper(),
            "kgDesi": kg_desi,
            "isAmazonShipment": 0,
        }

        data = await self._authorized_post(f"{self.base_url}{PRICE_PATH}", payload, "price calculation")

        if data.get("status") != "success":
            raise AdapterInvalidResponse(
                "Shipentegra price calculation unsuccessful",
                carrier_code=self.carrier_code.value,
                details={"status": data.get("status")},
            )

        prices = (data.get("data") or {}).get("prices")
        if not isinstance(prices, list):
            raise AdapterInvalidResponse(
                "Shipentegra response missing prices",
                carrier_code=self.carrier_code.value,
            )

        quotes = []
        for entry in prices:
            try:
                service_code = provider_code_for(entry)
                name = entry.get("clearServiceName") or entry["serviceName"]
                quotes.append(RawQuote(
                    carrier_code=self.carrier_code,
                    provider_code=service_code,
                    service_name=name,
                    total_price=to_minor_units(entry["totalPrice"]),
                    cargo_price=to_minor_units(entry.get("cargoPrice") or 0),
                    fuel_cost=to_minor_units(entry.get("fuelCost") or 0),
                    additional_fee=to_minor_units(entry.get("additionalFee") or 0),
                    currency="USD",
                    service_type=entry.get("serviceType"),
                    description=entry.get("additionalDescription"),
                    delivery_estimate=parse_delivery_estimate(entry.get("additionalDescription")),
                    raw=entry,
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed Shipentegra price entry: {e}")

        logger.info(f"Shipentegra returned {len(quotes)} prices for {destination_country} @ {kg_desi}kg")
        return quotes

    # ==================== Labels ====================

    def build_label_payload(self, shipment: Shipment, routing: RoutingDecision) -> Dict[str, Any]:
        """Label body shared by every Shipentegra label endpoint."""
        quantity = shipment.piece_count or 1
        declared = round(float(shipment.customs_value or 0) / quantity, 2)
        payload = {
            "orderId": str(shipment.order_number or shipment.id),
            "specialService": routing.special_service,
            "content": shipment.package_contents or "Goods",
            "weight": chargeable_weight(
                shipment.package_weight,
                Dimensions(shipment.package_length, shipment.package_width, shipment.package_height),
                self._config.VOLUMETRIC_DIVISOR,
            ),
            "currency": "USD",
            "items": [{
                "itemId": str(shipment.id),
                "declaredPrice": declared,
                "declaredQuantity": quantity,
                "gtip": shipment.gtip or "",
            }],
        }
        if shipment.ioss_number and shipment.receiver_country.upper() in IOSS_COUNTRIES:
            payload["iossNumber"] = shipment.ioss_number
        return payload

    async def create_waybill(self, shipment: Shipment, routing: RoutingDecision) -> WaybillResult:
        payload = self.build_label_payload(shipment, routing)
        data = await self._authorized_post(routing.api_endpoint, payload, "label creation")

        label = data.get("data") or {}
        if data.get("status") != "success" or not label.get("trackingNumber"):
            message = data.get("message") or "Shipentegra did not return a tracking number"
            raise AdapterInvalidResponse(
                str(message), carrier_code=self.carrier_code.value, details={"response": data}
            )

        label_url = label.get("label")
        label_format = guess_label_format(label_url)
        return WaybillResult(
            tracking_number=str(label["trackingNumber"]),
            label_url=label_url,
            label_format=label_format,
            carrier_response=data,
        )
