"""
Aramex Carrier Implementation

Aramex JSON "Service_1_0" API:
- No token: ClientInfo credentials ride in every request body
- Only the Priority Parcel Express product (PPX / EXP group) is offered
- Rates come back in the account currency (TRY for Turkish accounts) and
  are converted to USD before they leave the adapter
"""
import logging
from typing import Any, Dict, List

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
)

logger = logging.getLogger(__name__)

RATE_PATH = "/RateCalculator/Service_1_0.svc/json/CalculateRate"
SHIPPING_PATH = "/Shipping/Service_1_0.svc/json/CreateShipments"

PRODUCT_GROUP = "EXP"
PRODUCT_TYPE = "PPX"
PAYMENT_TYPE = "P"

# Notification codes meaning the account itself is misconfigured
ACCOUNT_ERROR_CODES = {"ERR60", "ERR82"}


@register_carrier(CarrierCode.ARAMEX)
class AramexCarrier(BaseCarrier):
    """Aramex Priority Parcel Express."""

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.ARAMEX

    @property
    def carrier_name(self) -> str:
        return "Aramex"

    @property
    def base_url(self) -> str:
        return self._config.ARAMEX_BASE_URL.rstrip("/")

    @property
    def rate_url(self) -> str:
        return f"{self.base_url}{RATE_PATH}"

    @property
    def shipping_url(self) -> str:
        return f"{self.base_url}{SHIPPING_PATH}"

    def _client_info(self) -> Dict[str, Any]:
        cfg = self._config
        if not cfg.ARAMEX_USERNAME or not cfg.ARAMEX_PASSWORD or not cfg.ARAMEX_ACCOUNT_NUMBER:
            raise AdapterAuthError(
                "Aramex credentials not configured",
                carrier_code=self.carrier_code.value,
                code="CREDENTIALS_MISSING",
            )
        return {
            "UserName": cfg.ARAMEX_USERNAME,
            "Password": cfg.ARAMEX_PASSWORD,
            "Version": "v1.0",
            "AccountNumber": cfg.ARAMEX_ACCOUNT_NUMBER,
            "AccountPin": cfg.ARAMEX_ACCOUNT_PIN,
            "AccountEntity": cfg.ARAMEX_ACCOUNT_ENTITY,
            "AccountCountryCode": cfg.ARAMEX_ACCOUNT_COUNTRY_CODE,
            "Source": 24,
        }

    def _check_notifications(self, data: Dict[str, Any], operation: str) -> None:
        """Raise if Aramex flagged the response as failed."""
        if not data.get("HasErrors"):
            return

        notifications = data.get("Notifications") or []
        codes = {n.get("Code") for n in notifications if isinstance(n, dict)}
        messages = "; ".join(
            f"{n.get('Code')}: {n.get('Message')}" for n in notifications if isinstance(n, dict)
        ) or "unknown error"
        logger.error(f"Aramex {operation} failed: {messages}")

        if codes & ACCOUNT_ERROR_CODES:
            raise AdapterAuthError(
                "Aramex account configuration rejected",
                carrier_code=self.carrier_code.value,
                details={"notifications": sorted(c for c in codes if c)},
            )
        raise AdapterInvalidResponse(
            f"Aramex {operation} failed",
            carrier_code=self.carrier_code.value,
            details={"notifications": messages},
        )

    def to_usd_cents(self, value: float, currency: str) -> int:
        """Convert an Aramex amount to USD cents."""
        currency = (currency or "USD").upper()
        if currency == "USD":
            usd = value
        elif currency == "TRY":
            usd = value / self._config.TRY_USD_FALLBACK_RATE * self._config.CURRENCY_CONVERSION_MARKUP
        elif currency == "EUR":
            usd = value * self._config.EUR_USD_RATE * self._config.CURRENCY_CONVERSION_MARKUP
        else:
            raise AdapterInvalidResponse(
                f"Unsupported Aramex currency {currency}",
                carrier_code=self.carrier_code.value,
            )
        return int(round(usd * 100))

    # ==================== Rates ====================

    async def quote(
        self,
        dimensions: Dimensions,
        weight: float,
        destination_country: str,
    ) -> List[RawQuote]:
        cfg = self._config
        payload = {
            "ClientInfo": self._client_info(),
            "OriginAddress": {
                "City": cfg.SHIPPER_CITY,
                "CountryCode": cfg.SHIPPER_COUNTRY_CODE,
            },
            "DestinationAddress": {
                "CountryCode": destination_country.upper(),
            },
            "ShipmentDetails": {
                "Dimensions": {
                    "Length": dimensions.length,
                    "Width": dimensions.width,
                    "Height": dimensions.height,
                    "Unit": "CM",
                },
                "ActualWeight": {"Value": weight, "Unit": "KG"},
                "ChargeableWeight": {
                    "Value": chargeable_weight(weight, dimensions, cfg.VOLUMETRIC_DIVISOR),
                    "Unit": "KG",
                },
                "NumberOfPieces": 1,
                "ProductGroup": PRODUCT_GROUP,
                "ProductType": PRODUCT_TYPE,
                "PaymentType": PAYMENT_TYPE,
            },
            "PreferredCurrencyCode": "USD",
        }

        data = await self._post_json(self.rate_url, payload, operation="rate calculation")
        self._check_notifications(data, "rate calculation")

        amount = data.get("TotalAmount") or {}
        try:
            value = float(amount["Value"])
        except (KeyError, TypeError, ValueError):
            raise AdapterInvalidResponse(
                "Aramex response missing TotalAmount",
                carrier_code=self.carrier_code.value,
            )

        total = self.to_usd_cents(value, amount.get("CurrencyCode"))
        return [RawQuote(
            carrier_code=self.carrier_code,
            provider_code="aramex-ppx",
            service_name="Aramex Priority Parcel Express",
            total_price=total,
            cargo_price=total,
            currency="USD",
            service_type="express",
            delivery_days=2,
            raw=data,
        )]

    # ==================== Labels ====================

    def build_shipment_payload(self, shipment: Shipment) -> Dict[str, Any]:
        cfg = self._config
        origin = cfg.shipper_address()
        dimensions = Dimensions(shipment.package_length, shipment.package_width, shipment.package_height)
        reference = f"Order#{shipment.order_number or shipment.id}"

        return {
            "ClientInfo": self._client_info(),
            "LabelInfo": {"ReportID": 9729, "ReportType": "URL"},
            "Shipments": [{
                "Reference1": reference,
                "Shipper": {
                    "AccountNumber": cfg.ARAMEX_ACCOUNT_NUMBER,
                    "PartyAddress": {
                        "Line1": origin["address"],
                        "City": origin["city"],
                        "PostCode": origin["postal_code"],
                        "CountryCode": origin["country_code"],
                    },
                    "Contact": {
                        "PersonName": origin["name"],
                        "CompanyName": origin["company"],
                        "PhoneNumber1": origin["phone"],
                        "CellPhone": origin["phone"],
                        "EmailAddress": origin["email"],
                    },
                },
                "Consignee": {
                    "PartyAddress": {
                        "Line1": shipment.receiver_address,
                        "City": shipment.receiver_city,
                        "StateOrProvinceCode": shipment.receiver_state or "",
                        "PostCode": shipment.receiver_postal_code or "",
                        "CountryCode": shipment.receiver_country.upper(),
                    },
                    "Contact": {
                        "PersonName": shipment.receiver_name,
                        "CompanyName": shipment.receiver_name,
                        "PhoneNumber1": shipment.receiver_phone or "",
                        "CellPhone": shipment.receiver_phone or "",
                        "EmailAddress": shipment.receiver_email or "",
                    },
                },
                "Details": {
                    "Dimensions": {
                        "Length": dimensions.length,
                        "Width": dimensions.width,
                        "Height": dimensions.height,
                        "Unit": "CM",
                    },
                    "ActualWeight": {"Value": shipment.package_weight, "Unit": "KG"},
                    "ChargeableWeight": {
                        "Value": chargeable_weight(shipment.package_weight, dimensions, cfg.VOLUMETRIC_DIVISOR),
                        "Unit": "KG",
                    },
                    "ProductGroup": PRODUCT_GROUP,
                    "ProductType": PRODUCT_TYPE,
                    "PaymentType": PAYMENT_TYPE,
                    "NumberOfPieces": shipment.piece_count or 1,
                    "DescriptionOfGoods": shipment.package_contents or "Goods",
                    "GoodsOriginCountry": origin["country_code"],
                    "CustomsValueAmount": {
                        "Value": float(shipment.customs_value or 0),
                        "CurrencyCode": shipment.customs_currency or "USD",
                    },
                },
            }],
        }

    async def create_waybill(self, shipment: Shipment, routing: RoutingDecision) -> WaybillResult:
        payload = self.build_shipment_payload(shipment)
        url = routing.api_endpoint or self.shipping_url
        data = await self._post_json(url, payload, operation="shipment creation")
        self._check_notifications(data, "shipment creation")

        processed = data.get("Shipments") or []
        first = processed[0] if processed else {}
        self._check_notifications(first, "shipment creation")
        if not first.get("ID"):
            raise AdapterInvalidResponse(
                "Aramex did not return a shipment ID",
                carrier_code=self.carrier_code.value,
            )

        label_url = (first.get("ShipmentLabel") or {}).get("LabelURL")
        return WaybillResult(
            tracking_number=str(first["ID"]),
            label_url=label_url,
            label_format=guess_label_format(label_url) or "pdf",
            carrier_response=data,
        )
