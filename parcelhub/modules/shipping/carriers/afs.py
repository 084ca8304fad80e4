"""
AFS Transport Carrier Implementation

Single PHP endpoint dispatching on the `islem` (operation) field:
- fiyat_hesapla: price calculation
- waybill_olustur: waybill creation
Authentication is a static `x-api-key` header.
"""
import logging
import math
from typing import Any, Dict, List

from parcelhub.core.exceptions import (
    AdapterAuthError,
    AdapterInvalidResponse,
    DestinationNotServed,
)
from parcelhub.models.carrier import CarrierCode
from parcelhub.models.shipment import Shipment
from parcelhub.modules.shipping.carriers import register_carrier
from parcelhub.modules.shipping.carriers.base import (
    BaseCarrier,
    Dimensions,
    RawQuote,
    RoutingDecision,
    WaybillResult,
    to_minor_units,
)

logger = logging.getLogger(__name__)

API_PATH = "/apiv2.php"

DEFAULT_GTIP = "850015"
EXPRESS_SERVICE_ID = 2
ECONOMY_SERVICE_ID = 1
EXPRESS_VALUE_THRESHOLD_EUR = 150.0

# Turkish error fragments AFS uses for unserved destinations
NOT_SERVED_MARKERS = ("hizmet verilmemektedir", "desteklenmeyen")


def _truncate(value: str, limit: int = 35) -> str:
    # AFS rejects address/city fields longer than 35 characters
    return (value or "").strip()[:limit]


@register_carrier(CarrierCode.AFS)
class AFSCarrier(BaseCarrier):
    """AFS Transport (GLS network)."""

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.AFS

    @property
    def carrier_name(self) -> str:
        return "AFS Transport"

    @property
    def api_url(self) -> str:
        return f"{self._config.AFS_BASE_URL.rstrip('/')}{API_PATH}"

    def _headers(self) -> Dict[str, str]:
        if not self._config.AFS_API_KEY:
            raise AdapterAuthError(
                "AFS API key not configured",
                carrier_code=self.carrier_code.value,
                code="CREDENTIALS_MISSING",
            )
        return {"x-api-key": self._config.AFS_API_KEY}

    def _raise_for_hata(self, data: Dict[str, Any], operation: str) -> None:
        if not data.get("hata"):
            return
        message = str(data.get("mesaj") or f"AFS {operation} failed")
        logger.error(f"AFS {operation} failed: {message}")
        if any(marker in message.lower() for marker in NOT_SERVED_MARKERS):
            raise DestinationNotServed(message, carrier_code=self.carrier_code.value)
        raise AdapterInvalidResponse(
            f"AFS {operation} failed",
            carrier_code=self.carrier_code.value,
            details={"mesaj": message},
        )

    # ==================== Rates ====================

    async def quote(
        self,
        dimensions: Dimensions,
        weight: float,
        destination_country: str,
    ) -> List[RawQuote]:
        payload = {
            "islem": "fiyat_hesapla",
            "country_code": destination_country.upper(),
            "shipments": [{
                "weight": max(weight, 0.1),
                "length": max(dimensions.length, 1),
                "width": max(dimensions.width, 1),
                "height": max(dimensions.height, 1),
            }],
        }

        data = await self._post_json(self.api_url, payload, headers=self._headers(), operation="pricing")
        self._raise_for_hata(data, "pricing")

        prices = data.get("prices")
        if not isinstance(prices, list):
            raise AdapterInvalidResponse(
                "AFS response missing prices array",
                carrier_code=self.carrier_code.value,
            )

        quotes = []
        for entry in prices:
            try:
                name = str(entry["service_name"])
                total = to_minor_units(entry["price"])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed AFS price entry: {e}")
                continue

            lowered = name.lower()
            if "express" in lowered:
                service_type = "express"
            elif "eco" in lowered:
                service_type = "eco"
            else:
                service_type = "standard"

            quotes.append(RawQuote(
                carrier_code=self.carrier_code,
                provider_code=f"afs-{entry.get('service_id')}",
                service_name=name,
                total_price=total,
                cargo_price=total,
                currency="USD",
                service_type=service_type,
                raw=entry,
            ))
        return quotes

    # ==================== Waybills ====================

    def select_service_id(self, shipment: Shipment) -> int:
        """
        Low-value parcels without IOSS must ship Express outside Germany.

        Customs value is stored in USD; the threshold is in EUR.
        """
        value_eur = float(shipment.customs_value or 0) / self._config.EUR_USD_RATE
        if (
            value_eur < EXPRESS_VALUE_THRESHOLD_EUR
            and not shipment.ioss_number
            and shipment.receiver_country.upper() != "DE"
        ):
            return EXPRESS_SERVICE_ID
        return ECONOMY_SERVICE_ID

    def build_waybill_payload(self, shipment: Shipment, routing: RoutingDecision) -> Dict[str, Any]:
        cfg = self._config
        special = str(routing.special_service or "")
        servis_id = int(special) if special.isdigit() else self.select_service_id(shipment)

        gtip = str(shipment.gtip or "")
        gtip = gtip[:6] if len(gtip) >= 6 else DEFAULT_GTIP

        return {
            "islem": "waybill_olustur",
            "alici": shipment.receiver_name,
            "alici_telefon": shipment.receiver_phone or "",
            "alici_adres": _truncate(shipment.receiver_address),
            "alici_ulke": shipment.receiver_country.upper(),
            "alici_sehir": _truncate(shipment.receiver_city),
            "alici_ilce": _truncate(shipment.receiver_city),
            "alici_posta_kodu": shipment.receiver_postal_code or "",
            "gonderici": cfg.SHIPPER_NAME,
            "gonderici_adres": _truncate(cfg.SHIPPER_ADDRESS_LINE1),
            "gonderici_telefon": cfg.SHIPPER_PHONE,
            "gonderici_ulke": cfg.SHIPPER_COUNTRY_CODE,
            "gonderici_sehir": _truncate(cfg.SHIPPER_CITY),
            "gonderici_posta_kodu": cfg.SHIPPER_POSTAL_CODE,
            "gonderiler": [{
                "kap": shipment.piece_count or 1,
                "agirlik": float(shipment.package_weight or 1.0),
                "uzunluk": max(math.ceil(float(shipment.package_length or 1)), 1),
                "genislik": max(math.ceil(float(shipment.package_width or 1)), 1),
                "yukseklik": max(math.ceil(float(shipment.package_height or 1)), 1),
            }],
            "servis_id": servis_id,
            "beyan_id": 2,  # non-document
            "odeme_id": 1,  # sender pays
            "fatura_icerigi": [{
                "mal_cinsi": shipment.package_contents or "Package Item",
                "adet": shipment.piece_count or 1,
                "tip_id": 1,
                "birim_fiyat": float(shipment.customs_value or 0),
                "gtip": gtip,
            }],
            "kur": 1,
            "referans_kodu": f"api-shipment-{shipment.id}",
            "aciklama": "",
            "ddp": 1 if shipment.ioss_number else 0,
            "ioss": shipment.ioss_number or "",
            "vat": "",
            "eori": "",
        }

    async def create_waybill(self, shipment: Shipment, routing: RoutingDecision) -> WaybillResult:
        payload = self.build_waybill_payload(shipment, routing)
        url = routing.api_endpoint or self.api_url
        data = await self._post_json(url, payload, headers=self._headers(), operation="waybill creation")
        self._raise_for_hata(data, "waybill creation")

        codes = data.get("takip_kodlari") or []
        if not codes:
            raise AdapterInvalidResponse(
                str(data.get("mesaj") or "AFS did not return a tracking code"),
                carrier_code=self.carrier_code.value,
            )

        return WaybillResult(
            tracking_number=str(codes[0]),
            label_url=data.get("waybill_pdf"),
            label_format="pdf",
            carrier_response=data,
        )
