"""
Service Router

Resolves a loosely-typed "selected service" string plus a destination
country into one concrete carrier endpoint and special-service parameter.

1. Canonicalize: exact code or alias, else ordered keyword rules.
   No rule matching is an explicit unknown, never a default carrier.
2. Look up the ServiceMappingEntry for the canonical code.
3. Destination in unsupported_countries -> documented fallback entry.
4. Emit a RoutingDecision.

Any dead end raises ServiceUnsupportedForDestination.

The mapping table is built once per router from settings and never
mutated afterwards.
"""
import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, field_validator

from parcelhub.core.config import GULF_COUNTRIES, Settings, settings as default_settings
from parcelhub.core.exceptions import ServiceUnsupportedForDestination
from parcelhub.models.carrier import CarrierCode
from parcelhub.models.shipment import Shipment
from parcelhub.modules.shipping.carriers.base import RoutingDecision

logger = logging.getLogger(__name__)


class ServiceMappingEntry(BaseModel):
    """Routing rule for one canonical service code."""
    model_config = ConfigDict(frozen=True)

    service_code: str
    carrier: CarrierCode
    api_endpoint: str
    special_service: Union[str, int] = ""
    display_name: str
    unsupported_countries: FrozenSet[str] = frozenset()
    fallback_service_code: Optional[str] = None

    @field_validator("unsupported_countries", mode="before")
    @classmethod
    def upper_countries(cls, v):
        return frozenset(c.upper() for c in (v or ()))


@dataclass(frozen=True)
class RouteRule:
    """Keyword rule: every `all_of` token present, no `none_of` token present."""
    service_code: str
    all_of: Tuple[str, ...]
    none_of: Tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        return all(t in text for t in self.all_of) and not any(t in text for t in self.none_of)


ALIASES: Dict[str, str] = {
    "shipentegra": "shipentegra-eco",
    "shipentegra-eco-primary": "shipentegra-eco",
    "ups": "shipentegra-ups-ekspress",
}

# Text is lower-cased with punctuation collapsed to single spaces and padded,
# so " us " only matches the whole word.
ROUTE_RULES: Tuple[RouteRule, ...] = (
    RouteRule("se-fedex-us", ("fedex", "amerika")),
    RouteRule("se-fedex-us", ("fedex", " us ")),
    RouteRule("shipentegra-fedex-amerika-standard", ("fedex", "standard")),
    RouteRule("shipentegra-fedex", ("fedex",)),
    RouteRule("shipentegra-amerika-eko-plus", ("amerika eko plus",)),
    RouteRule("shipentegra-international-express", ("international express",)),
    RouteRule("shipentegra-ingiltere-eko-plus", ("ingiltere eko plus",)),
    RouteRule("shipentegra-worldwide-standard", ("worldwide standard",)),
    RouteRule("shipentegra-ups-ekspress", ("ups express",)),
    RouteRule("shipentegra-ups-ekspress", ("ups ekspress",)),
    RouteRule("shipentegra-ups-standart", ("ups standard",)),
    RouteRule("shipentegra-ups-standart", ("ups standart",)),
    RouteRule("shipentegra-widect", ("widect",)),
    RouteRule("afs-gls-express", ("gls express",)),
    RouteRule("afs-gls", ("gls",)),
    RouteRule("aramex-ppx", ("aramex",)),
    RouteRule("shipentegra-express", ("express",), ("ups", "international", "fedex")),
    RouteRule("shipentegra-eco", ("eco",), ("amerika", "plus")),
    RouteRule("shipentegra-eco", ("economy",)),
    RouteRule("shipentegra-ups-standart", ("standard",)),
    RouteRule("shipentegra-ups-standart", ("standart",)),
)


def _normalize_text(identifier: str) -> str:
    return f" {re.sub(r'[^a-z0-9]+', ' ', identifier.lower()).strip()} "


def build_service_table(config: Optional[Settings] = None) -> Mapping[str, ServiceMappingEntry]:
    """Static mapping table, with endpoints rooted at the configured base URLs."""
    config = config or default_settings
    se = config.SHIPENTEGRA_BASE_URL.rstrip("/") + "/v1/logistics/labels"
    afs = config.AFS_BASE_URL.rstrip("/") + "/apiv2.php"
    aramex = config.ARAMEX_BASE_URL.rstrip("/") + "/Shipping/Service_1_0.svc/json/CreateShipments"

    se_carrier = CarrierCode.SHIPENTEGRA
    rows = [
        # code, carrier, endpoint, special service, display name
        ("shipentegra-express", se_carrier, f"{se}/shipentegra", "shipentegra-express", "Express"),
        ("shipentegra-eco", se_carrier, f"{se}/shipentegra/dhlecommerce", "", "ECO"),
        ("shipentegra-ups-ekspress", se_carrier, f"{se}/shipentegra/ups", "shipentegra-express", "UPS Express"),
        ("shipentegra-ups-express", se_carrier, f"{se}/shipentegra/ups", "", "UPS Express"),
        ("shipentegra-ups-standart", se_carrier, f"{se}/shipentegra/ups", "shipentegra-expedited", "UPS Standard"),
        ("shipentegra-worldwide-standard", se_carrier, f"{se}/shipentegra", "shipentegra-worldwide-standard", "Worldwide Standard"),
        ("shipentegra-widect", se_carrier, f"{se}/shipentegra/dhlecommerce", "", "ECO"),
        ("shipentegra-amerika-eko-plus", se_carrier, f"{se}/shipentegra/dhlecommerce", "", "USA ECO Plus"),
        ("shipentegra-almanya-eko-plus", se_carrier, f"{se}/shipentegra/dhlecommerce", "", "Germany ECO Plus"),
        ("shipentegra-avustralya-eko-plus", se_carrier, f"{se}/shipentegra/dhlecommerce", "", "Australia ECO Plus"),
        ("shipentegra-fransa-eko-plus", se_carrier, f"{se}/shipentegra/dhlecommerce", "", "France ECO Plus"),
        ("shipentegra-global-eko-plus", se_carrier, f"{se}/shipentegra/dhlecommerce", "", "Global ECO Plus"),
        ("shipentegra-ingiltere-eko-plus", se_carrier, f"{se}/shipentegra", "shipentegra-ingiltere-eko-plus", "UK ECO"),
        ("shipentegra-fedex-amerika-standard", se_carrier, f"{se}/shipentegra", "shipentegra-fedex-amerika-standard", "FedEx USA Standard"),
        ("shipentegra-fedex", se_carrier, f"{se}/shipentegra", "shipentegra-fedex", "FedEx"),
        ("shipentegra-dhl", se_carrier, f"{se}/shipentegra", "shipentegra-dhl", "DHL Express"),
        ("se-ups", se_carrier, f"{se}/shipentegra/ups", "shipentegra-express", "UPS"),
        ("se-fedex", se_carrier, f"{se}/fedex", "", "FedEx"),
        ("se-fedex-us", se_carrier, f"{se}/fedex", "x1", "FedEx USA"),
        ("se-usps", se_carrier, f"{se}/usps", 1, "USPS"),
        ("se-dhlecommerce", se_carrier, f"{se}/dhlecommerce", "", "DHL eCommerce"),
        ("se-dhlecommerce-eko-plus", se_carrier, f"{se}/shipentegra/dhlecommerce", "", "DHL eCommerce ECO Plus"),
        ("afs-gls", CarrierCode.AFS, afs, "gls", "GLS"),
        ("afs-gls-express", CarrierCode.AFS, afs, "gls-express", "GLS Express"),
        ("aramex-ppx", CarrierCode.ARAMEX, aramex, "PPX", "Aramex Express"),
    ]
    rows.extend(
        (f"afs-{n}", CarrierCode.AFS, afs, str(n), "GLS") for n in range(1, 11)
    )

    table: Dict[str, ServiceMappingEntry] = {}
    for code, carrier, endpoint, special, display in rows:
        table[code] = ServiceMappingEntry(
            service_code=code,
            carrier=carrier,
            api_endpoint=endpoint,
            special_service=special,
            display_name=display,
        )

    # Generic express is not sold into the Gulf; UPS Express is
    table["shipentegra-express"] = table["shipentegra-express"].model_copy(update={
        "unsupported_countries": frozenset(GULF_COUNTRIES),
        "fallback_service_code": "shipentegra-ups-express",
    })
    return MappingProxyType(table)


class ServiceRouter:
    """Service identifier + country -> RoutingDecision."""

    def __init__(self, table: Optional[Mapping[str, ServiceMappingEntry]] = None, config: Optional[Settings] = None):
        self.table = table if table is not None else build_service_table(config)

    def classify_service(self, identifier: Optional[str]) -> Optional[str]:
        """
        Canonical service code for an identifier, or None when unknown.

        Exact table codes and aliases win over keyword rules.
        """
        if not identifier or not identifier.strip():
            return None

        key = identifier.lower().strip()
        if key in self.table:
            return key
        if key in ALIASES:
            return ALIASES[key]

        text = _normalize_text(identifier)
        for rule in ROUTE_RULES:
            if rule.matches(text):
                return rule.service_code
        return None

    def _decision(self, entry: ServiceMappingEntry, fallback_applied: bool) -> RoutingDecision:
        return RoutingDecision(
            service_code=entry.service_code,
            carrier=entry.carrier,
            api_endpoint=entry.api_endpoint,
            special_service=entry.special_service,
            display_name=entry.display_name,
            fallback_applied=fallback_applied,
        )

    def resolve(self, service_identifier: Optional[str], destination_country: str) -> RoutingDecision:
        """
        Route a service to a concrete carrier endpoint.

        Args:
            service_identifier: Selected service (code, alias or carrier name)
            destination_country: ISO-3166 alpha-2 receiver country

        Returns:
            RoutingDecision

        Raises:
            ServiceUnsupportedForDestination: unknown service, unmapped code,
                or unsupported destination without a fallback
        """
        country = (destination_country or "").upper()
        code = self.classify_service(service_identifier)
        if code is None:
            logger.warning(f"Unknown service identifier {service_identifier!r} for {country}")
            raise ServiceUnsupportedForDestination(service_identifier, country)

        entry = self.table.get(code)
        if entry is None:
            logger.warning(f"No routing entry for service code {code} (from {service_identifier!r})")
            raise ServiceUnsupportedForDestination(service_identifier, country, details={"service_code": code})

        if country not in entry.unsupported_countries:
            return self._decision(entry, fallback_applied=False)

        fallback = self.table.get(entry.fallback_service_code) if entry.fallback_service_code else None
        if fallback is None or country in fallback.unsupported_countries:
            raise ServiceUnsupportedForDestination(
                service_identifier, country, details={"service_code": code}
            )

        logger.info(f"{code} unsupported for {country}; routing via {fallback.service_code}")
        return self._decision(fallback, fallback_applied=True)

    def resolve_for_shipment(self, shipment: Shipment) -> RoutingDecision:
        """Prefer the carrier code captured at quote time over the display choice."""
        identifier = shipment.provider_service_code or shipment.selected_service
        return self.resolve(identifier, shipment.receiver_country)

    def services(self) -> Iterable[str]:
        return self.table.keys()
