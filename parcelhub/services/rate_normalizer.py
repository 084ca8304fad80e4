"""
Rate Normalizer

Maps a carrier's raw service identifier to a canonical ServiceKind and a
customer-facing display name.

Resolution order (first hit wins):
1. Exact lookup on the provider code, then on the raw service name
2. Ordered keyword rules; every token of a rule must appear in the text
3. ServiceKind.UNKNOWN, displayed as DEFAULT_DISPLAY_NAME

Keyword precedence: multi-token rules come before single-token rules, and
"eco" outranks "express" which outranks "standard". A raw name containing
both "eco" and "standard" is therefore ECO.

Pure and deterministic: no I/O, no mutable module state.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from parcelhub.models.carrier import CarrierCode, ServiceKind
from parcelhub.modules.shipping.carriers.base import RawQuote

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_NAME = "ECO"


@dataclass(frozen=True)
class NormalizationRule:
    tokens: Tuple[str, ...]
    kind: ServiceKind
    display_name: str

    def matches(self, text: str) -> bool:
        return all(token in text for token in self.tokens)


EXACT_MATCHES: Dict[str, Tuple[ServiceKind, str]] = {
    "shipentegra": (ServiceKind.ECO, "ECO"),
    "shipentegra-eco-primary": (ServiceKind.ECO, "ECO"),
    "shipentegra-widect": (ServiceKind.ECO, "ECO"),
    "shipentegra-ingiltere-eko-plus": (ServiceKind.UK_ECO, "UK ECO"),
    "shipentegra-ups-express": (ServiceKind.UPS_EXPRESS, "UPS Express"),
    "afs-ups-express": (ServiceKind.UPS_EXPRESS, "UPS Express"),
    "shipentegra-fedex": (ServiceKind.FEDEX, "FedEx"),
    "shipentegra-worldwide-standard": (ServiceKind.WORLDWIDE_STANDARD, "Worldwide Standard"),
    "ecoafs": (ServiceKind.ECO, "ECO"),
    "afs-gls-express": (ServiceKind.GLS_EXPRESS, "GLS Express"),
    "aramex-ppx": (ServiceKind.ARAMEX, "Aramex Express"),
    "aramex-ppx-0": (ServiceKind.ARAMEX, "Aramex Express"),
    "aramex-plx": (ServiceKind.ARAMEX, "Aramex Letter"),
    "aramex-plx-1": (ServiceKind.ARAMEX, "Aramex Letter"),
    "aramex-epx": (ServiceKind.ARAMEX, "Aramex Economy"),
    "aramex-epx-2": (ServiceKind.ARAMEX, "Aramex Economy"),
    "aramex-gdx": (ServiceKind.ARAMEX, "Aramex Ground"),
    "aramex-gdx-3": (ServiceKind.ARAMEX, "Aramex Ground"),
}

KEYWORD_RULES: Tuple[NormalizationRule, ...] = (
    NormalizationRule(("ups", "express"), ServiceKind.UPS_EXPRESS, "UPS Express"),
    NormalizationRule(("fedex",), ServiceKind.FEDEX, "FedEx"),
    NormalizationRule(("worldwide", "standard"), ServiceKind.WORLDWIDE_STANDARD, "Worldwide Standard"),
    NormalizationRule(("widect",), ServiceKind.ECO, "ECO"),
    NormalizationRule(("ingiltere", "eko"), ServiceKind.UK_ECO, "UK ECO"),
    NormalizationRule(("gls", "express"), ServiceKind.GLS_EXPRESS, "GLS Express"),
    NormalizationRule(("aramex", "ppx"), ServiceKind.ARAMEX, "Aramex Express"),
    NormalizationRule(("aramex", "plx"), ServiceKind.ARAMEX, "Aramex Letter"),
    NormalizationRule(("aramex", "epx"), ServiceKind.ARAMEX, "Aramex Economy"),
    NormalizationRule(("aramex", "gdx"), ServiceKind.ARAMEX, "Aramex Ground"),
    NormalizationRule(("aramex",), ServiceKind.ARAMEX, "Aramex"),
    NormalizationRule(("eco",), ServiceKind.ECO, "ECO"),
    NormalizationRule(("eko",), ServiceKind.ECO, "ECO"),
    NormalizationRule(("express",), ServiceKind.EXPRESS, "Express"),
    NormalizationRule(("standard",), ServiceKind.STANDARD, "Standard"),
    NormalizationRule(("standart",), ServiceKind.STANDARD, "Standard"),
)

DELIVERY_ESTIMATES: Dict[ServiceKind, str] = {
    ServiceKind.UPS_EXPRESS: "1-3 business days",
    ServiceKind.FEDEX: "1-3 business days",
    ServiceKind.EXPRESS: "1-3 business days",
    ServiceKind.ARAMEX: "2-4 business days",
    ServiceKind.GLS_EXPRESS: "3-5 business days",
    ServiceKind.WORLDWIDE_STANDARD: "5-8 business days",
    ServiceKind.STANDARD: "5-8 business days",
    ServiceKind.UK_ECO: "5-10 business days",
    ServiceKind.ECO: "7-14 business days",
    ServiceKind.UNKNOWN: "7-14 business days",
}


@dataclass(frozen=True)
class NormalizedRate:
    """A carrier rate in canonical form, still at carrier cost."""
    carrier_code: CarrierCode
    provider_code: str
    service_name: str
    display_name: str
    service_kind: ServiceKind
    cost_price: int
    cargo_price: int
    fuel_cost: int
    additional_fee: int
    currency: str
    delivery_estimate: str
    service_type: Optional[str]
    supported_countries: Tuple[str, ...] = ()


def classify(*identifiers: Optional[str]) -> Tuple[ServiceKind, str]:
    """
    Classify raw identifiers into (ServiceKind, display name).

    Each identifier is tried for an exact match before any keyword rule
    runs, so a known provider code always beats a fuzzy service name.
    """
    texts = [i.lower().strip() for i in identifiers if i]

    for text in texts:
        if text in EXACT_MATCHES:
            return EXACT_MATCHES[text]

    for rule in KEYWORD_RULES:
        for text in texts:
            if rule.matches(text):
                return rule.kind, rule.display_name

    return ServiceKind.UNKNOWN, DEFAULT_DISPLAY_NAME


def display_name_for(raw_service_name: str) -> str:
    kind, display_name = classify(raw_service_name)
    if kind is ServiceKind.UNKNOWN:
        logger.warning(f"Unknown service name: {raw_service_name}, defaulting to {DEFAULT_DISPLAY_NAME}")
    return display_name


class RateNormalizer:
    """Turns RawQuote objects into NormalizedRate objects."""

    def normalize(
        self,
        carrier_code: CarrierCode,
        raw: RawQuote,
        destination_country: Optional[str] = None,
    ) -> NormalizedRate:
        kind, display_name = classify(raw.provider_code, raw.service_name)
        if kind is ServiceKind.UNKNOWN:
            logger.warning(
                f"Unknown service {carrier_code.value}/{raw.provider_code} "
                f"({raw.service_name!r}), defaulting to {DEFAULT_DISPLAY_NAME}"
            )

        if raw.delivery_estimate:
            delivery_estimate = raw.delivery_estimate
        elif raw.delivery_days:
            delivery_estimate = f"{raw.delivery_days} business days"
        else:
            delivery_estimate = DELIVERY_ESTIMATES[kind]

        return NormalizedRate(
            carrier_code=carrier_code,
            provider_code=raw.provider_code,
            service_name=raw.service_name,
            display_name=display_name,
            service_kind=kind,
            cost_price=raw.total_price,
            cargo_price=raw.cargo_price,
            fuel_cost=raw.fuel_cost,
            additional_fee=raw.additional_fee,
            currency=raw.currency,
            delivery_estimate=delivery_estimate,
            service_type=raw.service_type or kind.value,
            supported_countries=(destination_country.upper(),) if destination_country else (),
        )
