"""
Margin Engine

The single place where carrier cost becomes customer price.

Prices carry their basis as a value:
    PriceBasis = Cost(amount) | CustomerFacing(amount, multiplier, cost)

`MarginEngine.apply` multiplies a Cost exactly once and returns a
CustomerFacing; handed a CustomerFacing it returns it unchanged. Strict
call sites use `assert_cost`, which raises MarginAlreadyApplied.

Rounding is half-up on integer minor units.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple, Union

from parcelhub.core.config import settings
from parcelhub.core.exceptions import MarginAlreadyApplied
from parcelhub.models.carrier import CarrierCode, ServiceKind
from parcelhub.services.rate_normalizer import NormalizedRate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cost:
    """Carrier cost in minor units; no markup applied yet."""
    amount: int


@dataclass(frozen=True)
class CustomerFacing:
    """Customer price in minor units, with the cost and multiplier it came from."""
    amount: int
    multiplier: float
    cost: int


PriceBasis = Union[Cost, CustomerFacing]


@dataclass(frozen=True)
class MarginResult:
    customer_price: int
    original_total_price: int


@dataclass(frozen=True)
class PricingOption:
    """One priced service offering as returned to the caller."""
    provider_code: str
    carrier_code: CarrierCode
    service_name: str
    display_name: str
    service_kind: ServiceKind
    cost_price: int
    customer_price: int
    applied_multiplier: float
    original_total_price: int
    currency: str
    delivery_estimate: str
    service_type: Optional[str]
    supported_countries: Tuple[str, ...]
    basis: CustomerFacing

    def to_dict(self) -> dict:
        return {
            "provider_code": self.provider_code,
            "carrier_code": self.carrier_code.value,
            "service_name": self.service_name,
            "display_name": self.display_name,
            "service_kind": self.service_kind.value,
            "cost_price": self.cost_price,
            "customer_price": self.customer_price,
            "applied_multiplier": self.applied_multiplier,
            "original_total_price": self.original_total_price,
            "currency": self.currency,
            "delivery_estimate": self.delivery_estimate,
            "service_type": self.service_type,
            "supported_countries": list(self.supported_countries),
        }


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _validate_multiplier(multiplier: float) -> None:
    if multiplier < 1.0:
        raise ValueError(f"Multiplier must be >= 1.0, got {multiplier}")


def combined_multiplier(user: float, country: float = 1.0, weight_range: float = 1.0) -> float:
    """Per-customer x per-country x per-weight-band markup."""
    result = Decimal(str(user)) * Decimal(str(country)) * Decimal(str(weight_range))
    return float(result)


class MarginEngine:
    """Converts cost into customer price exactly once."""

    def __init__(self, default_multiplier: Optional[float] = None):
        self.default_multiplier = (
            default_multiplier if default_multiplier is not None else settings.DEFAULT_PRICE_MULTIPLIER
        )
        _validate_multiplier(self.default_multiplier)

    def apply_margin(self, cost_price: int, multiplier: float) -> MarginResult:
        """
        Apply a markup to a raw cost.

        Args:
            cost_price: Carrier cost in minor units
            multiplier: Markup factor (>= 1.0)

        Returns:
            MarginResult where original_total_price is the untouched cost
        """
        _validate_multiplier(multiplier)
        if cost_price < 0:
            raise ValueError(f"Cost price cannot be negative: {cost_price}")
        customer_price = _round_half_up(Decimal(cost_price) * Decimal(str(multiplier)))
        return MarginResult(customer_price=customer_price, original_total_price=cost_price)

    def apply(self, basis: PriceBasis, multiplier: Optional[float] = None) -> CustomerFacing:
        """Return a customer-facing price; already customer-facing values pass through."""
        if isinstance(basis, CustomerFacing):
            logger.debug(f"Margin already applied (x{basis.multiplier}); leaving {basis.amount} unchanged")
            return basis
        multiplier = self.default_multiplier if multiplier is None else multiplier
        result = self.apply_margin(basis.amount, multiplier)
        return CustomerFacing(amount=result.customer_price, multiplier=multiplier, cost=basis.amount)

    @staticmethod
    def assert_cost(basis: PriceBasis) -> Cost:
        """Guard for call sites that must never see a marked-up value."""
        if isinstance(basis, CustomerFacing):
            raise MarginAlreadyApplied(
                "Price is already customer-facing",
                details={"amount": basis.amount, "multiplier": basis.multiplier, "cost": basis.cost},
            )
        return basis

    def price_option(self, rate: NormalizedRate, multiplier: Optional[float] = None) -> PricingOption:
        """Build the PricingOption for a normalized rate."""
        priced = self.apply(Cost(rate.cost_price), multiplier)
        return PricingOption(
            provider_code=rate.provider_code,
            carrier_code=rate.carrier_code,
            service_name=rate.service_name,
            display_name=rate.display_name,
            service_kind=rate.service_kind,
            cost_price=priced.cost,
            customer_price=priced.amount,
            applied_multiplier=priced.multiplier,
            original_total_price=priced.cost,
            currency=rate.currency,
            delivery_estimate=rate.delivery_estimate,
            service_type=rate.service_type,
            supported_countries=rate.supported_countries,
            basis=priced,
        )
