"""
Tests for the margin engine.
"""
from decimal import Decimal, ROUND_HALF_UP

import pytest

from conftest import raw_quote
from parcelhub.core.exceptions import MarginAlreadyApplied
from parcelhub.models.carrier import CarrierCode
from parcelhub.services.margin import (
    Cost,
    CustomerFacing,
    MarginEngine,
    combined_multiplier,
)
from parcelhub.services.rate_normalizer import RateNormalizer


def expected_price(cost: int, multiplier: float) -> int:
    return int((Decimal(cost) * Decimal(str(multiplier))).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class TestApplyMargin:
    """Test cost -> customer price."""

    @pytest.mark.parametrize("multiplier", [1.0, 1.25, 2.0])
    @pytest.mark.parametrize("cost", [0, 1, 2, 999, 1234, 100000])
    def test_price_invariants(self, cost, multiplier):
        """customer = round_half_up(cost * m), original = cost, never below cost."""
        result = MarginEngine().apply_margin(cost, multiplier)

        assert result.customer_price == expected_price(cost, multiplier)
        assert result.original_total_price == cost
        assert result.customer_price >= cost

    def test_half_up_rounding(self):
        """2 * 1.25 = 2.5 rounds up to 3."""
        assert MarginEngine().apply_margin(2, 1.25).customer_price == 3

    def test_multiplier_below_one_rejected(self):
        """Discount multipliers are refused."""
        with pytest.raises(ValueError):
            MarginEngine().apply_margin(1000, 0.9)

    def test_negative_cost_rejected(self):
        """Negative cost is a caller bug."""
        with pytest.raises(ValueError):
            MarginEngine().apply_margin(-1, 1.2)

    def test_default_multiplier_validated(self):
        """Engine refuses a discount default."""
        with pytest.raises(ValueError):
            MarginEngine(default_multiplier=0.5)


class TestPriceBasis:
    """Test that margin is applied exactly once."""

    def test_apply_cost(self):
        """A Cost becomes CustomerFacing carrying its origin."""
        priced = MarginEngine().apply(Cost(1000), 1.25)

        assert priced == CustomerFacing(amount=1250, multiplier=1.25, cost=1000)

    def test_apply_is_idempotent(self):
        """Applying to an already customer-facing value changes nothing."""
        engine = MarginEngine()
        once = engine.apply(Cost(1000), 1.25)
        twice = engine.apply(once, 1.25)

        assert twice is once
        assert twice.amount == 1250

    def test_apply_uses_default_multiplier(self):
        """No explicit multiplier uses the engine default."""
        priced = MarginEngine(default_multiplier=1.5).apply(Cost(100))
        assert priced.amount == 150
        assert priced.multiplier == 1.5

    def test_assert_cost_rejects_customer_facing(self):
        """Strict call sites refuse marked-up values."""
        with pytest.raises(MarginAlreadyApplied) as exc_info:
            MarginEngine.assert_cost(CustomerFacing(amount=1250, multiplier=1.25, cost=1000))
        assert exc_info.value.details["cost"] == 1000

    def test_assert_cost_passes_cost(self):
        """Cost values go through untouched."""
        cost = Cost(500)
        assert MarginEngine.assert_cost(cost) is cost


class TestPriceOption:
    """Test PricingOption construction."""

    def test_price_option(self):
        """Option carries cost, customer price, multiplier and display name."""
        raw = raw_quote(CarrierCode.SHIPENTEGRA, "shipentegra-eco", "Shipentegra ECO", 999)
        rate = RateNormalizer().normalize(CarrierCode.SHIPENTEGRA, raw, "US")
        option = MarginEngine().price_option(rate, 1.25)

        assert option.cost_price == 999
        assert option.original_total_price == 999
        assert option.customer_price == expected_price(999, 1.25)
        assert option.applied_multiplier == 1.25
        assert option.display_name == "ECO"
        assert isinstance(option.basis, CustomerFacing)

        data = option.to_dict()
        assert data["carrier_code"] == "shipentegra"
        assert data["supported_countries"] == ["US"]


class TestCombinedMultiplier:
    """Test multiplier composition."""

    def test_product(self):
        """Per-user, per-country and per-weight multipliers multiply."""
        assert combined_multiplier(1.2, 1.1, 1.0) == pytest.approx(1.32)

    def test_defaults(self):
        """Country and weight default to neutral."""
        assert combined_multiplier(1.25) == 1.25
