"""
Pricing Aggregator

- Fans a quote request out to every configured carrier concurrently
- Each adapter call has its own sub-timeout; the whole fan-out has one
  overall deadline. Anything unfinished at the deadline is cancelled,
  not awaited, and reported in failed_providers
- Successful quotes are normalized, priced once by the MarginEngine,
  de-duplicated per (carrier, display name), capped per carrier and sorted
  by customer price with ties broken by adapter registration order

Usage:
    aggregator = PricingAggregator(CarrierRegistry.from_settings())
    result = await aggregator.aggregate(QuoteRequest(...), multiplier=1.25)
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from parcelhub.core.config import Settings, settings as default_settings
from parcelhub.core.exceptions import AdapterError
from parcelhub.modules.shipping.carriers import CarrierRegistry
from parcelhub.modules.shipping.carriers.base import BaseCarrier, RawQuote
from parcelhub.schemas.shipping import PricingOptionResponse, QuoteRequest, QuoteResponse
from parcelhub.services.margin import MarginEngine, PricingOption
from parcelhub.services.rate_normalizer import RateNormalizer

logger = logging.getLogger(__name__)


@dataclass
class QuoteResult:
    """Merged options plus the carriers that failed or timed out."""
    options: List[PricingOption] = field(default_factory=list)
    failed_providers: List[str] = field(default_factory=list)

    @property
    def best(self) -> Optional[PricingOption]:
        return self.options[0] if self.options else None

    def to_response(self) -> QuoteResponse:
        return QuoteResponse(
            options=[
                PricingOptionResponse(
                    provider_code=o.provider_code,
                    carrier_code=o.carrier_code.value,
                    display_name=o.display_name,
                    service_kind=o.service_kind.value,
                    customer_price=o.customer_price,
                    original_total_price=o.original_total_price,
                    applied_multiplier=o.applied_multiplier,
                    currency=o.currency,
                    delivery_estimate=o.delivery_estimate,
                    service_type=o.service_type,
                )
                for o in self.options
            ],
            failed_providers=list(self.failed_providers),
            best_option=self.best.provider_code if self.best else None,
        )


class PricingAggregator:
    """Concurrent multi-carrier rate aggregation."""

    def __init__(
        self,
        registry: CarrierRegistry,
        normalizer: Optional[RateNormalizer] = None,
        margin_engine: Optional[MarginEngine] = None,
        config: Optional[Settings] = None,
    ):
        self.registry = registry
        self.normalizer = normalizer or RateNormalizer()
        self.margin_engine = margin_engine or MarginEngine()
        self.config = config or default_settings

    async def _quote_one(
        self,
        carrier: BaseCarrier,
        request: QuoteRequest,
        timeout: float,
    ) -> List[RawQuote]:
        try:
            return await asyncio.wait_for(
                carrier.quote(request.dimensions, request.weight, request.destination_country),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"{carrier.carrier_name} quote abandoned after {timeout}s")
            raise

    def _select_carriers(self, request: QuoteRequest) -> List[BaseCarrier]:
        carriers = self.registry.carriers()
        if request.carriers:
            wanted = set(request.carriers)
            carriers = [c for c in carriers if c.carrier_code in wanted]
        return carriers

    async def aggregate(
        self,
        request: QuoteRequest,
        multiplier: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> QuoteResult:
        """
        Get priced options from all configured carriers.

        Args:
            request: Parcel dimensions, weight and destination
            multiplier: Per-customer markup (defaults to the engine default)
            deadline: Overall wait in seconds (defaults to settings)

        Returns:
            QuoteResult sorted ascending by customer_price
        """
        carriers = self._select_carriers(request)
        if not carriers:
            logger.warning("No carriers configured for rate lookup")
            return QuoteResult()

        overall = deadline if deadline is not None else self.config.QUOTE_OVERALL_DEADLINE_SECONDS
        sub_timeout = min(self.config.QUOTE_ADAPTER_TIMEOUT_SECONDS, overall)

        tasks: Dict[asyncio.Task, Tuple[int, BaseCarrier]] = {}
        for index, carrier in enumerate(carriers):
            task = asyncio.create_task(self._quote_one(carrier, request, sub_timeout))
            tasks[task] = (index, carrier)

        try:
            _, pending = await asyncio.wait(tasks.keys(), timeout=overall)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        for task in pending:
            # Abandon; never awaited
            task.cancel()
            logger.error(f"{tasks[task][1].carrier_name} did not finish before the {overall}s deadline")

        failed: List[str] = []
        ranked: List[Tuple[int, int, int, PricingOption]] = []

        for task, (index, carrier) in tasks.items():
            code = carrier.carrier_code.value
            if task in pending:
                failed.append(code)
                continue

            error = task.exception()
            if error is not None:
                if isinstance(error, AdapterError):
                    logger.error(f"{carrier.carrier_name} quote failed: {error.code} - {error.message}")
                elif not isinstance(error, asyncio.TimeoutError):
                    logger.error(f"{carrier.carrier_name} quote raised unexpected error: {error!r}")
                failed.append(code)
                continue

            for position, raw in enumerate(task.result()):
                rate = self.normalizer.normalize(carrier.carrier_code, raw, request.destination_country)
                option = self.margin_engine.price_option(rate, multiplier)
                ranked.append((option.customer_price, index, position, option))

        ranked.sort(key=lambda item: item[:3])

        # Cap is per carrier so a carrier that answered is never crowded out
        cap = self.config.MAX_PRICING_OPTIONS
        seen = set()
        kept: Dict[str, int] = {}
        options: List[PricingOption] = []
        for _, _, _, option in ranked:
            key = (option.carrier_code, option.display_name)
            if key in seen:
                continue
            seen.add(key)
            carrier_key = option.carrier_code.value
            if kept.get(carrier_key, 0) >= cap:
                continue
            kept[carrier_key] = kept.get(carrier_key, 0) + 1
            options.append(option)

        logger.info(
            f"Aggregated {len(options)} options for {request.destination_country} "
            f"({len(failed)} carriers failed)"
        )
        return QuoteResult(options=options, failed_providers=failed)
