"""
Carrier Registry

- register_carrier records which class implements each CarrierCode
- CarrierRegistry is constructed explicitly and injected; it owns the
  adapter instances (in registration order) and the shared TokenCache
- Only carriers enabled in settings are instantiated
"""
from typing import Dict, Iterable, List, Optional, Type
import logging

from parcelhub.core.config import Settings, settings as default_settings
from parcelhub.core.token_cache import TokenCache
from parcelhub.models.carrier import CarrierCode
from parcelhub.modules.shipping.carriers.base import BaseCarrier

logger = logging.getLogger(__name__)

# Registry of carrier implementations (insertion order == registration order)
_CARRIER_REGISTRY: Dict[CarrierCode, Type[BaseCarrier]] = {}


def register_carrier(carrier_code: CarrierCode):
    """
    Decorator to register a carrier implementation.

    Usage:
        @register_carrier(CarrierCode.ARAMEX)
        class AramexCarrier(BaseCarrier):
            ...
    """
    def decorator(cls: Type[BaseCarrier]):
        _CARRIER_REGISTRY[carrier_code] = cls
        logger.debug(f"Registered carrier: {carrier_code.value} -> {cls.__name__}")
        return cls
    return decorator


def get_registered_carriers() -> List[CarrierCode]:
    """Get list of all registered carrier codes."""
    return list(_CARRIER_REGISTRY.keys())


class CarrierRegistry:
    """
    Holds the configured adapter instances for one application.

    Adapter order is significant: the pricing aggregator breaks price ties
    by it.
    """

    def __init__(
        self,
        carriers: Iterable[BaseCarrier],
        token_cache: Optional[TokenCache] = None,
    ):
        self._carriers: Dict[CarrierCode, BaseCarrier] = {}
        for carrier in carriers:
            if carrier.carrier_code in self._carriers:
                raise ValueError(f"Carrier {carrier.carrier_code.value} registered twice")
            self._carriers[carrier.carrier_code] = carrier
        self.token_cache = token_cache

    @classmethod
    def from_settings(
        cls,
        config: Optional[Settings] = None,
        codes: Optional[Iterable[CarrierCode]] = None,
    ) -> "CarrierRegistry":
        """
        Build a registry with one adapter per enabled carrier.

        Args:
            config: Settings (defaults to the module singleton)
            codes: Optional explicit carrier list, in the desired order

        Returns:
            CarrierRegistry sharing a single TokenCache across adapters
        """
        config = config or default_settings
        token_cache = TokenCache(refresh_margin=config.TOKEN_REFRESH_MARGIN_SECONDS)
        carriers = []

        for code in codes or get_registered_carriers():
            if not config.carrier_enabled(code.value):
                logger.debug(f"Carrier {code.value} is disabled")
                continue
            carrier_cls = _CARRIER_REGISTRY.get(code)
            if not carrier_cls:
                logger.warning(f"No implementation registered for carrier: {code.value}")
                continue
            carriers.append(carrier_cls(config=config, token_cache=token_cache))

        return cls(carriers, token_cache=token_cache)

    def get(self, carrier_code: CarrierCode) -> Optional[BaseCarrier]:
        return self._carriers.get(carrier_code)

    def carriers(self) -> List[BaseCarrier]:
        """Adapters in registration order."""
        return list(self._carriers.values())

    def codes(self) -> List[CarrierCode]:
        return list(self._carriers.keys())

    def __len__(self) -> int:
        return len(self._carriers)

    async def close(self):
        """Close every adapter's HTTP client."""
        for carrier in self._carriers.values():
            await carrier.close()


# Import carriers to trigger registration
# These imports must be at the bottom to avoid circular imports
from parcelhub.modules.shipping.carriers.shipentegra import ShipentegraCarrier  # noqa: E402, F401
from parcelhub.modules.shipping.carriers.aramex import AramexCarrier  # noqa: E402, F401
from parcelhub.modules.shipping.carriers.afs import AFSCarrier  # noqa: E402, F401
