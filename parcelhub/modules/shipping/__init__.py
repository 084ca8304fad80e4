"""
Shipping Module

- Carrier adapters behind the BaseCarrier interface
- CarrierRegistry for explicit dependency injection
"""
from parcelhub.modules.shipping.carriers import CarrierRegistry, register_carrier
from parcelhub.modules.shipping.carriers.base import BaseCarrier

__all__ = [
    "CarrierRegistry",
    "register_carrier",
    "BaseCarrier",
]
