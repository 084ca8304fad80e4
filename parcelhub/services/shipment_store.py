"""
Shipment Store

Thin AsyncSession repository over the order-management shipments table.
Only reads the fields pricing/routing need and writes back pricing,
tracking and label results.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from parcelhub.models.shipment import Shipment
from parcelhub.services.margin import CustomerFacing, PricingOption

logger = logging.getLogger(__name__)

# Columns this core is allowed to write
WRITABLE_FIELDS = frozenset({
    "provider_service_code",
    "total_price",
    "original_total_price",
    "applied_multiplier",
    "carrier_tracking_number",
    "carrier_label_url",
    "carrier_label_data",
    "label_error",
    "status",
})


class ShipmentStore:
    """Shipment persistence used by LabelFulfillment."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_shipment(self, shipment_id: int) -> Optional[Shipment]:
        result = await self.db.execute(select(Shipment).where(Shipment.id == shipment_id))
        return result.scalar_one_or_none()

    async def get_shipments(self, shipment_ids: Iterable[int]) -> List[Shipment]:
        ids = list(shipment_ids)
        if not ids:
            return []
        result = await self.db.execute(select(Shipment).where(Shipment.id.in_(ids)))
        return list(result.scalars().all())

    async def update_shipment(self, shipment_id: int, fields: Mapping[str, Any]) -> None:
        """
        Write back result fields for one shipment.

        Raises:
            ValueError: if a field outside WRITABLE_FIELDS is given
        """
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Refusing to write non-result fields: {sorted(unknown)}")
        if not fields:
            return

        await self.db.execute(
            update(Shipment).where(Shipment.id == shipment_id).values(**dict(fields))
        )
        await self.db.commit()
        logger.debug(f"Shipment {shipment_id} updated: {sorted(fields)}")

    async def bulk_update(self, updates: Dict[int, Mapping[str, Any]]) -> None:
        for shipment_id, fields in updates.items():
            await self.update_shipment(shipment_id, fields)

    async def save_pricing(self, shipment_id: int, option: PricingOption) -> None:
        """Persist the chosen option; only customer-facing prices are accepted."""
        if not isinstance(option.basis, CustomerFacing):
            raise ValueError(f"Shipment {shipment_id}: option has not been through the margin engine")
        await self.update_shipment(shipment_id, {
            "provider_service_code": option.provider_code,
            "total_price": option.customer_price,
            "original_total_price": option.original_total_price,
            "applied_multiplier": option.applied_multiplier,
        })
