"""
Label Fulfillment

Buys waybills at the routed carrier endpoint and stores the converted label.

- purchase: one shipment, errors raised as LabelCreationFailed
- purchase_many: bounded concurrency, partial-failure semantics. Every
  shipment gets its own outcome and one failure never touches siblings
- A carrier call that times out or is cancelled after the request went
  out is recorded as LABEL_UNKNOWN (reconcile before retrying), never
  retried automatically
- A label conversion failure keeps the tracking number and records the
  error; the corrupt artifact is not stored

Usage:
    fulfillment = LabelFulfillment(registry, store=ShipmentStore(db))
    batch = await fulfillment.purchase_many(shipments)
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from parcelhub.core.config import Settings, settings as default_settings
from parcelhub.core.exceptions import (
    AdapterError,
    AdapterTimeout,
    LabelArtifactError,
    LabelCreationFailed,
    LabelStatusUnknown,
    ServiceUnsupportedForDestination,
)
from parcelhub.models.shipment import Shipment, ShipmentStatus
from parcelhub.modules.shipping.carriers import CarrierRegistry
from parcelhub.modules.shipping.carriers.base import RoutingDecision
from parcelhub.schemas.shipping import BatchPurchaseResponse, PurchaseOutcome
from parcelhub.services.label_converter import LabelArtifact, LabelArtifactConverter
from parcelhub.services.service_router import ServiceRouter
from parcelhub.services.shipment_store import ShipmentStore

logger = logging.getLogger(__name__)


@dataclass
class PurchaseResult:
    """A bought waybill. artifact is None when label conversion failed."""
    shipment_id: int
    tracking_number: str
    routing: RoutingDecision
    label_url: Optional[str] = None
    artifact: Optional[LabelArtifact] = None
    label_error: Optional[str] = None

    def result_fields(self) -> Dict[str, Any]:
        return {
            "carrier_tracking_number": self.tracking_number,
            "carrier_label_url": self.label_url,
            "carrier_label_data": self.artifact.pdf_content if self.artifact else None,
            "label_error": self.label_error,
            "status": ShipmentStatus.LABEL_PURCHASED,
        }


@dataclass
class BatchPurchaseResult:
    success_ids: List[int] = field(default_factory=list)
    failed_ids: List[int] = field(default_factory=list)
    unknown_ids: List[int] = field(default_factory=list)
    errors: Dict[int, str] = field(default_factory=dict)
    tracking_numbers: Dict[int, str] = field(default_factory=dict)
    label_urls: Dict[int, str] = field(default_factory=dict)

    def to_response(self) -> BatchPurchaseResponse:
        return BatchPurchaseResponse(
            success_ids=self.success_ids,
            failed_ids=self.failed_ids,
            unknown_ids=self.unknown_ids,
            errors=self.errors,
            tracking_numbers=self.tracking_numbers,
            label_urls=self.label_urls,
        )


@dataclass
class _Attempt:
    """Per-shipment state, written only by that shipment's task."""
    shipment: Shipment
    sent: bool = False
    result: Optional[PurchaseResult] = None
    error: Optional[Exception] = None


class LabelFulfillment:
    """Routes, purchases and stores carrier labels."""

    def __init__(
        self,
        registry: CarrierRegistry,
        router: Optional[ServiceRouter] = None,
        converter: Optional[LabelArtifactConverter] = None,
        store: Optional[ShipmentStore] = None,
        config: Optional[Settings] = None,
    ):
        self.registry = registry
        self.config = config or default_settings
        self.router = router or ServiceRouter(config=self.config)
        self.converter = converter or LabelArtifactConverter(self.config)
        self.store = store

    async def _buy(self, shipment: Shipment, routing: RoutingDecision) -> PurchaseResult:
        carrier = self.registry.get(routing.carrier)
        code = routing.carrier.value
        if carrier is None:
            raise LabelCreationFailed(code, f"Carrier {code} is not configured")

        try:
            waybill = await carrier.create_waybill(shipment, routing)
        except AdapterTimeout as e:
            raise LabelStatusUnknown(
                code, "Carrier did not answer after the label request was sent"
            ) from e
        except AdapterError as e:
            raise LabelCreationFailed(code, e.message, details={"adapter_code": e.code}) from e

        logger.info(
            f"Label purchased for shipment {shipment.id} via {routing.service_code}: {waybill.tracking_number}"
        )

        result = PurchaseResult(
            shipment_id=shipment.id,
            tracking_number=waybill.tracking_number,
            routing=routing,
            label_url=waybill.label_url,
        )

        source = waybill.label_data or waybill.label_url
        if not source:
            result.label_error = "Carrier returned no label"
            return result

        try:
            result.artifact = await self.converter.to_artifact(source, source_url=waybill.label_url)
        except LabelArtifactError as e:
            logger.error(f"Label conversion failed for shipment {shipment.id}: {e.message}")
            result.label_error = e.message
        return result

    async def _write(self, shipment_id: int, fields: Dict[str, Any]) -> None:
        if self.store is not None:
            await self.store.update_shipment(shipment_id, fields)

    async def purchase(self, shipment: Shipment, routing: Optional[RoutingDecision] = None) -> PurchaseResult:
        """
        Purchase one label.

        Args:
            shipment: Shipment to buy a label for
            routing: Pre-resolved routing; resolved from the shipment if omitted

        Returns:
            PurchaseResult with tracking number and artifact

        Raises:
            ServiceUnsupportedForDestination: no route for this service/country
            LabelCreationFailed: carrier rejected the request
            LabelStatusUnknown: request sent, outcome unknown
        """
        try:
            routing = routing or self.router.resolve_for_shipment(shipment)
            result = await self._buy(shipment, routing)
        except asyncio.CancelledError:
            logger.error(f"Label purchase for shipment {shipment.id} cancelled in flight; status unknown")
            await self._write(shipment.id, {
                "status": ShipmentStatus.LABEL_UNKNOWN,
                "label_error": "Cancelled after request was sent; reconcile with carrier",
            })
            raise
        except LabelStatusUnknown as e:
            await self._write(shipment.id, {"status": ShipmentStatus.LABEL_UNKNOWN, "label_error": e.message})
            raise
        except (ServiceUnsupportedForDestination, LabelCreationFailed) as e:
            await self._write(shipment.id, {"status": ShipmentStatus.LABEL_FAILED, "label_error": e.message})
            raise

        await self._write(shipment.id, result.result_fields())
        return result

    async def purchase_by_id(self, shipment_id: int) -> PurchaseResult:
        if self.store is None:
            raise RuntimeError("purchase_by_id requires a ShipmentStore")
        shipment = await self.store.get_shipment(shipment_id)
        if shipment is None:
            raise LabelCreationFailed(None, f"Shipment {shipment_id} not found")
        return await self.purchase(shipment)

    async def _run_attempt(self, attempt: _Attempt, semaphore: asyncio.Semaphore) -> None:
        shipment = attempt.shipment
        async with semaphore:
            try:
                routing = self.router.resolve_for_shipment(shipment)
                attempt.sent = True
                attempt.result = await self._buy(shipment, routing)
            except (ServiceUnsupportedForDestination, LabelCreationFailed) as e:
                attempt.error = e
            except Exception as e:
                logger.exception(f"Unexpected error purchasing label for shipment {shipment.id}")
                attempt.error = e

    def _outcome_fields(self, attempt: _Attempt, cancelled: bool) -> Dict[str, Any]:
        if attempt.result is not None:
            return attempt.result.result_fields()
        if cancelled and attempt.sent:
            return {
                "status": ShipmentStatus.LABEL_UNKNOWN,
                "label_error": "Cancelled after request was sent; reconcile with carrier",
            }
        if cancelled:
            return {}
        error = attempt.error
        if isinstance(error, LabelStatusUnknown) or (
            attempt.sent and not isinstance(error, (LabelCreationFailed, ServiceUnsupportedForDestination))
        ):
            return {"status": ShipmentStatus.LABEL_UNKNOWN, "label_error": _message(error)}
        return {"status": ShipmentStatus.LABEL_FAILED, "label_error": _message(error)}

    async def purchase_many(self, shipments: Sequence[Shipment]) -> BatchPurchaseResult:
        """
        Purchase labels for many shipments; failures stay per-shipment.

        Returns:
            BatchPurchaseResult with success/failed/unknown id lists
        """
        semaphore = asyncio.Semaphore(self.config.LABEL_PURCHASE_CONCURRENCY)
        attempts = [_Attempt(shipment=s) for s in shipments]
        tasks = [asyncio.create_task(self._run_attempt(a, semaphore)) for a in attempts]

        cancelled = False
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            cancelled = True
            for task in tasks:
                task.cancel()

        batch = BatchPurchaseResult()
        for attempt, task in zip(attempts, tasks):
            shipment_id = attempt.shipment.id
            task_cancelled = cancelled and attempt.result is None and attempt.error is None
            fields = self._outcome_fields(attempt, task_cancelled)

            if attempt.result is not None:
                batch.success_ids.append(shipment_id)
                batch.tracking_numbers[shipment_id] = attempt.result.tracking_number
                if attempt.result.label_url:
                    batch.label_urls[shipment_id] = attempt.result.label_url
                if attempt.result.label_error:
                    batch.errors[shipment_id] = attempt.result.label_error
            elif fields.get("status") == ShipmentStatus.LABEL_UNKNOWN:
                batch.unknown_ids.append(shipment_id)
                batch.errors[shipment_id] = fields["label_error"]
            else:
                batch.failed_ids.append(shipment_id)
                batch.errors[shipment_id] = fields.get("label_error") or "Cancelled before request was sent"

            if fields:
                await self._write(shipment_id, fields)

        logger.info(
            f"Batch label purchase: {len(batch.success_ids)} ok, {len(batch.failed_ids)} failed, "
            f"{len(batch.unknown_ids)} unknown"
        )
        if cancelled:
            raise asyncio.CancelledError()
        return batch

    @staticmethod
    def outcome(result: BatchPurchaseResult, shipment_id: int) -> PurchaseOutcome:
        """Single-shipment view of a batch result."""
        success = shipment_id in result.success_ids
        return PurchaseOutcome(
            shipment_id=shipment_id,
            success=success,
            tracking_number=result.tracking_numbers.get(shipment_id),
            label_url=result.label_urls.get(shipment_id),
            error_code=None if success else (
                "LABEL_STATUS_UNKNOWN" if shipment_id in result.unknown_ids else "LABEL_CREATION_FAILED"
            ),
            error=result.errors.get(shipment_id),
        )


def _message(error: Optional[Exception]) -> str:
    if error is None:
        return "Unknown error"
    return getattr(error, "message", None) or str(error) or error.__class__.__name__
