"""
Shipping Schemas

Pydantic models for the quote and label-purchase operations this core
exposes to its callers (the HTTP endpoints themselves live elsewhere).
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from parcelhub.models.carrier import CarrierCode
from parcelhub.modules.shipping.carriers.base import Dimensions


# ==================== Quote Schemas ====================


class QuoteRequest(BaseModel):
    """Price quote request for a single parcel."""
    length: float = Field(..., gt=0, description="cm")
    width: float = Field(..., gt=0, description="cm")
    height: float = Field(..., gt=0, description="cm")
    weight: float = Field(..., gt=0, description="kg")
    destination_country: str = Field(..., min_length=2, max_length=2)
    carriers: Optional[List[CarrierCode]] = None  # Restrict fan-out to these carriers

    @field_validator("destination_country")
    @classmethod
    def validate_country_code(cls, v):
        return v.upper()

    @property
    def dimensions(self) -> Dimensions:
        return Dimensions(length=self.length, width=self.width, height=self.height)


class PricingOptionResponse(BaseModel):
    """One option as shown to the customer."""
    provider_code: str
    carrier_code: str
    display_name: str
    service_kind: str
    customer_price: int
    original_total_price: int
    applied_multiplier: float
    currency: str = "USD"
    delivery_estimate: str
    service_type: Optional[str] = None


class QuoteResponse(BaseModel):
    """Aggregated quote. Raw carrier error text is never included."""
    options: List[PricingOptionResponse] = []
    failed_providers: List[str] = []
    best_option: Optional[str] = None

    @property
    def failed_count(self) -> int:
        return len(self.failed_providers)


# ==================== Label Purchase Schemas ====================


class PurchaseOutcome(BaseModel):
    """Label purchase result for one shipment."""
    shipment_id: int
    success: bool
    tracking_number: Optional[str] = None
    label_url: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


class BatchPurchaseResponse(BaseModel):
    """Batch label purchase summary; siblings never roll back each other."""
    success_ids: List[int] = []
    failed_ids: List[int] = []
    unknown_ids: List[int] = []
    errors: Dict[int, str] = {}
    tracking_numbers: Dict[int, str] = {}
    label_urls: Dict[int, str] = {}
