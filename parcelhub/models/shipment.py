"""
Shipment model (consumed, not owned)

Only the columns the quote / routing / label pipeline reads or writes back
are mapped here. The table itself is created and migrated by the
order-management system.
"""
from datetime import datetime, timezone
import enum

from sqlalchemy import Column, DateTime, Float, Integer, LargeBinary, String, Text, Enum as SQLEnum

from parcelhub.core.database import Base


class ShipmentStatus(str, enum.Enum):
    """Label lifecycle status"""
    PENDING = "pending"  # Created, not yet priced/approved
    APPROVED = "approved"  # Price accepted, ready for label purchase
    LABEL_PURCHASED = "label_purchased"
    LABEL_FAILED = "label_failed"  # Carrier rejected; safe to retry manually
    LABEL_UNKNOWN = "label_unknown"  # Request sent, no answer; reconcile before retry


class Shipment(Base):
    """A parcel awaiting (or holding) a carrier label."""
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(64), nullable=True)

    # Receiver
    receiver_name = Column(String(200), nullable=False)
    receiver_address = Column(Text, nullable=False)
    receiver_city = Column(String(100), nullable=False)
    receiver_state = Column(String(100), nullable=True)
    receiver_postal_code = Column(String(20), nullable=True)
    receiver_country = Column(String(2), nullable=False)
    receiver_phone = Column(String(40), nullable=True)
    receiver_email = Column(String(200), nullable=True)

    # Package (cm / kg)
    package_length = Column(Float, nullable=False)
    package_width = Column(Float, nullable=False)
    package_height = Column(Float, nullable=False)
    package_weight = Column(Float, nullable=False)
    package_contents = Column(String(255), nullable=True)
    piece_count = Column(Integer, default=1)

    # Service selection
    selected_service = Column(String(100), nullable=True)  # Customer-facing choice
    provider_service_code = Column(String(100), nullable=True)  # Carrier service code from quote

    # Customs
    gtip = Column(String(20), nullable=True)
    customs_value = Column(Float, nullable=True)
    customs_currency = Column(String(3), default="USD")
    ioss_number = Column(String(40), nullable=True)

    # Pricing (minor units)
    total_price = Column(Integer, nullable=True)  # Customer-facing
    original_total_price = Column(Integer, nullable=True)  # Carrier cost
    applied_multiplier = Column(Float, nullable=True)

    # Label results
    carrier_tracking_number = Column(String(100), nullable=True)
    carrier_label_url = Column(String(500), nullable=True)
    carrier_label_data = Column(LargeBinary, nullable=True)  # Converted PDF
    label_error = Column(Text, nullable=True)

    status = Column(SQLEnum(ShipmentStatus), default=ShipmentStatus.PENDING, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<Shipment {self.id} -> {self.receiver_country} ({self.status})>"
