from parcelhub.models.carrier import CarrierCode, ServiceKind, LabelFormat
from parcelhub.models.shipment import Shipment, ShipmentStatus
