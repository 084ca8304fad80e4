"""
Carrier and service classification enums

CarrierCode identifies an integrated carrier adapter.
ServiceKind is the canonical category a raw carrier service string is
classified into; UNKNOWN is an explicit terminal case, never a silent default.
"""
import enum


class CarrierCode(str, enum.Enum):
    """Integrated carriers, in adapter registration order."""
    SHIPENTEGRA = "shipentegra"
    ARAMEX = "aramex"
    AFS = "afs"


class ServiceKind(str, enum.Enum):
    """Canonical service categories shown to customers."""
    ECO = "eco"
    UK_ECO = "uk_eco"
    UPS_EXPRESS = "ups_express"
    FEDEX = "fedex"
    WORLDWIDE_STANDARD = "worldwide_standard"
    GLS_EXPRESS = "gls_express"
    ARAMEX = "aramex"
    EXPRESS = "express"
    STANDARD = "standard"
    UNKNOWN = "unknown"


class LabelFormat(str, enum.Enum):
    PNG = "png"
    PDF = "pdf"
    GIF = "gif"
    JPEG = "jpeg"
