"""
ParcelHub Exception Hierarchy

Structured exception classes for the quote / routing / label pipeline.
All exceptions include code, message, and details so failures can be
logged and recorded per shipment without leaking raw carrier text.

Exception Hierarchy:
    ParcelHubError
    ├── AdapterError
    │   ├── AdapterAuthError
    │   ├── AdapterTimeout
    │   ├── AdapterInvalidResponse
    │   └── DestinationNotServed
    ├── ServiceUnsupportedForDestination
    ├── MarginAlreadyApplied
    ├── LabelCreationFailed
    │   └── LabelStatusUnknown
    └── LabelArtifactError
        ├── ImageDecodeError
        └── ConversionError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class ParcelHubError(Exception):
    """
    Base exception for all ParcelHub errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "PARCELHUB_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# CARRIER ADAPTER ERRORS
# =============================================================================

class AdapterError(ParcelHubError):
    """Base exception for carrier adapter failures."""
    default_code = "ADAPTER_ERROR"
    default_severity = "P2"

    def __init__(self, message: str, carrier_code: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        details["carrier_code"] = carrier_code
        self.carrier_code = carrier_code
        super().__init__(message, details=details, **kwargs)


class AdapterAuthError(AdapterError):
    """Token exchange or credential rejection."""
    default_code = "AUTH_FAILED"
    default_severity = "P1"


class AdapterTimeout(AdapterError):
    """Carrier did not answer within the sub-timeout."""
    default_code = "TIMEOUT"


class AdapterInvalidResponse(AdapterError):
    """Malformed payload, unexpected status, or carrier-reported error."""
    default_code = "INVALID_RESPONSE"


class DestinationNotServed(AdapterError):
    """Carrier does not serve the requested destination."""
    default_code = "DESTINATION_NOT_SERVED"
    default_severity = "P3"


# =============================================================================
# ROUTING / PRICING ERRORS
# =============================================================================

class ServiceUnsupportedForDestination(ParcelHubError):
    """No mapping (and no fallback) exists for this service + country."""
    default_code = "SERVICE_UNSUPPORTED"

    def __init__(self, service: Optional[str], country: Optional[str], **kwargs):
        self.service = service
        self.country = country
        message = kwargs.pop("message", None) or (
            f"Service '{service}' is not available for destination '{country}'"
        )
        details = kwargs.pop("details", None) or {}
        details.update({"service": service, "country": country})
        super().__init__(message, details=details, **kwargs)


class MarginAlreadyApplied(ParcelHubError):
    """A customer-facing price was handed to a step that expects cost."""
    default_code = "MARGIN_ALREADY_APPLIED"
    default_severity = "P0"


# =============================================================================
# LABEL ERRORS
# =============================================================================

class LabelCreationFailed(ParcelHubError):
    """Carrier rejected or failed the waybill request."""
    default_code = "LABEL_CREATION_FAILED"
    default_severity = "P1"

    def __init__(self, carrier_code: Optional[str], message: str, **kwargs):
        self.carrier_code = carrier_code
        details = kwargs.pop("details", None) or {}
        details["carrier_code"] = carrier_code
        super().__init__(message, details=details, **kwargs)


class LabelStatusUnknown(LabelCreationFailed):
    """
    The request reached the carrier but no answer was received.

    The carrier may have created a real waybill; needs reconciliation,
    never an automatic retry.
    """
    default_code = "LABEL_STATUS_UNKNOWN"
    default_severity = "P0"


class LabelArtifactError(ParcelHubError):
    """Base exception for label artifact handling."""
    default_code = "LABEL_ARTIFACT_ERROR"


class ImageDecodeError(LabelArtifactError):
    """Source bytes are not a decodable image."""
    default_code = "IMAGE_DECODE_FAILED"


class ConversionError(LabelArtifactError):
    """Image decoded but the PDF could not be produced or fetched."""
    default_code = "CONVERSION_FAILED"
