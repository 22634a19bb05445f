"""
Call signaling errors.

Exception taxonomy for the controller and its adapters, plus the handler
that maps any failure to a stable category without crashing.
"""
from typing import Optional

from .events import call_emitter


class CallSignalingError(Exception):
    """Base class for errors raised by the call signaling package."""


class MediaCaptureError(CallSignalingError):
    """Local media could not be acquired with the requested constraints."""


class DeviceUnavailableError(MediaCaptureError):
    """Camera or microphone is absent or permission was denied."""


class SignalingError(CallSignalingError):
    """Offer/answer exchange failed. Terminal for the call attempt."""


class MissingOfferError(SignalingError):
    """Receiver found no offer on the call document."""


class MalformedDescriptionError(SignalingError):
    """A stored offer/answer is not a valid `{type, sdp}` pair."""


class NegotiationError(SignalingError):
    """Creating or applying a session description failed."""


class ControlUnavailableError(CallSignalingError):
    """A local control (mic/video toggle, accept) was used in the wrong state."""


class CallAlreadyActiveError(CallSignalingError):
    """A call is already active for this case."""


class DocumentNotFoundError(CallSignalingError):
    """Partial update targeted a document that does not exist."""


class CallErrorCategory:
    """Stable error categories."""

    MISSING_OFFER = "signaling.missing_offer"
    MALFORMED_DESCRIPTION = "signaling.malformed_description"
    NEGOTIATION_FAILED = "signaling.negotiation_failed"
    DEVICE_UNAVAILABLE = "media.device_unavailable"
    DOCUMENT_MISSING = "store.document_missing"
    UNKNOWN_ERROR = "call.unknown_error"


class CallErrorHandler:
    """Classifies call failures and reports them."""

    @staticmethod
    def classify_error(error: Exception) -> str:
        """
        Classify an exception into a stable category.
        Returns error category string.
        """
        if isinstance(error, MissingOfferError):
            return CallErrorCategory.MISSING_OFFER
        if isinstance(error, MalformedDescriptionError):
            return CallErrorCategory.MALFORMED_DESCRIPTION
        if isinstance(error, SignalingError):
            return CallErrorCategory.NEGOTIATION_FAILED
        if isinstance(error, MediaCaptureError):
            return CallErrorCategory.DEVICE_UNAVAILABLE
        if isinstance(error, DocumentNotFoundError):
            return CallErrorCategory.DOCUMENT_MISSING

        # Adapter errors are not ours; fall back to message patterns
        error_str = str(error).lower()
        if "sdp" in error_str or "description" in error_str or "signaling" in error_str:
            return CallErrorCategory.NEGOTIATION_FAILED
        if "permission" in error_str or "device" in error_str or "notallowed" in error_str:
            return CallErrorCategory.DEVICE_UNAVAILABLE

        return CallErrorCategory.UNKNOWN_ERROR

    @staticmethod
    def handle_error(
        case_id: str,
        error: Exception,
        role: str,
        correlation_id: Optional[str] = None,
    ) -> str:
        """
        Emit a call.error event and return the category.
        Never raises.
        """
        category = CallErrorHandler.classify_error(error)

        detail = str(error) or type(error).__name__
        if "secret" in detail.lower() or "password" in detail.lower() or "credential" in detail.lower():
            detail = "[redacted: potential secret]"

        call_emitter.call_error(
            case_id=case_id,
            category=category,
            role=role,
            detail=detail,
            error_class=type(error).__name__,
            correlation_id=correlation_id,
        )

        return category

    @staticmethod
    def get_user_message(category: str) -> str:
        """User-facing message for the error view."""
        messages = {
            CallErrorCategory.MISSING_OFFER: "Call Failed",
            CallErrorCategory.MALFORMED_DESCRIPTION: "Call Failed",
            CallErrorCategory.NEGOTIATION_FAILED: "Connection Error",
            CallErrorCategory.DEVICE_UNAVAILABLE: "Could not access camera or microphone",
            CallErrorCategory.DOCUMENT_MISSING: "The call is no longer available",
        }

        return messages.get(category, "Connection Error")
