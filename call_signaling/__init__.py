"""
Call signaling for doctor/patient consultations.

Peer-to-peer audio/video calls negotiated through a shared call document:
the caller writes an offer, the receiver answers, and both sides exchange
ICE candidates through two append-only sub-collections.

- The controller owns one call attempt per participant (controller.py)
- Device failures degrade the call (audio-only, listener-only), never end it
- Every lifecycle step is observable via structured events
"""
from .controller import CallSignalingController
from .coordinator import CallCoordinator
from .session import CallRole, CallSession, CallStatus, CallType
from .state import CallPhase, EndReason, LocalCallState
from .store import InMemoryDocumentStore

__all__ = [
    "CallSignalingController",
    "CallCoordinator",
    "CallRole",
    "CallSession",
    "CallStatus",
    "CallType",
    "CallPhase",
    "EndReason",
    "LocalCallState",
    "InMemoryDocumentStore",
]
