"""
Call session document model.

One call document per case, stored at `cases/{case_id}/calls/active_call`,
with two append-only candidate sub-collections. Field names here are the
wire contract shared with every other client of the store.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .errors import MalformedDescriptionError

# Document field names
FIELD_STATUS = "status"
FIELD_CALL_TYPE = "callType"
FIELD_CALLER_NAME = "callerName"
FIELD_OFFER = "offer"
FIELD_ANSWER = "answer"
FIELD_CREATED_AT = "createdAt"
FIELD_UPDATED_AT = "updatedAt"

OFFER_CANDIDATES = "offerCandidates"
ANSWER_CANDIDATES = "answerCandidates"


class CallStatus(str, Enum):
    """Call document status (monotonic, except ENDED which may be set any time)."""
    IDLE = "idle"
    CALLING = "calling"
    ACCEPTED = "accepted"
    CONNECTED = "connected"
    ENDED = "ended"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_advance_to(self, new_status: "CallStatus") -> bool:
        """ENDED is always reachable; otherwise status only moves forward."""
        if new_status is CallStatus.ENDED:
            return True
        if self is CallStatus.ENDED:
            return False
        return new_status.rank > self.rank

    @property
    def is_ringing_or_live(self) -> bool:
        return self in (CallStatus.CALLING, CallStatus.ACCEPTED, CallStatus.CONNECTED)


_STATUS_ORDER = [
    CallStatus.IDLE,
    CallStatus.CALLING,
    CallStatus.ACCEPTED,
    CallStatus.CONNECTED,
    CallStatus.ENDED,
]


class CallType(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class CallRole(str, Enum):
    CALLER = "caller"
    RECEIVER = "receiver"

    @property
    def local_candidates(self) -> str:
        """Sub-collection this role appends its own candidates to."""
        return OFFER_CANDIDATES if self is CallRole.CALLER else ANSWER_CANDIDATES

    @property
    def remote_candidates(self) -> str:
        """Sub-collection this role reads the other side's candidates from."""
        return ANSWER_CANDIDATES if self is CallRole.CALLER else OFFER_CANDIDATES


def call_document_path(case_id: str) -> str:
    return f"cases/{case_id}/calls/active_call"


def candidates_path(case_id: str, collection: str) -> str:
    return f"{call_document_path(case_id)}/{collection}"


@dataclass(frozen=True)
class SessionDescription:
    """An SDP offer or answer, stored as `{type, sdp}`."""

    type: str
    sdp: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "sdp": self.sdp}

    @classmethod
    def from_dict(cls, data: Any, expected_type: Optional[str] = None) -> "SessionDescription":
        """
        Parse a stored description.

        Raises MalformedDescriptionError if the value is not a mapping with
        string `type` and non-empty string `sdp`, or has the wrong type.
        """
        if not isinstance(data, dict):
            raise MalformedDescriptionError(f"session description must be a mapping, got {type(data).__name__}")
        desc_type = data.get("type")
        sdp = data.get("sdp")
        if not isinstance(desc_type, str) or not isinstance(sdp, str) or not sdp:
            raise MalformedDescriptionError("session description requires string 'type' and 'sdp'")
        if expected_type and desc_type != expected_type:
            raise MalformedDescriptionError(f"expected {expected_type} description, got {desc_type}")
        return cls(type=desc_type, sdp=sdp)


@dataclass(frozen=True)
class IceCandidate:
    """
    Opaque ICE candidate descriptor, in the browser `RTCIceCandidate.toJSON()` shape.
    """

    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None
    username_fragment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }
        if self.username_fragment is not None:
            data["usernameFragment"] = self.username_fragment
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IceCandidate":
        return cls(
            candidate=data.get("candidate", ""),
            sdp_mid=data.get("sdpMid"),
            sdp_mline_index=data.get("sdpMLineIndex"),
            username_fragment=data.get("usernameFragment"),
        )


@dataclass
class CallSession:
    """Parsed view of a call document."""

    status: CallStatus
    call_type: CallType
    caller_name: Optional[str] = None
    offer: Optional[Dict[str, Any]] = None
    answer: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]]) -> Optional["CallSession"]:
        """
        Build a session from a raw document. A missing document returns None.

        Unknown status values are read as ENDED so that a corrupt document
        never keeps a call alive; a missing callType defaults to video.
        """
        if data is None:
            return None
        try:
            status = CallStatus(data.get(FIELD_STATUS, CallStatus.IDLE.value))
        except ValueError:
            status = CallStatus.ENDED
        try:
            call_type = CallType(data.get(FIELD_CALL_TYPE, CallType.VIDEO.value))
        except ValueError:
            call_type = CallType.VIDEO
        return cls(
            status=status,
            call_type=call_type,
            caller_name=data.get(FIELD_CALLER_NAME),
            offer=data.get(FIELD_OFFER),
            answer=data.get(FIELD_ANSWER),
            created_at=data.get(FIELD_CREATED_AT),
            updated_at=data.get(FIELD_UPDATED_AT),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status is CallStatus.ENDED
