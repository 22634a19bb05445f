"""
Local (per participant) call state.

One phase value plus an immutable media capability record replaces the
loose set of booleans a call screen would otherwise juggle.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .media import MediaCapabilities
from .session import CallRole


class CallPhase(str, Enum):
    """Local call phases. ENDED and FAILED are terminal."""
    INCOMING = "incoming"
    ACTIVE = "active"
    ENDED = "ended"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CallPhase.ENDED, CallPhase.FAILED)


class EndReason(str, Enum):
    HANGUP = "hangup"
    DECLINED = "declined"
    REMOTE_ENDED = "remote_ended"
    CLOSED = "closed"


class CallStatusText:
    """Status line shown on the call screen."""
    INITIALIZING = "Initializing..."
    CONNECTING_DEVICES = "Connecting Devices..."
    CALLING = "Calling..."
    CONNECTING = "Connecting..."
    CONNECTED = "Connected"
    FAILED = "Call Failed"
    ENDED = "Call Ended"


@dataclass
class LocalCallState:
    """Per-participant view of one call attempt. Never persisted."""

    phase: CallPhase
    status_text: str = CallStatusText.INITIALIZING
    media: MediaCapabilities = field(default_factory=MediaCapabilities)
    mic_enabled: bool = True
    # User intent; only takes effect with a camera (see video_active)
    video_enabled: bool = False
    caller_name: Optional[str] = None
    error: Optional[str] = None
    error_category: Optional[str] = None
    end_reason: Optional[EndReason] = None

    @classmethod
    def initial(cls, role: CallRole, video_call: bool) -> "LocalCallState":
        phase = CallPhase.INCOMING if role is CallRole.RECEIVER else CallPhase.ACTIVE
        return cls(phase=phase, video_enabled=video_call)

    @property
    def listener_only(self) -> bool:
        return self.media.listener_only

    @property
    def has_camera(self) -> bool:
        return self.media.has_camera

    @property
    def video_active(self) -> bool:
        return self.video_enabled and self.media.has_camera and not self.media.listener_only

    @property
    def controls_enabled(self) -> bool:
        return self.phase is CallPhase.ACTIVE and not self.media.listener_only

    def apply_media(self, media: MediaCapabilities) -> None:
        """Record the ladder outcome. Without a camera video is forced off."""
        self.media = media
        if not media.has_camera:
            self.video_enabled = False
        if media.listener_only:
            self.mic_enabled = False

    def fail(self, message: str, category: str) -> None:
        self.phase = CallPhase.FAILED
        self.status_text = CallStatusText.FAILED
        self.error = message
        self.error_category = category

    def end(self, reason: EndReason) -> None:
        self.phase = CallPhase.ENDED
        self.status_text = CallStatusText.ENDED
        self.end_reason = reason
