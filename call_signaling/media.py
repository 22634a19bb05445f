"""
Local media acquisition.

Defines the capture/sink interfaces the controller consumes and the
fallback ladder that turns device failures into reduced capabilities:

    video call:  {audio, video} -> {audio} -> listener only
    audio call:  {audio}        -> listener only

The ladder never raises for device failures. A participant with no working
devices still joins as a receive-only listener.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

from logging_setup import get_logger, Component

from .errors import MediaCaptureError
from .session import CallType


logger = get_logger(Component.MEDIA)

FALLBACK_AUDIO_ONLY = "audio_only"
FALLBACK_LISTENER_ONLY = "listener_only"


@dataclass(frozen=True)
class MediaConstraints:
    """Requested track shape. Must match exactly what the call will use."""

    audio: bool = True
    video: bool = False

    def to_dict(self) -> dict:
        return {"audio": self.audio, "video": self.video}


class LocalTrack(Protocol):
    kind: str
    enabled: bool

    def stop(self) -> None: ...


@dataclass
class LocalMediaStream:
    """Tracks returned by one capture request."""

    tracks: List[Any] = field(default_factory=list)

    def tracks_of(self, kind: str) -> List[Any]:
        return [t for t in self.tracks if t.kind == kind]

    @property
    def kinds(self) -> List[str]:
        return [t.kind for t in self.tracks]

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()


class MediaCapture(Protocol):
    async def get_user_media(self, constraints: MediaConstraints) -> LocalMediaStream: ...


class MediaSink(Protocol):
    """Where a stream is rendered: local preview or remote playback."""

    async def attach(self, source: Any) -> None: ...

    async def detach(self) -> None: ...


@dataclass(frozen=True)
class MediaCapabilities:
    """What the local participant can send. Immutable per negotiation."""

    has_camera: bool = False
    listener_only: bool = False

    def __post_init__(self):
        if self.listener_only and self.has_camera:
            raise ValueError("listener_only participant cannot have a camera")

    @property
    def can_send(self) -> bool:
        return not self.listener_only


@dataclass
class MediaAcquisition:
    """Outcome of the fallback ladder."""

    stream: Optional[LocalMediaStream]
    capabilities: MediaCapabilities
    requests: List[MediaConstraints] = field(default_factory=list)
    fallback: Optional[str] = None


async def acquire_local_media(
    capture: MediaCapture,
    call_type: CallType,
    case_id: Optional[str] = None,
) -> MediaAcquisition:
    """
    Run the fallback ladder for one negotiation.

    Only MediaCaptureError is treated as a device failure; any other
    exception from the capture adapter propagates to the caller.
    """
    log = logger.with_case(case_id) if case_id else logger
    wants_video = call_type is CallType.VIDEO
    requests: List[MediaConstraints] = []

    constraints = MediaConstraints(audio=True, video=wants_video)
    requests.append(constraints)
    log.debug("Requesting media", constraints=constraints.to_dict())
    try:
        stream = await capture.get_user_media(constraints)
        return MediaAcquisition(
            stream=stream,
            capabilities=MediaCapabilities(has_camera=wants_video),
            requests=requests,
        )
    except MediaCaptureError as e:
        log.warning("Media request failed", constraints=constraints.to_dict(), error=str(e))

    if not wants_video:
        # Nothing smaller than audio-only to fall back to
        log.warning("No microphone, joining as listener")
        return MediaAcquisition(
            stream=None,
            capabilities=MediaCapabilities(listener_only=True),
            requests=requests,
            fallback=FALLBACK_LISTENER_ONLY,
        )

    audio_only = MediaConstraints(audio=True, video=False)
    requests.append(audio_only)
    log.info("Camera unavailable, trying audio-only")
    try:
        stream = await capture.get_user_media(audio_only)
    except MediaCaptureError as e:
        log.warning("Audio fallback failed, joining as listener", error=str(e))
        return MediaAcquisition(
            stream=None,
            capabilities=MediaCapabilities(listener_only=True),
            requests=requests,
            fallback=FALLBACK_LISTENER_ONLY,
        )

    return MediaAcquisition(
        stream=stream,
        capabilities=MediaCapabilities(has_camera=False),
        requests=requests,
        fallback=FALLBACK_AUDIO_ONLY,
    )
