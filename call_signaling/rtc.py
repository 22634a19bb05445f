"""
aiortc adapters for the controller's media and transport interfaces.

- AiortcPeerConnection: PeerConnection over aiortc.RTCPeerConnection
- AiortcMediaCapture: MediaCapture over local ffmpeg devices (MediaPlayer)
- ToggleableTrack: outgoing track whose transmission can be paused in place
- RecorderSink: MediaSink that records (or discards) attached tracks

aiortc does not trickle ICE: candidates are gathered during
setLocalDescription and written into the SDP. They are announced to the
candidate handler from there, so the remote side sees the same
candidate-by-candidate contract as with a browser peer.
"""
from __future__ import annotations

import asyncio
import inspect
from pathlib import Path
from typing import Any, Callable, List, Optional, Set, Tuple

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder, MediaRelay
from aiortc.rtcicetransport import RTCIceCandidate
from aiortc.sdp import candidate_from_sdp
from av import AudioFrame, VideoFrame
from av.error import FFmpegError

from logging_setup import get_logger, Component

from .config import SignalingConfig, get_config
from .errors import DeviceUnavailableError
from .media import LocalMediaStream, MediaConstraints
from .peer import CandidateHandler, IceConfiguration, StateHandler, TrackHandler
from .session import IceCandidate, SessionDescription


logger = get_logger(Component.PEER_CONNECTION)
media_logger = get_logger(Component.MEDIA)


def parse_sdp_candidates(sdp: str) -> List[IceCandidate]:
    """
    Extract `a=candidate:` lines from an SDP, keyed by m-line index and mid.
    """
    sections: List[dict] = []
    session_ufrag: Optional[str] = None

    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            sections.append({"mid": None, "ufrag": None, "candidates": []})
        elif line.startswith("a=ice-ufrag:"):
            if sections:
                sections[-1]["ufrag"] = line[len("a=ice-ufrag:"):]
            else:
                session_ufrag = line[len("a=ice-ufrag:"):]
        elif not sections:
            continue
        elif line.startswith("a=mid:"):
            sections[-1]["mid"] = line[len("a=mid:"):]
        elif line.startswith("a=candidate:"):
            sections[-1]["candidates"].append(line[len("a="):])

    candidates = []
    for index, section in enumerate(sections):
        for candidate in section["candidates"]:
            candidates.append(IceCandidate(
                candidate=candidate,
                sdp_mid=section["mid"],
                sdp_mline_index=index,
                username_fragment=section["ufrag"] or session_ufrag,
            ))
    return candidates


def to_rtc_candidate(candidate: IceCandidate) -> Optional[RTCIceCandidate]:
    """
    Convert a stored descriptor to aiortc's candidate type.
    An empty candidate string (end-of-candidates) returns None.
    """
    candidate_str = candidate.candidate
    if not candidate_str:
        return None
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[len("candidate:"):]

    rtc_candidate = candidate_from_sdp(candidate_str)
    rtc_candidate.sdpMid = candidate.sdp_mid
    rtc_candidate.sdpMLineIndex = candidate.sdp_mline_index
    return rtc_candidate


class AiortcPeerConnection:
    """PeerConnection backed by aiortc."""

    def __init__(self, ice: IceConfiguration):
        ice_servers = [
            RTCIceServer(urls=server.urls, username=server.username, credential=server.credential)
            for server in ice.ice_servers
        ]
        self._pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers))
        self._track_handler: Optional[TrackHandler] = None
        self._candidate_handler: Optional[CandidateHandler] = None
        self._state_handler: Optional[StateHandler] = None
        self._announced: Set[Tuple[Optional[int], str]] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

        # aiortc gathers all candidates up front; the pool size hint has no equivalent
        logger.debug(
            "RTCPeerConnection created",
            ice_servers=len(ice_servers),
            candidate_pool_size=ice.candidate_pool_size,
        )

        @self._pc.on("track")
        def on_track(track: MediaStreamTrack):
            logger.info("Remote track received", kind=track.kind)
            if self._track_handler is not None:
                self._dispatch(self._track_handler, track)

        @self._pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info("Connection state", state=self._pc.connectionState)
            if self._state_handler is not None:
                self._dispatch(self._state_handler, self._pc.connectionState)

    @property
    def remote_description(self) -> Optional[SessionDescription]:
        desc = self._pc.remoteDescription
        if desc is None:
            return None
        return SessionDescription(type=desc.type, sdp=desc.sdp)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_track(self, track: Any) -> None:
        self._pc.addTrack(track)

    def on_track(self, handler: TrackHandler) -> None:
        self._track_handler = handler

    def on_ice_candidate(self, handler: CandidateHandler) -> None:
        self._candidate_handler = handler

    def on_connection_state_change(self, handler: StateHandler) -> None:
        self._state_handler = handler

    async def create_offer(self) -> SessionDescription:
        desc = await self._pc.createOffer()
        return SessionDescription(type=desc.type, sdp=desc.sdp)

    async def create_answer(self) -> SessionDescription:
        desc = await self._pc.createAnswer()
        return SessionDescription(type=desc.type, sdp=desc.sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        await self._pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))
        await self._announce_local_candidates()

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        rtc_candidate = to_rtc_candidate(candidate)
        if rtc_candidate is None:
            return
        await self._pc.addIceCandidate(rtc_candidate)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        await self._pc.close()
        logger.debug("RTCPeerConnection closed")

    async def _announce_local_candidates(self) -> None:
        if self._candidate_handler is None or self._pc.localDescription is None:
            return
        for candidate in parse_sdp_candidates(self._pc.localDescription.sdp):
            key = (candidate.sdp_mline_index, candidate.candidate)
            if key in self._announced:
                continue
            self._announced.add(key)
            result = self._candidate_handler(candidate)
            if inspect.isawaitable(result):
                await result

    def _dispatch(self, handler: Callable[..., Any], *args: Any) -> None:
        result = handler(*args)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)


class ToggleableTrack(MediaStreamTrack):
    """
    Relays a device track; while disabled, sends silence or black frames
    instead so the sender stays negotiated.

    The device is read through a MediaRelay so a preview can consume the
    same device (`fork()`) without stealing frames from the sender.
    """

    def __init__(self, device: MediaStreamTrack, relay: Optional[MediaRelay] = None):
        super().__init__()
        self.kind = device.kind
        self.device = device
        self.relay = relay or MediaRelay()
        self.source = self.relay.subscribe(device)
        self.enabled = True

    def fork(self) -> MediaStreamTrack:
        """Independent copy of the device frames, unaffected by `enabled`."""
        return self.relay.subscribe(self.device)

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame
        if self.kind == "audio":
            return _silence_like(frame)
        return _black_like(frame)

    def stop(self) -> None:
        super().stop()
        self.source.stop()
        self.device.stop()


def _silence_like(frame: AudioFrame) -> AudioFrame:
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.pts = frame.pts
    silent.sample_rate = frame.sample_rate
    silent.time_base = frame.time_base
    return silent


def _black_like(frame: VideoFrame) -> VideoFrame:
    black = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
    luma, *chroma = black.planes
    luma.update(b"\x10" * luma.buffer_size)
    for plane in chroma:
        plane.update(b"\x80" * plane.buffer_size)
    black.pts = frame.pts
    black.time_base = frame.time_base
    return black


class AiortcMediaCapture:
    """MediaCapture that opens local devices through ffmpeg."""

    def __init__(self, config: Optional[SignalingConfig] = None):
        self.config = config or get_config()

    async def get_user_media(self, constraints: MediaConstraints) -> LocalMediaStream:
        tracks: List[ToggleableTrack] = []
        try:
            if constraints.audio:
                tracks.append(self._open(
                    "audio", self.config.audio_device, self.config.audio_format, {}
                ))
            if constraints.video:
                tracks.append(self._open(
                    "video", self.config.video_device, self.config.video_format, self.config.media_options
                ))
        except DeviceUnavailableError:
            for track in tracks:
                track.stop()
            raise

        media_logger.info("Local media opened", kinds=[t.kind for t in tracks])
        return LocalMediaStream(tracks=tracks)

    def _open(self, kind: str, device: str, device_format: Optional[str], options: dict) -> ToggleableTrack:
        try:
            player = MediaPlayer(device, format=device_format, options=options)
        except (OSError, FFmpegError) as e:
            raise DeviceUnavailableError(f"cannot open {kind} device {device}: {e}") from e

        source = player.audio if kind == "audio" else player.video
        if source is None:
            raise DeviceUnavailableError(f"{kind} device {device} has no {kind} stream")
        return ToggleableTrack(source)


class RecorderSink:
    """
    MediaSink that records each attached track to its own file, or discards
    it when no target is configured. One recorder per track, so tracks can
    arrive at different times.
    """

    def __init__(self, target: Optional[str] = None):
        self.target = Path(target) if target else None
        self._recorders: List[Any] = []

    async def attach(self, source: Any) -> None:
        tracks = source.tracks if isinstance(source, LocalMediaStream) else [source]
        for track in tracks:
            if isinstance(track, ToggleableTrack):
                track = track.fork()
            if self.target is not None:
                path = self.target.with_name(f"{self.target.stem}-{track.kind}-{len(self._recorders)}{self.target.suffix}")
                recorder = MediaRecorder(str(path))
            else:
                recorder = MediaBlackhole()
            recorder.addTrack(track)
            await recorder.start()
            self._recorders.append(recorder)

    async def detach(self) -> None:
        recorders, self._recorders = self._recorders, []
        for recorder in recorders:
            await recorder.stop()
