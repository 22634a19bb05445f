"""
Shared fixtures: in-memory store plus fake media and peer adapters.

FakePeerConnection enforces the transport rules the controller relies on:
candidates are rejected before a remote description is set, and setting a
remote description delivers the other peer's tracks.
"""
import inspect
from typing import Any, Dict, List, Optional

import pytest

from call_signaling.config import SignalingConfig
from call_signaling.errors import DeviceUnavailableError
from call_signaling.media import LocalMediaStream, MediaConstraints
from call_signaling.session import IceCandidate, SessionDescription
from call_signaling.store import InMemoryDocumentStore
from observability.event_store import event_store


class FakeTrack:
    def __init__(self, kind: str):
        self.kind = kind
        self.enabled = True
        self.stop_count = 0

    def stop(self) -> None:
        self.stop_count += 1


class FakeCapture:
    """MediaCapture with scripted device availability."""

    def __init__(self, camera: bool = True, microphone: bool = True):
        self.camera = camera
        self.microphone = microphone
        self.requests: List[MediaConstraints] = []
        self.streams: List[LocalMediaStream] = []

    async def get_user_media(self, constraints: MediaConstraints) -> LocalMediaStream:
        self.requests.append(constraints)
        if constraints.video and not self.camera:
            raise DeviceUnavailableError("NotAllowedError: camera permission denied")
        if constraints.audio and not self.microphone:
            raise DeviceUnavailableError("NotFoundError: no microphone")
        tracks = [FakeTrack("audio")]
        if constraints.video:
            tracks.append(FakeTrack("video"))
        stream = LocalMediaStream(tracks=tracks)
        self.streams.append(stream)
        return stream


class FakeSink:
    def __init__(self):
        self.attached: List[Any] = []
        self.detach_count = 0

    async def attach(self, source: Any) -> None:
        self.attached.append(source)

    async def detach(self) -> None:
        self.detach_count += 1


class BrokenSink(FakeSink):
    """Sink whose renderer is already gone when the call tears down."""

    async def detach(self) -> None:
        await super().detach()
        raise RuntimeError("renderer already destroyed")


async def _fire(handler, *args):
    if handler is None:
        return
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class FakePeerConnection:
    def __init__(self, network: "FakeNetwork", ice, name: str):
        self.network = network
        self.ice = ice
        self.name = name
        self.tracks: List[Any] = []
        self.local_description: Optional[SessionDescription] = None
        self._remote_description: Optional[SessionDescription] = None
        self.applied_candidates: List[IceCandidate] = []
        self.calls: List[tuple] = []
        self.close_count = 0
        self._closed = False
        self._track_handler = None
        self._candidate_handler = None
        self._state_handler = None

    @property
    def remote_description(self) -> Optional[SessionDescription]:
        return self._remote_description

    @property
    def closed(self) -> bool:
        return self._closed

    def add_track(self, track: Any) -> None:
        self.tracks.append(track)

    def on_track(self, handler) -> None:
        self._track_handler = handler

    def on_ice_candidate(self, handler) -> None:
        self._candidate_handler = handler

    def on_connection_state_change(self, handler) -> None:
        self._state_handler = handler

    async def create_offer(self) -> SessionDescription:
        self._maybe_fail("create_offer")
        return SessionDescription(type="offer", sdp=f"v=0\r\no=- {self.name} offer\r\n")

    async def create_answer(self) -> SessionDescription:
        self._maybe_fail("create_answer")
        if self._remote_description is None:
            raise RuntimeError("create_answer called without a remote offer")
        return SessionDescription(type="answer", sdp=f"v=0\r\no=- {self.name} answer\r\n")

    async def set_local_description(self, description: SessionDescription) -> None:
        self._maybe_fail("set_local_description")
        self.calls.append(("set_local", description.type))
        self.local_description = description
        await self.emit_candidates(self.network.candidate_counts.get(self.name, self.network.candidates_per_peer))
        await self._maybe_connected()

    async def emit_candidates(self, count: int, start: int = 0) -> None:
        """Gather `count` host candidates, numbered from `start`."""
        for i in range(start, start + count):
            await _fire(self._candidate_handler, IceCandidate(
                candidate=f"candidate:{self.name}-{i} 1 udp 2122260223 10.0.0.1 {50000 + i} typ host",
                sdp_mid="0",
                sdp_mline_index=0,
            ))

    async def set_remote_description(self, description: SessionDescription) -> None:
        self._maybe_fail("set_remote_description")
        self.calls.append(("set_remote", description.type))
        self._remote_description = description
        remote = self.network.peer_for_sdp(description.sdp)
        if remote is not None:
            for track in remote.tracks:
                await _fire(self._track_handler, track)
        await self._maybe_connected()

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        if self._closed:
            raise RuntimeError("peer connection is closed")
        if self._remote_description is None:
            raise RuntimeError("remote description not set")
        self.calls.append(("candidate", candidate.candidate))
        self.applied_candidates.append(candidate)

    async def close(self) -> None:
        self.close_count += 1
        self._closed = True

    @property
    def applied_names(self) -> List[str]:
        return [c.candidate.split()[0] for c in self.applied_candidates]

    def _maybe_fail(self, operation: str) -> None:
        error = self.network.fail_on.get(operation)
        if error is not None:
            raise error

    async def _maybe_connected(self) -> None:
        if self.local_description is not None and self._remote_description is not None:
            await _fire(self._state_handler, "connected")


class FakeNetwork:
    """Peer factory that lets peers find each other by SDP."""

    def __init__(self):
        self.peers: List[FakePeerConnection] = []
        self.fail_on: Dict[str, Exception] = {}
        self.candidates_per_peer = 2
        self.candidate_counts: Dict[str, int] = {}

    def factory(self, ice) -> FakePeerConnection:
        peer = FakePeerConnection(self, ice, f"peer{len(self.peers) + 1}")
        self.peers.append(peer)
        return peer

    def peer_for_sdp(self, sdp: str) -> Optional[FakePeerConnection]:
        for peer in self.peers:
            if peer.local_description is not None and peer.local_description.sdp == sdp:
                return peer
        return None


@pytest.fixture(autouse=True)
def clear_event_store():
    event_store.clear()
    yield
    event_store.clear()


@pytest.fixture
def config():
    return SignalingConfig()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def settle():
    """Let controllers process everything they have been sent, including follow-ups."""
    async def _settle(*controllers, rounds: int = 3):
        for _ in range(rounds):
            for controller in controllers:
                await controller.settle()
    return _settle
