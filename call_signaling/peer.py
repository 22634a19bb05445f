"""
Peer connection interface and ICE configuration.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Union

from .config import SignalingConfig
from .session import IceCandidate, SessionDescription


TrackHandler = Callable[[Any], Union[None, Awaitable[None]]]
CandidateHandler = Callable[[IceCandidate], Union[None, Awaitable[None]]]
StateHandler = Callable[[str], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class IceServer:
    urls: List[str]
    username: Optional[str] = None
    credential: Optional[str] = None


@dataclass(frozen=True)
class IceConfiguration:
    """ICE servers plus the candidate pool size hint."""

    ice_servers: List[IceServer] = field(default_factory=list)
    candidate_pool_size: int = 10

    @classmethod
    def from_config(cls, config: SignalingConfig) -> "IceConfiguration":
        servers = [IceServer(urls=list(config.stun_servers))]
        if config.has_turn_server:
            servers.append(IceServer(
                urls=[config.turn_server_url],
                username=config.turn_username,
                credential=config.turn_credential,
            ))
        return cls(ice_servers=servers, candidate_pool_size=config.ice_candidate_pool_size)


class PeerConnection(Protocol):
    """What the controller needs from a peer-to-peer transport."""

    @property
    def remote_description(self) -> Optional[SessionDescription]: ...

    @property
    def closed(self) -> bool: ...

    def add_track(self, track: Any) -> None: ...

    def on_track(self, handler: TrackHandler) -> None: ...

    def on_ice_candidate(self, handler: CandidateHandler) -> None: ...

    def on_connection_state_change(self, handler: StateHandler) -> None: ...

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> None: ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None: ...

    async def close(self) -> None: ...


PeerConnectionFactory = Callable[[IceConfiguration], PeerConnection]
