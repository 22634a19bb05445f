"""
Pending remote ICE candidates.

Remote candidates can arrive before the remote description is applied.
They are held here and applied in arrival order once it is. Until the first
drain completes every arrival is queued, including arrivals during the
drain itself, so a late candidate can never overtake an earlier one.
"""
from __future__ import annotations

import asyncio
from collections import deque
from typing import Awaitable, Callable, Deque

from logging_setup import get_logger, Component

from .session import IceCandidate


logger = get_logger(Component.PEER_CONNECTION)

ApplyCandidate = Callable[[IceCandidate], Awaitable[None]]


class PendingCandidateQueue:
    """Arrival-ordered buffer in front of `PeerConnection.add_ice_candidate`."""

    def __init__(self, apply: ApplyCandidate):
        self._apply = apply
        self._pending: Deque[IceCandidate] = deque()
        self._lock = asyncio.Lock()
        self._ready = False
        self.applied = 0
        self.failed = 0

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def ready(self) -> bool:
        """True once a drain has emptied the queue after the remote description was set."""
        return self._ready

    async def submit(self, candidate: IceCandidate) -> bool:
        """
        Apply now if ready, otherwise queue.
        Returns True if the candidate was queued.
        """
        if self._ready and not self._pending:
            await self._apply_one(candidate)
            return False
        self._pending.append(candidate)
        return True

    async def drain(self) -> int:
        """
        Apply every queued candidate once, in order, then mark ready.
        Safe to call repeatedly; returns the number applied by this call.
        """
        count = 0
        async with self._lock:
            while self._pending:
                candidate = self._pending.popleft()
                await self._apply_one(candidate)
                count += 1
            self._ready = True
        return count

    def clear(self) -> None:
        self._pending.clear()
        self._ready = False

    async def _apply_one(self, candidate: IceCandidate) -> None:
        try:
            await self._apply(candidate)
            self.applied += 1
        except Exception as e:
            # A single bad candidate must not abort the call
            self.failed += 1
            logger.warning(
                "Failed to apply remote candidate",
                error=str(e),
                error_type=type(e).__name__,
                sdp_mid=candidate.sdp_mid,
            )
