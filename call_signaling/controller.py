"""
Call signaling controller.

Drives one call attempt for either role, from ringing to teardown:

    receiver:  incoming --accept--> active --hangup/remote end--> ended
                  |
                  +--decline--> ended
    caller:    active --hangup/remote end--> ended

    any setup failure --> failed --close--> ended

Store subscriptions are an inbound channel: callbacks only enqueue, and a
single pump task handles messages in arrival order. Each entry into
`active` is one negotiation that owns its peer connection, local stream,
subscriptions and pending candidates; tearing it down releases all of them
exactly once.
"""
from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set

from logging_setup import get_logger, Component

from .candidates import PendingCandidateQueue
from .config import SignalingConfig, get_config
from .errors import CallErrorHandler, ControlUnavailableError, DocumentNotFoundError, MissingOfferError
from .events import call_emitter
from .media import LocalMediaStream, MediaCapture, MediaSink, acquire_local_media
from .peer import IceConfiguration, PeerConnection, PeerConnectionFactory
from .session import (
    FIELD_ANSWER,
    FIELD_CALL_TYPE,
    FIELD_CALLER_NAME,
    FIELD_CREATED_AT,
    FIELD_OFFER,
    FIELD_STATUS,
    FIELD_UPDATED_AT,
    CallRole,
    CallSession,
    CallStatus,
    CallType,
    IceCandidate,
    SessionDescription,
    call_document_path,
    candidates_path,
)
from .state import CallPhase, CallStatusText, EndReason, LocalCallState
from .store import SERVER_TIMESTAMP, DocumentStore, Unsubscribe


logger = get_logger(Component.CALL_SIGNALING)

StateListener = Callable[[LocalCallState], None]


class _Superseded(Exception):
    """The negotiation was torn down while one of its steps was pending."""


@dataclass
class _Message:
    kind: str  # "snapshot" | "candidate" | "stop"
    payload: Any = None
    generation: Optional[int] = None


@dataclass
class _Negotiation:
    """Resources owned by one entry into the active phase."""

    generation: int
    peer: Optional[PeerConnection] = None
    stream: Optional[LocalMediaStream] = None
    candidates: Optional[PendingCandidateQueue] = None
    subscriptions: List[Unsubscribe] = field(default_factory=list)
    answer_applied: bool = False
    started_at: float = field(default_factory=time.monotonic)
    offer_sent_at: Optional[float] = None
    torn_down: bool = False
    stream_released: bool = False

    def release_stream(self) -> None:
        if self.stream is not None and not self.stream_released:
            self.stream_released = True
            self.stream.stop()


class CallSignalingController:
    """
    One participant's side of one call.

    Usage (receiver):
        controller = CallSignalingController(case_id, CallRole.RECEIVER, CallType.VIDEO,
                                             store, capture, peer_factory)
        await controller.start()      # phase: incoming
        await controller.accept()     # phase: active, negotiation runs
        ...
        await controller.hangup()     # phase: ended
    """

    def __init__(
        self,
        case_id: str,
        role: CallRole | str,
        call_type: CallType | str,
        store: DocumentStore,
        media_capture: MediaCapture,
        peer_factory: PeerConnectionFactory,
        *,
        caller_name: Optional[str] = None,
        config: Optional[SignalingConfig] = None,
        local_sink: Optional[MediaSink] = None,
        remote_sink: Optional[MediaSink] = None,
        on_change: Optional[StateListener] = None,
    ):
        self.case_id = case_id
        self.role = CallRole(role)
        self.call_type = CallType(call_type)
        self.config = config or get_config()
        self.caller_name = caller_name or self.config.caller_name
        self.correlation_id = f"call_{uuid.uuid4().hex[:12]}"

        self._store = store
        self._media_capture = media_capture
        self._peer_factory = peer_factory
        self._local_sink = local_sink
        self._remote_sink = remote_sink
        self._on_change = on_change

        self.state = LocalCallState.initial(self.role, self.call_type is CallType.VIDEO)
        self.remote_tracks: List[Any] = []
        self.ended = asyncio.Event()

        self._doc_path = call_document_path(case_id)
        self._inbox: asyncio.Queue[_Message] = asyncio.Queue()
        self._pump_task: Optional[asyncio.Task] = None
        self._session_watch: Optional[Unsubscribe] = None
        self._negotiation: Optional[_Negotiation] = None
        self._generation = 0
        self._started = False
        self._finished = False
        self._listener_tasks: Set[asyncio.Task] = set()

        self.logger = logger.with_case(case_id)

    # --- public API ---

    @property
    def phase(self) -> CallPhase:
        return self.state.phase

    @property
    def peer(self) -> Optional[PeerConnection]:
        return self._negotiation.peer if self._negotiation else None

    @property
    def local_stream(self) -> Optional[LocalMediaStream]:
        return self._negotiation.stream if self._negotiation else None

    async def start(self) -> None:
        """Mount the call. The caller starts negotiating right away."""
        if self._started:
            return
        self._started = True
        self._pump_task = asyncio.create_task(self._pump())

        call_emitter.call_started(
            self.case_id,
            role=self.role.value,
            call_type=self.call_type.value,
            correlation_id=self.correlation_id,
        )
        self.logger.info("Call mounted", role=self.role.value, call_type=self.call_type.value)

        if self.role is CallRole.RECEIVER:
            # Watches for decline/hangup by the caller while ringing and during the call
            self._session_watch = await self._store.subscribe_document(
                self._doc_path, lambda data: self._post(_Message("snapshot", data))
            )
        else:
            await self._enter_active()

    async def accept(self) -> None:
        if self.state.phase is not CallPhase.INCOMING:
            raise ControlUnavailableError(f"cannot accept in phase {self.state.phase.value}")
        await self._enter_active()

    async def decline(self) -> None:
        if self.state.phase is not CallPhase.INCOMING:
            raise ControlUnavailableError(f"cannot decline in phase {self.state.phase.value}")
        await self._finish(EndReason.DECLINED, write_ended=True)

    async def hangup(self) -> None:
        """End the call for both sides. No-op once the call is over."""
        if self.state.phase.is_terminal:
            if self.state.phase is CallPhase.FAILED:
                await self.close()
            return
        await self._finish(EndReason.HANGUP, write_ended=True)

    async def close(self, write_ended: bool = True) -> None:
        """
        Dismiss the call screen, usually after a failure.
        With write_ended=False a failed call is released locally only.
        """
        if self.state.phase is CallPhase.FAILED:
            await self._finish(EndReason.CLOSED, write_ended=write_ended, force=True)
        elif not self.state.phase.is_terminal:
            await self.hangup()

    async def renegotiate(self) -> None:
        """Run negotiation again, replacing the current peer connection."""
        if self.state.phase is not CallPhase.ACTIVE:
            raise ControlUnavailableError(f"cannot renegotiate in phase {self.state.phase.value}")
        await self._enter_active()

    def toggle_mic(self) -> bool:
        """Mute/unmute outgoing audio without renegotiating. Returns the new state."""
        if not self.state.controls_enabled:
            raise ControlUnavailableError("microphone control is not available")
        self.state.mic_enabled = not self.state.mic_enabled
        self._sync_track_flags()
        self.logger.info("Microphone toggled", mic_enabled=self.state.mic_enabled)
        self._changed()
        return self.state.mic_enabled

    def toggle_video(self) -> bool:
        """Pause/resume outgoing video without renegotiating. Returns the new state."""
        if not self.state.controls_enabled:
            raise ControlUnavailableError("video control is not available")
        if self.call_type is not CallType.VIDEO or not self.state.has_camera:
            raise ControlUnavailableError("video control requires a video call with a camera")
        self.state.video_enabled = not self.state.video_enabled
        self._sync_track_flags()
        self.logger.info("Video toggled", video_enabled=self.state.video_enabled)
        self._changed()
        return self.state.video_enabled

    async def settle(self) -> None:
        """Wait until every inbound message received so far has been handled."""
        await self._inbox.join()

    async def wait_ended(self) -> None:
        await self.ended.wait()

    # --- negotiation ---

    async def _enter_active(self) -> None:
        previous = self._negotiation
        if previous is not None:
            await self._teardown_negotiation(previous)

        self._generation += 1
        negotiation = _Negotiation(generation=self._generation)
        self._negotiation = negotiation
        self._set_phase(CallPhase.ACTIVE)

        try:
            await self._negotiate(negotiation)
        except _Superseded:
            self.logger.debug("Negotiation superseded", generation=negotiation.generation)
        except Exception as e:
            await self._fail(e)

    async def _negotiate(self, neg: _Negotiation) -> None:
        neg.peer = self._peer_factory(IceConfiguration.from_config(self.config))
        peer = neg.peer
        neg.candidates = PendingCandidateQueue(peer.add_ice_candidate)

        # 1. Local media
        if not self.state.listener_only:
            self._set_status(CallStatusText.CONNECTING_DEVICES)
            acquisition = await acquire_local_media(self._media_capture, self.call_type, self.case_id)
            neg.stream = acquisition.stream
            self._check_live(neg)
            self.state.apply_media(acquisition.capabilities)
            call_emitter.media_acquired(
                self.case_id,
                has_camera=self.state.has_camera,
                listener_only=self.state.listener_only,
                track_kinds=neg.stream.kinds if neg.stream else [],
                fallback=acquisition.fallback,
                correlation_id=self.correlation_id,
            )
            self._changed()

        if neg.stream is not None:
            self._sync_track_flags()
            for track in neg.stream.tracks:
                peer.add_track(track)
            if self.call_type is CallType.VIDEO and self.state.has_camera and self._local_sink is not None:
                await self._local_sink.attach(neg.stream)
                self._check_live(neg)

        # 2. Remote media, wired before any description is set
        peer.on_track(self._on_remote_track)
        peer.on_connection_state_change(self._on_connection_state)

        # 3. Signaling
        peer.on_ice_candidate(self._local_candidate_writer(neg))
        if self.role is CallRole.CALLER:
            await self._signal_as_caller(neg)
        else:
            await self._signal_as_receiver(neg)

    async def _signal_as_caller(self, neg: _Negotiation) -> None:
        peer = neg.peer
        self._set_status(CallStatusText.CALLING)

        offer = await peer.create_offer()
        self._check_live(neg)
        await peer.set_local_description(offer)
        self._check_live(neg)

        await self._store.set_document(self._doc_path, {
            FIELD_OFFER: offer.to_dict(),
            FIELD_STATUS: CallStatus.CALLING.value,
            FIELD_CALL_TYPE: self.call_type.value,
            FIELD_CALLER_NAME: self.caller_name,
            FIELD_CREATED_AT: SERVER_TIMESTAMP,
        })
        neg.offer_sent_at = time.monotonic()
        call_emitter.signaling("call.offer_sent", self.case_id, correlation_id=self.correlation_id)
        self._check_live(neg)

        generation = neg.generation
        neg.subscriptions.append(await self._store.subscribe_document(
            self._doc_path,
            lambda data: self._post(_Message("snapshot", data, generation)),
        ))
        self._check_live(neg)
        neg.subscriptions.append(await self._store.subscribe_collection(
            candidates_path(self.case_id, self.role.remote_candidates),
            lambda _entry_id, data: self._post(_Message("candidate", data, generation)),
        ))

    async def _signal_as_receiver(self, neg: _Negotiation) -> None:
        peer = neg.peer
        self._set_status(CallStatusText.CONNECTING)

        session = CallSession.from_document(await self._store.get_document(self._doc_path))
        self._check_live(neg)
        if session is None or not session.offer:
            raise MissingOfferError(f"no offer found for case {self.case_id}")

        offer = SessionDescription.from_dict(session.offer, expected_type="offer")
        await peer.set_remote_description(offer)
        self._check_live(neg)
        await self._drain(neg)

        answer = await peer.create_answer()
        self._check_live(neg)
        await peer.set_local_description(answer)
        self._check_live(neg)

        await self._store.update_document(self._doc_path, {
            FIELD_ANSWER: answer.to_dict(),
            FIELD_STATUS: CallStatus.ACCEPTED.value,
            FIELD_UPDATED_AT: SERVER_TIMESTAMP,
        })
        call_emitter.signaling(
            "call.answer_sent", self.case_id, correlation_id=self.correlation_id,
            latency_ms=_elapsed_ms(neg.started_at),
        )
        self._set_status(CallStatusText.CONNECTED)
        self._check_live(neg)

        generation = neg.generation
        neg.subscriptions.append(await self._store.subscribe_collection(
            candidates_path(self.case_id, self.role.remote_candidates),
            lambda _entry_id, data: self._post(_Message("candidate", data, generation)),
        ))

    async def _apply_answer(self, neg: _Negotiation, answer_data: Any) -> None:
        if neg.answer_applied or neg.peer.remote_description is not None:
            return
        neg.answer_applied = True

        answer = SessionDescription.from_dict(answer_data, expected_type="answer")
        await neg.peer.set_remote_description(answer)
        self._check_live(neg)
        latency_ms = _elapsed_ms(neg.offer_sent_at or neg.started_at)
        call_emitter.signaling(
            "call.answer_received", self.case_id, correlation_id=self.correlation_id,
            latency_ms=latency_ms,
        )
        self.logger.info("Answer applied", latency_ms=latency_ms)
        self._set_status(CallStatusText.CONNECTED)
        await self._drain(neg)
        self._check_live(neg)
        await self._advance_status(CallStatus.CONNECTED)

    async def _drain(self, neg: _Negotiation) -> None:
        count = await neg.candidates.drain()
        call_emitter.candidates(
            "call.candidates_drained", self.case_id, count=count, correlation_id=self.correlation_id
        )

    async def _advance_status(self, new_status: CallStatus) -> None:
        """Partial status update that never moves the document backwards."""
        current = CallSession.from_document(await self._store.get_document(self._doc_path))
        if current is None or not current.status.can_advance_to(new_status):
            return
        try:
            await self._store.update_document(self._doc_path, {
                FIELD_STATUS: new_status.value,
                FIELD_UPDATED_AT: SERVER_TIMESTAMP,
            })
        except DocumentNotFoundError:
            self.logger.warning("Call document vanished before status update", status=new_status.value)

    # --- inbound channel ---

    def _post(self, message: _Message) -> None:
        self._inbox.put_nowait(message)

    async def _pump(self) -> None:
        while True:
            message = await self._inbox.get()
            try:
                if message.kind == "stop":
                    return
                if not self._finished:
                    await self._handle(message)
            except _Superseded:
                pass
            except Exception as e:
                await self._fail(e)
            finally:
                self._inbox.task_done()

    async def _handle(self, message: _Message) -> None:
        neg = self._negotiation
        if message.generation is not None and (neg is None or message.generation != neg.generation):
            # Left over from a negotiation that has been torn down
            return

        if message.kind == "snapshot":
            await self._on_snapshot(message.payload, neg)
        elif message.kind == "candidate":
            await self._on_remote_candidate(message.payload, neg)

    async def _on_snapshot(self, data: Optional[dict], neg: Optional[_Negotiation]) -> None:
        session = CallSession.from_document(data)
        if session is None or session.is_terminal:
            if self.state.phase in (CallPhase.INCOMING, CallPhase.ACTIVE):
                self.logger.info(
                    "Call ended by remote side",
                    document_exists=session is not None,
                )
                await self._finish(EndReason.REMOTE_ENDED, write_ended=False)
            return

        if session.caller_name and session.caller_name != self.state.caller_name:
            self.state.caller_name = session.caller_name
            self.logger.debug_pii("Caller name received", caller_name=session.caller_name)
            self._changed()

        if (
            self.role is CallRole.CALLER
            and self.state.phase is CallPhase.ACTIVE
            and neg is not None
            and not neg.torn_down
            and neg.peer is not None
            and session.answer
        ):
            await self._apply_answer(neg, session.answer)

    async def _on_remote_candidate(self, data: dict, neg: Optional[_Negotiation]) -> None:
        if neg is None or neg.torn_down or neg.candidates is None:
            return
        queued = await neg.candidates.submit(IceCandidate.from_dict(data))
        if queued:
            call_emitter.candidates(
                "call.candidate_queued", self.case_id, count=len(neg.candidates),
                correlation_id=self.correlation_id,
            )

    # --- adapter callbacks ---

    def _local_candidate_writer(self, neg: _Negotiation):
        path = candidates_path(self.case_id, self.role.local_candidates)

        async def write(candidate: IceCandidate) -> None:
            if neg.torn_down:
                return
            try:
                await self._store.add_to_collection(path, candidate.to_dict())
            except Exception as e:
                self.logger.warning(
                    "Failed to publish local candidate",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return write

    async def _on_remote_track(self, track: Any) -> None:
        self.remote_tracks.append(track)
        self.logger.info("Remote track received", kind=getattr(track, "kind", None))
        if self._remote_sink is not None:
            await self._remote_sink.attach(track)

    def _on_connection_state(self, transport_state: str) -> None:
        self.logger.info("Transport state changed", transport_state=transport_state)
        call_emitter.state_changed(
            self.case_id,
            from_state=self.state.phase.value,
            to_state=self.state.phase.value,
            correlation_id=self.correlation_id,
            transport_state=transport_state,
        )

    # --- termination ---

    async def _fail(self, error: Exception) -> None:
        if self._finished or self.state.phase is CallPhase.FAILED:
            return
        category = CallErrorHandler.handle_error(
            self.case_id, error, role=self.role.value, correlation_id=self.correlation_id
        )
        self.logger.error(
            "Call failed",
            category=category,
            error=str(error),
            error_type=type(error).__name__,
        )
        old_phase = self.state.phase
        self.state.fail(CallErrorHandler.get_user_message(category), category)
        call_emitter.state_changed(
            self.case_id, old_phase.value, CallPhase.FAILED.value, correlation_id=self.correlation_id
        )
        await self._release_all()
        self._changed()

    async def _finish(self, reason: EndReason, write_ended: bool, force: bool = False) -> None:
        if self._finished:
            return
        if self.state.phase is CallPhase.FAILED and not force:
            return
        self._finished = True

        if write_ended:
            try:
                await self._store.update_document(self._doc_path, {
                    FIELD_STATUS: CallStatus.ENDED.value,
                    FIELD_UPDATED_AT: SERVER_TIMESTAMP,
                })
            except DocumentNotFoundError:
                self.logger.debug("No call document to end")
            except Exception as e:
                # Local teardown proceeds regardless
                self.logger.warning(
                    "Failed to write ended status",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        await self._release_all()

        old_phase = self.state.phase
        self.state.end(reason)
        call_emitter.state_changed(
            self.case_id, old_phase.value, CallPhase.ENDED.value, correlation_id=self.correlation_id
        )
        call_emitter.call_ended(
            self.case_id, reason=reason.value, role=self.role.value, correlation_id=self.correlation_id
        )
        self.logger.info("Call ended", reason=reason.value)

        if self._pump_task is not None:
            self._post(_Message("stop"))
        self.ended.set()
        self._changed()

    async def _release_all(self) -> None:
        if self._session_watch is not None:
            unsubscribe, self._session_watch = self._session_watch, None
            unsubscribe()
        if self._negotiation is not None:
            await self._teardown_negotiation(self._negotiation)

    async def _teardown_negotiation(self, neg: _Negotiation) -> None:
        """Unsubscribe, close the peer connection, stop local tracks. Runs once per negotiation."""
        if neg.torn_down:
            return
        neg.torn_down = True

        for unsubscribe in neg.subscriptions:
            unsubscribe()
        neg.subscriptions.clear()

        if neg.candidates is not None:
            neg.candidates.clear()

        if neg.peer is not None and not neg.peer.closed:
            try:
                await neg.peer.close()
            except Exception as e:
                self.logger.warning("Peer connection close failed", error=str(e), error_type=type(e).__name__)

        try:
            neg.release_stream()
        except Exception as e:
            self.logger.warning("Local track stop failed", error=str(e), error_type=type(e).__name__)

        for sink in (self._local_sink, self._remote_sink):
            if sink is None:
                continue
            try:
                await sink.detach()
            except Exception as e:
                self.logger.warning("Media sink detach failed", error=str(e), error_type=type(e).__name__)

        self.logger.debug("Negotiation torn down", generation=neg.generation)

    # --- helpers ---

    def _check_live(self, neg: _Negotiation) -> None:
        if neg.torn_down or self._finished:
            neg.release_stream()
            raise _Superseded()

    def _sync_track_flags(self) -> None:
        stream = self.local_stream
        if stream is None:
            return
        for track in stream.tracks_of("audio"):
            track.enabled = self.state.mic_enabled
        for track in stream.tracks_of("video"):
            track.enabled = self.state.video_active

    def _set_phase(self, phase: CallPhase) -> None:
        old_phase = self.state.phase
        if old_phase is phase:
            return
        self.state.phase = phase
        call_emitter.state_changed(
            self.case_id, old_phase.value, phase.value, correlation_id=self.correlation_id
        )
        self._changed()

    def _set_status(self, status_text: str) -> None:
        self.state.status_text = status_text
        self.logger.debug("Call status", status=status_text)
        self._changed()

    def _changed(self) -> None:
        if self._on_change is None:
            return
        result = self._on_change(self.state)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._listener_tasks.add(task)
            task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            self.logger.warning("State listener failed", error=str(error), error_type=type(error).__name__)


def _elapsed_ms(since: float) -> int:
    return int((time.monotonic() - since) * 1000)
