"""
Call coordination across cases.

Keeps at most one live controller per case, starts outgoing calls (with a
notification for the patient) and mounts receiver controllers for rings
picked up by an IncomingCallWatcher.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional

from logging_setup import get_logger, Component

from .config import SignalingConfig, get_config
from .controller import CallSignalingController, StateListener
from .errors import CallAlreadyActiveError
from .media import MediaCapture, MediaSink
from .notifications import CallNotifier
from .peer import PeerConnectionFactory
from .session import CallRole, CallSession, CallStatus, CallType, FIELD_STATUS, call_document_path
from .state import CallPhase
from .store import DocumentStore


logger = get_logger(Component.CALL_SIGNALING)

SinkFactory = Callable[[str], Optional[MediaSink]]


class CallCoordinator:
    """Registry and entry point for call controllers."""

    def __init__(
        self,
        store: DocumentStore,
        media_capture: MediaCapture,
        peer_factory: PeerConnectionFactory,
        *,
        config: Optional[SignalingConfig] = None,
        notifier: Optional[CallNotifier] = None,
        sink_factory: Optional[SinkFactory] = None,
        on_change: Optional[StateListener] = None,
    ):
        self.store = store
        self.config = config or get_config()
        self._media_capture = media_capture
        self._peer_factory = peer_factory
        self._notifier = notifier
        self._sink_factory = sink_factory
        self._on_change = on_change
        self._controllers: Dict[str, CallSignalingController] = {}

    def active_controller(self, case_id: str) -> Optional[CallSignalingController]:
        """The case's controller, unless its call is already over."""
        controller = self._controllers.get(case_id)
        if controller is None or controller.phase.is_terminal:
            return None
        return controller

    def list_active(self) -> List[CallSignalingController]:
        return [c for c in self._controllers.values() if not c.phase.is_terminal]

    async def start_call(
        self,
        case_id: str,
        call_type: CallType | str,
        target_user_id: Optional[str] = None,
        caller_name: Optional[str] = None,
    ) -> CallSignalingController:
        """Start an outgoing call. Raises CallAlreadyActiveError if the case has a live call."""
        controller = await self._register(case_id, CallRole.CALLER, CallType(call_type), caller_name)
        await controller.start()

        if target_user_id and self._notifier is not None:
            await self._notifier.notify_incoming(case_id, target_user_id, controller.call_type)

        return controller

    async def receive_call(self, case_id: str, session: CallSession) -> CallSignalingController:
        """Mount a receiver controller for a ringing call (phase: incoming)."""
        controller = await self._register(case_id, CallRole.RECEIVER, session.call_type, session.caller_name)
        await controller.start()
        return controller

    async def end_call(self, case_id: str) -> None:
        """
        Hang up the case's live call. Without a live controller the call
        document is reset to `ended` so a ringing receiver closes too.
        """
        controller = self.active_controller(case_id)
        if controller is not None:
            await controller.hangup()
            return
        logger.info("No live controller, resetting call document", case_id=case_id)
        await self.store.set_document(call_document_path(case_id), {FIELD_STATUS: CallStatus.ENDED.value})

    async def shutdown(self) -> None:
        for controller in self.list_active():
            await controller.hangup()

    async def _register(
        self,
        case_id: str,
        role: CallRole,
        call_type: CallType,
        caller_name: Optional[str],
    ) -> CallSignalingController:
        if self.active_controller(case_id) is not None:
            raise CallAlreadyActiveError(f"case {case_id} already has an active call")

        previous = self._controllers.get(case_id)
        if previous is not None and previous.phase is CallPhase.FAILED:
            # A receiver leaves the document alone: it may already hold a new ring
            await previous.close(write_ended=role is CallRole.CALLER)
            logger.info("Failed controller closed", case_id=case_id, role=previous.role.value)

        controller = CallSignalingController(
            case_id,
            role,
            call_type,
            self.store,
            self._media_capture,
            self._peer_factory,
            caller_name=caller_name,
            config=self.config,
            local_sink=self._sink_factory("local") if self._sink_factory else None,
            remote_sink=self._sink_factory("remote") if self._sink_factory else None,
            on_change=self._on_change,
        )
        self._controllers[case_id] = controller
        logger.info("Controller registered", case_id=case_id, role=role.value, call_type=call_type.value)
        return controller
