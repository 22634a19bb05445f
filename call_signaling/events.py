"""
Call signaling event taxonomy.

Thin helpers over the shared EventEmitter so that every call event carries
the same field names.
"""
from typing import Any, Dict, Optional

from observability.events import Component, EventEmitter, Severity


class CallEventEmitter(EventEmitter):
    """Emits call.* events."""

    def call_started(
        self,
        case_id: str,
        role: str,
        call_type: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Emit call.started event."""
        self.emit(
            "call.started",
            case_id,
            correlation_id=correlation_id,
            role=role,
            call_type=call_type,
        )

    def state_changed(
        self,
        case_id: str,
        from_state: str,
        to_state: str,
        correlation_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """Emit call.state_changed event."""
        self.emit(
            "call.state_changed",
            case_id,
            correlation_id=correlation_id,
            from_state=from_state,
            to_state=to_state,
            **kwargs,
        )

    def media_acquired(
        self,
        case_id: str,
        has_camera: bool,
        listener_only: bool,
        track_kinds: list,
        fallback: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Emit call.media_acquired, plus call.media_fallback when the ladder stepped down."""
        self.emit(
            "call.media_acquired",
            case_id,
            correlation_id=correlation_id,
            has_camera=has_camera,
            listener_only=listener_only,
            track_kinds=track_kinds,
        )
        if fallback:
            self.emit(
                "call.media_fallback",
                case_id,
                severity=Severity.WARN,
                correlation_id=correlation_id,
                fallback=fallback,
            )

    def signaling(
        self,
        event_type: str,
        case_id: str,
        correlation_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """Emit one of call.offer_sent / call.answer_sent / call.answer_received."""
        self.emit(event_type, case_id, correlation_id=correlation_id, **kwargs)

    def candidates(
        self,
        event_type: str,
        case_id: str,
        count: int,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Emit call.candidate_queued or call.candidates_drained."""
        self.emit(
            event_type,
            case_id,
            severity=Severity.DEBUG,
            correlation_id=correlation_id,
            count=count,
        )

    def call_ended(
        self,
        case_id: str,
        reason: str,
        role: str,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Emit call.ended event."""
        self.emit(
            "call.ended",
            case_id,
            correlation_id=correlation_id,
            reason=reason,
            role=role,
        )

    def call_error(
        self,
        case_id: str,
        category: str,
        role: str,
        detail: Optional[str] = None,
        error_class: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Emit call.error (terminal failures)."""
        self.emit(
            "call.error",
            case_id,
            severity=Severity.ERROR,
            correlation_id=correlation_id,
            category=category,
            role=role,
            detail=detail,
            error_class=error_class,
        )

    def notification_sent(
        self,
        case_id: str,
        call_type: str,
        notification_id: Optional[str],
        target_user_id: str,
    ) -> None:
        """Emit call.notification_sent. The target user id is PII."""
        pii: Dict[str, Any] = {
            "contains_pii": True,
            "fields": ["target_user_id"],
            "handling": "none",
        }
        self.emit(
            "call.notification_sent",
            case_id,
            pii=pii,
            call_type=call_type,
            notification_id=notification_id,
            target_user_id=target_user_id,
        )


# Global event emitter for the signaling controller
call_emitter = CallEventEmitter(Component.CALL_SIGNALING)
