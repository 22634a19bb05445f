"""
Call control API.

This module exposes:
- Read API: current call document per case, stored call events
- Write API: force hang-up of a case's call

Implementation notes:
- Hang-up goes through the coordinator, so a live local controller tears
  down cleanly; otherwise the call document is reset to `ended`.
- Emits auditable events: control.command_received / control.command_applied.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from observability.events import Component as ObsComponent, EventEmitter, Severity
from observability.event_store import event_store

from .coordinator import CallCoordinator
from .session import CallSession, call_document_path


router = APIRouter(prefix="/calls", tags=["calls"])
emitter = EventEmitter(ObsComponent.CONTROL_API)

_coordinator: Optional[CallCoordinator] = None


def configure(coordinator: CallCoordinator) -> None:
    """Bind the router to the coordinator (and its store)."""
    global _coordinator
    _coordinator = coordinator


def get_coordinator() -> CallCoordinator:
    if _coordinator is None:
        raise HTTPException(status_code=503, detail="call_coordinator_unavailable")
    return _coordinator


class HangupResponse(BaseModel):
    status: str


class CallSummary(BaseModel):
    """Current call document for a case."""
    case_id: str
    status: str
    call_type: str
    caller_name: Optional[str] = None
    has_offer: bool = False
    has_answer: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    local_phase: Optional[str] = None


class CallEvents(BaseModel):
    case_id: str
    events: list = Field(default_factory=list)
    count: int = 0


def _new_correlation_id() -> str:
    return f"cmd_{int(time.time() * 1000)}"


def _parse_timestamp(value: Optional[str], name: str) -> Optional[datetime]:
    """Parse an ISO timestamp query param; naive values are read as UTC."""
    if not value:
        return None
    try:
        # URL-decoding may turn "+" into a space
        parsed = datetime.fromisoformat(value.replace(" ", "+").replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        raise HTTPException(status_code=400, detail=f"Invalid {name} timestamp: {value}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def _force_end(case_id: str) -> None:
    await get_coordinator().end_call(case_id)


@router.post("/{case_id}/hangup", response_model=HangupResponse)
async def hangup_call(case_id: str) -> HangupResponse:
    """Hang up / cancel the call for a case."""
    correlation_id = _new_correlation_id()

    emitter.emit(
        "control.command_received",
        case_id=case_id,
        severity=Severity.INFO,
        correlation_id=correlation_id,
        command="call.hangup",
    )

    try:
        await _force_end(case_id)
    except HTTPException:
        raise
    except Exception as e:
        # Stable error surface: no internal traces
        emitter.emit(
            "control.command_applied",
            case_id=case_id,
            severity=Severity.ERROR,
            correlation_id=correlation_id,
            command="call.hangup",
            result="error",
            error_class=type(e).__name__,
        )
        raise HTTPException(status_code=502, detail="hangup_failed")

    emitter.emit(
        "control.command_applied",
        case_id=case_id,
        severity=Severity.INFO,
        correlation_id=correlation_id,
        command="call.hangup",
        result="ok",
    )

    return HangupResponse(status="ok")


@router.get("/{case_id}", response_model=CallSummary)
async def get_call(case_id: str) -> CallSummary:
    """Current call document for a case."""
    coordinator = get_coordinator()
    session = CallSession.from_document(await coordinator.store.get_document(call_document_path(case_id)))
    if session is None:
        raise HTTPException(status_code=404, detail="Call not found")

    controller = coordinator.active_controller(case_id)
    return CallSummary(
        case_id=case_id,
        status=session.status.value,
        call_type=session.call_type.value,
        caller_name=session.caller_name,
        has_offer=bool(session.offer),
        has_answer=bool(session.answer),
        created_at=session.created_at.isoformat() if isinstance(session.created_at, datetime) else None,
        updated_at=session.updated_at.isoformat() if isinstance(session.updated_at, datetime) else None,
        local_phase=controller.phase.value if controller else None,
    )


@router.get("/{case_id}/events", response_model=CallEvents)
async def get_call_events(
    case_id: str,
    event_type: Optional[str] = Query(None, description="Filter by event_type"),
    since: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    until: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
) -> CallEvents:
    """Stored call events for a case, oldest first."""
    events = event_store.query(
        case_id=case_id,
        event_type=event_type,
        since=_parse_timestamp(since, "since"),
        until=_parse_timestamp(until, "until"),
        limit=limit,
    )
    return CallEvents(case_id=case_id, events=events, count=len(events))
