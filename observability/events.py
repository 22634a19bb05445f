"""
Structured JSON event emission (shared).

This module is shared by the signaling controller and the control API.
It implements the event envelope and the severity/component taxonomy.
"""

from __future__ import annotations

import json
import os
import re
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .event_store import event_store


class Component(str, Enum):
    """Component types for event envelopes."""

    CALL_SIGNALING = "call_signaling"
    CONTROL_API = "control_api"
    MEDIA = "media"
    NOTIFICATIONS = "notifications"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


class EventEmitter:
    """Emits structured JSON events, one per line on stdout."""

    # ANSI color codes for latency formatting
    ORANGE = '\033[38;5;208m'  # Bright orange (256-color mode)
    RESET = '\033[0m'

    def __init__(self, component: Component):
        self.component = component

    def emit(
        self,
        event_type: str,
        case_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        """
        Emit a structured JSON event.

        Args:
            event_type: Stable event type string (e.g., "call.started")
            case_id: Case (conversation) identifier the call belongs to
            severity: Event severity level
            correlation_id: Optional correlation ID (call attempt or command)
            pii: PII metadata dict with contains_pii, fields, handling
            **kwargs: Additional event-specific fields
        """
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "case_id": case_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or case_id,
            "pii": pii or DEFAULT_PII,
        }

        event.update(kwargs)

        json_output = json.dumps(event, ensure_ascii=False, default=str)

        if kwargs.get("latency_ms") is not None:
            no_color = os.environ.get('NO_COLOR', '').lower() in ('1', 'true', 'yes')
            pattern = r'("latency_ms"\s*:\s*)(\d+)'
            if no_color:
                replacement = r'\1\2 ms'
            else:
                replacement = rf'\1{self.ORANGE}\2 ms{self.RESET}'
            json_output = re.sub(pattern, replacement, json_output)

        sys.stdout.write(json_output)
        sys.stdout.write("\n")
        sys.stdout.flush()

        # Store the raw dict (no color formatting) for the read API
        event_store.store(event)
