"""
Shared logging infrastructure for the call signaling service.

This module provides a unified logging setup for the signaling controller,
the media/peer adapters and the control API, adhering to the structured
event envelope used by `observability.events`.

Features:
- JSON-formatted structured logs
- Configurable log levels
- Case ID correlation across all logs
- Component and severity tagging
- PII-aware logging helpers (caller names are PII)
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Severity(str, Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Component(str, Enum):
    """System components for log tagging."""
    CALL_SIGNALING = "call_signaling"
    MEDIA = "media"
    PEER_CONNECTION = "peer_connection"
    SIGNALING_STORE = "signaling_store"
    CONTROL_API = "control_api"
    ERROR_HANDLER = "error_handler"
    NOTIFICATIONS = "notifications"


_RESERVED_RECORD_KEYS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "component", "case_id", "message",
])


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Output fields:
    - ISO8601 timestamp
    - Severity level
    - Component identifier
    - Case ID (if available in extra)
    - Message and additional fields

    Latency values (latency_ms) get an "ms" unit, and are highlighted in
    orange unless NO_COLOR is set.
    """

    # ANSI color codes
    ORANGE = '\033[38;5;208m'  # Bright orange (256-color mode)
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }

        if hasattr(record, "case_id"):
            log_data["case_id"] = record.case_id

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        json_output = json.dumps(log_data, ensure_ascii=False, default=str)

        if "latency_ms" in log_data:
            no_color = os.environ.get('NO_COLOR', '').lower() in ('1', 'true', 'yes')
            pattern = r'("latency_ms"\s*:\s*)(\d+)'
            if no_color:
                replacement = r'\1\2 ms'
            else:
                replacement = rf'\1{self.ORANGE}\2 ms{self.RESET}'
            json_output = re.sub(pattern, replacement, json_output)

        return json_output


class StructuredLogger:
    """
    Wrapper around Python's logging with structured JSON output.

    Usage:
        logger = StructuredLogger("call_signaling", case_id="case_123")
        logger.info("Offer written", role="caller")
        logger.error("Negotiation failed", error="details")
        logger.debug_pii("Incoming call", caller_name="Dr. Jansen")
    """

    def __init__(
        self,
        component: str | Component,
        case_id: Optional[str] = None,
        logger_name: Optional[str] = None
    ):
        self.component = component.value if isinstance(component, Component) else component
        self.case_id = case_id
        self.logger = logging.getLogger(logger_name or self.component)

    def _log(
        self,
        level: int,
        message: str,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Internal logging method with structured data."""
        exc_info = kwargs.pop("exc_info", None)
        stack_info = kwargs.pop("stack_info", None)
        stacklevel = kwargs.pop("stacklevel", 1)

        extra = {
            "component": self.component,
            **kwargs
        }

        if self.case_id:
            extra["case_id"] = self.case_id

        if pii:
            # PII is logged as a separate field for audit awareness
            extra["pii"] = pii

        self.logger.log(
            level,
            message,
            exc_info=exc_info,
            stack_info=stack_info,
            stacklevel=stacklevel,
            extra=extra
        )

    def debug(self, message: str, **kwargs):
        """Log a debug message."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log an info message."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log a warning message."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log an error message."""
        self._log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log a critical message."""
        self._log(logging.CRITICAL, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log an error message with exception info, like logging.Logger.exception."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, message, **kwargs)

    def debug_pii(self, message: str, **pii_fields):
        """
        Log debug with PII fields explicitly marked.

        Example:
            logger.debug_pii("Incoming call", caller_name="Dr. Jansen")
        """
        self._log(logging.DEBUG, message, pii=pii_fields)

    def info_pii(self, message: str, **pii_fields):
        """Log info with PII fields explicitly marked."""
        self._log(logging.INFO, message, pii=pii_fields)

    def with_case(self, case_id: str) -> "StructuredLogger":
        """Create a new logger instance bound to a case ID."""
        return StructuredLogger(
            self.component,
            case_id=case_id,
            logger_name=self.logger.name
        )


def setup_logging(
    level: str = "INFO",
    use_json: bool = True,
    include_timestamp: bool = True
) -> None:
    """
    Configure root logger for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Use JSON formatter (True) or simple text (False)
        include_timestamp: Include timestamps in text logs

    This should be called once at application startup.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)

    if use_json:
        formatter = JSONFormatter()
    else:
        format_str = "%(levelname)s - %(component)s - %(message)s"
        if include_timestamp:
            format_str = "%(asctime)s - " + format_str
        formatter = logging.Formatter(format_str, defaults={"component": "unknown"})

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)


def get_logger(
    component: str | Component,
    case_id: Optional[str] = None
) -> StructuredLogger:
    """
    Get a structured logger for a component.

    Example:
        logger = get_logger(Component.CALL_SIGNALING, case_id="case_123")
        logger.info("Call started")
    """
    return StructuredLogger(component, case_id=case_id)
