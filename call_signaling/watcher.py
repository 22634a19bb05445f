"""
Incoming call watcher (receiver side).

Watches a case's call document and tells the patient screen when to show
or hide the call view.
"""
from __future__ import annotations

import inspect
import asyncio
from typing import Any, Callable, Optional, Set

from logging_setup import get_logger, Component

from .session import CallSession, call_document_path
from .store import DocumentStore, Unsubscribe


logger = get_logger(Component.CALL_SIGNALING)

RingHandler = Callable[[CallSession], Any]
ClearHandler = Callable[[], Any]


class IncomingCallWatcher:
    """
    Fires `on_ring` once when the document enters calling/accepted/connected,
    and `on_clear` once when it leaves those statuses or disappears.
    """

    def __init__(
        self,
        store: DocumentStore,
        case_id: str,
        on_ring: RingHandler,
        on_clear: Optional[ClearHandler] = None,
    ):
        self.case_id = case_id
        self._store = store
        self._on_ring = on_ring
        self._on_clear = on_clear
        self._unsubscribe: Optional[Unsubscribe] = None
        self.ringing = False
        self.session: Optional[CallSession] = None
        self._tasks: Set[asyncio.Task] = set()
        self.logger = logger.with_case(case_id)

    async def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = await self._store.subscribe_document(
            call_document_path(self.case_id), self._on_snapshot
        )

    def stop(self) -> None:
        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            unsubscribe()

    def _on_snapshot(self, data: Optional[dict]) -> None:
        session = CallSession.from_document(data)
        self.session = session
        live = session is not None and session.status.is_ringing_or_live

        if live and not self.ringing:
            self.ringing = True
            self.logger.info(
                "Incoming call",
                call_type=session.call_type.value,
                status=session.status.value,
            )
            self._call(self._on_ring, session)
        elif not live and self.ringing:
            self.ringing = False
            self.logger.info("Incoming call cleared")
            if self._on_clear is not None:
                self._call(self._on_clear)

    def _call(self, handler: Callable[..., Any], *args: Any) -> None:
        result = handler(*args)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            self.logger.error("Call screen handler failed", error=str(error), error_type=type(error).__name__)
