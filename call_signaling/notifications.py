"""
Incoming call notifications.

A notification document backs up the live call document: the patient's
notification list shows it even when the chat screen is not open.
"""
from __future__ import annotations

from typing import Optional

from logging_setup import get_logger, Component

from .events import call_emitter
from .session import CallType
from .store import SERVER_TIMESTAMP, DocumentStore


logger = get_logger(Component.NOTIFICATIONS)

NOTIFICATIONS_COLLECTION = "notifications"


class CallNotifier:
    """Writes `type: call` notifications. Best effort: never raises."""

    def __init__(
        self,
        store: DocumentStore,
        link: str = "/patient/chat",
        collection: str = NOTIFICATIONS_COLLECTION,
    ):
        self._store = store
        self.link = link
        self.collection = collection

    async def notify_incoming(
        self,
        case_id: str,
        target_user_id: str,
        call_type: CallType | str,
    ) -> Optional[str]:
        """Returns the notification id, or None if it could not be written."""
        call_type = CallType(call_type)
        try:
            notification_id = await self._store.add_to_collection(self.collection, {
                "targetUserId": target_user_id,
                "type": "call",
                "title": f"Incoming {call_type.value} call",
                "message": "Tap to join consultation",
                "link": self.link,
                "read": False,
                "createdAt": SERVER_TIMESTAMP,
            })
        except Exception as e:
            logger.warning(
                "Call notification failed",
                case_id=case_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        logger.info_pii("Call notification sent", target_user_id=target_user_id)
        call_emitter.notification_sent(
            case_id,
            call_type=call_type.value,
            notification_id=notification_id,
            target_user_id=target_user_id,
        )
        return notification_id
