import logging
import uuid
from typing import Awaitable, Callable

from core.event_publish import publish_event, publish_event_safely
from models.enums import EntityType
from models.utils import utcnow

logger = logging.getLogger(__name__)

Publisher = Callable[[str, dict], Awaitable[None]]


class NotificationService:
    """Collects status-change events during a unit of work and publishes
    them once the transaction has committed."""

    def __init__(self, publisher: Publisher | None = None):
        self.publisher = publisher or publish_event
        self._pending: list[tuple[str, dict]] = []

    def queue(
        self,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        from_status,
        to_status,
    ):
        to_value = getattr(to_status, "value", to_status)
        event = {
            "entityType": entity_type.value,
            "entityId": str(entity_id),
            "fromStatus": getattr(from_status, "value", from_status),
            "toStatus": to_value,
            "timestamp": utcnow().isoformat(),
        }
        self._pending.append((f"{entity_type.value}.{to_value}", event))

    def discard(self):
        if self._pending:
            logger.debug("Dropping %s unpublished events after rollback", len(self._pending))
        self._pending.clear()

    async def flush(self):
        events, self._pending = self._pending, []
        for event_name, data in events:
            await publish_event_safely(self.publisher, event_name, data)
