import logging

from core.settings import settings

from .rabbitmq import rabbitmq

logger = logging.getLogger(__name__)


async def publish_event(event_name: str, data: dict):
    """Publish one status-change event to the main topic exchange."""
    if not settings.RABBITMQ_URL:
        logger.debug("No broker configured, skipping %s", event_name)
        return
    await rabbitmq.publish_json(
        exchange_name=settings.RABBITMQ_MAIN_EXCHANGE,
        routing_key=event_name,
        data=data,
    )


async def publish_event_safely(publisher, event_name: str, data: dict) -> bool:
    # Delivery is best effort: the transition that produced the event is
    # already committed, so a broker failure is only logged.
    try:
        await publisher(event_name, data)
        return True
    except Exception as e:
        logger.error("Failed to publish %s for %s: %s", event_name, data.get("entityId"), e)
        return False
