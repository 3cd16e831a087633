"""
Inngest client configuration for background job processing.
"""

from typing import Any, Dict, List, Optional

import inngest

from pricetracker.core.config import settings
from pricetracker.core.exceptions import InngestError
from pricetracker.core.logging import get_logger

logger = get_logger(__name__)

# Event names
REDISCOVERY_REQUESTED = "source/rediscovery.requested"
UPDATE_REQUESTED = "source/update.requested"

# Initialize Inngest client
inngest_client = inngest.Inngest(
    app_id=settings.INNGEST_APP_ID,
    event_key=settings.INNGEST_EVENT_KEY,
    signing_key=settings.INNGEST_SIGNING_KEY,
    is_production=settings.is_production,
    logger=logger,
)


async def send_event(
    name: str,
    data: Dict[str, Any],
    ts: Optional[int] = None,
) -> List[str]:
    """
    Send an event to Inngest for background processing.

    Args:
        name: Event name (e.g., "source/rediscovery.requested")
        data: Event payload data
        ts: Optional timestamp (milliseconds since epoch)

    Returns:
        IDs of the accepted events

    Raises:
        InngestError: If event delivery fails

    Example:
        >>> await send_event(
        ...     name=REDISCOVERY_REQUESTED,
        ...     data={"source_id": "8d3c..."},
        ... )
    """
    logger.info(
        "Sending Inngest event",
        extra={"event_name": name, "data_keys": list(data.keys())},
    )

    event = inngest.Event(name=name, data=data, ts=ts) if ts else inngest.Event(name=name, data=data)
    try:
        ids = await inngest_client.send(event)
    except Exception as e:
        logger.error(
            "Failed to send Inngest event",
            extra={"event_name": name, "error": str(e)},
            exc_info=True,
        )
        raise InngestError(
            message=f"Failed to send event '{name}' to Inngest",
            function_name=name,
        ) from e

    logger.info(
        "Inngest event sent successfully",
        extra={"event_name": name, "event_ids": ids},
    )
    return ids


def check_inngest_health() -> Dict[str, Any]:
    """
    Report whether background processing is configured.

    Returns:
        Health status dictionary
    """
    if not settings.INNGEST_ENABLED:
        return {"status": "disabled", "service": "inngest"}

    if settings.is_production and not (settings.INNGEST_EVENT_KEY and settings.INNGEST_SIGNING_KEY):
        return {
            "status": "unhealthy",
            "service": "inngest",
            "error": "Event or signing key missing",
        }

    return {
        "status": "healthy",
        "service": "inngest",
        "app_id": settings.INNGEST_APP_ID,
    }


# Export commonly used objects
__all__ = [
    "REDISCOVERY_REQUESTED",
    "UPDATE_REQUESTED",
    "inngest_client",
    "send_event",
    "check_inngest_health",
]
