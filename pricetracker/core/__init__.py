"""Core utilities package."""

from pricetracker.core.config import settings
from pricetracker.core.database import Base, get_db
from pricetracker.core.logging import get_logger, set_request_id

__all__ = [
    "settings",
    "Base",
    "get_db",
    "get_logger",
    "set_request_id",
]
