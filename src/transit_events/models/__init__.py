"""SQLAlchemy models for Transit Events."""

from transit_events.models.base import Base
from transit_events.models.events import FeedEvent

__all__ = [
    "Base",
    "FeedEvent",
]
