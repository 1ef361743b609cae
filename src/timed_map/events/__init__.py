"""Event bus for timed map state changes.

Provides EventBus as the single entry point.
"""

from timed_map.events.bus import EventBus
from timed_map.events.constants import DELIMITER, EVENT_TYPES, EventType
from timed_map.events.models import EventInfo

__all__ = ["DELIMITER", "EVENT_TYPES", "EventBus", "EventInfo", "EventType"]
