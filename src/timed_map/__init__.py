"""Timed Map: an in-memory key/value store whose entries expire unless read.

Architecture:
    core/      : Driver (entries, TTL, sweep timer), Entry model, loop lookup
    events/    : EventBus, event types, frozen payload models
    timed_map.py: TimedMap facade with the public API
    exceptions.py: Structured exception hierarchy
    config.py  : Settings dataclass (environment-driven defaults)
    logging_config.py: Structured JSON logging with store/listener context
"""

__version__ = "1.3.3"

__all__ = [
    "__version__",
    "Entry",
    "EventInfo",
    "EventType",
    "InvalidEventTypeError",
    "LoopNotRunningError",
    "Settings",
    "StoreClosedError",
    "TimedMap",
    "TimedMapError",
    "TTL_30_MINS",
]

from timed_map.config import TTL_30_MINS as TTL_30_MINS
from timed_map.config import Settings as Settings
from timed_map.core.types import Entry as Entry
from timed_map.events.constants import EventType as EventType
from timed_map.events.models import EventInfo as EventInfo
from timed_map.exceptions import (
    InvalidEventTypeError as InvalidEventTypeError,
    LoopNotRunningError as LoopNotRunningError,
    StoreClosedError as StoreClosedError,
    TimedMapError as TimedMapError,
)
from timed_map.timed_map import TimedMap as TimedMap
