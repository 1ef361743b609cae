"""Event type names and subscription id format."""

from __future__ import annotations

from enum import Enum
from typing import Tuple


class EventType(str, Enum):
    AUTO_RENEWED = "AUTO_RENEWED"
    CLEARED = "CLEARED"
    CLOSING = "CLOSING"
    PRUNED = "PRUNED"
    PUT = "PUT"
    REMOVED = "REMOVED"

    def __str__(self) -> str:
        return self.value


EVENT_TYPES: Tuple[str, ...] = tuple(t.value for t in EventType)

# Subscription ids look like "PUT@@@12"
DELIMITER = "@@@"
