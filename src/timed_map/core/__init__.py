"""Core infrastructure: entry storage and aging, entry model, loop lookup."""

from timed_map.core.driver import Driver
from timed_map.core.types import Entry, FrozenEntry, freeze, is_positive_integer

__all__ = [
    "Driver",
    "Entry",
    "FrozenEntry",
    "freeze",
    "is_positive_integer",
]
