"""Pydantic models for event payloads.

Every model is frozen: listeners share one canonical ``data`` object per
emission and must not be able to change it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Hashable, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from timed_map.core.types import Entry, FrozenEntry, freeze_entry
from timed_map.events.constants import EventType


# =========================================================================
# Base
# =========================================================================


class FrozenModel(BaseModel):
    """Base model that rejects mutation and extra fields."""

    model_config = ConfigDict(frozen=True, extra="forbid")


# =========================================================================
# Per-type data
# =========================================================================


class AutoRenewedData(FrozenModel):
    """Data for AUTO_RENEWED: a read restarted an entry's TTL."""

    key: Hashable
    created_at: int
    previously_created_at: int


class RemoveManyData(FrozenModel):
    """Data for CLEARED and PRUNED."""

    removed: Tuple[FrozenEntry, ...] = ()


class PutData(FrozenModel):
    """Data for PUT: the new entry and the valid entry it replaced, if any."""

    current: FrozenEntry
    previous: Optional[FrozenEntry] = None


class RemovedData(FrozenModel):
    """Data for REMOVED. ``removed`` is ``None`` when the entry had expired."""

    removed: Optional[FrozenEntry] = None


EventData = Union[AutoRenewedData, RemoveManyData, PutData, RemovedData, None]


class EventInfo(FrozenModel):
    """What a listener receives."""

    attributes: Dict[Any, Any]
    data: EventData = None
    date: datetime
    id: str
    timestamp: int
    type: EventType


# =========================================================================
# Projection
# =========================================================================


def _removed_many(entries: Any) -> RemoveManyData:
    return RemoveManyData.model_construct(
        removed=tuple(freeze_entry(e) for e in entries or ())
    )


def build_event_data(event_type: EventType, args: Tuple[Any, ...]) -> EventData:
    """Project positional emit arguments onto the frozen data model for ``event_type``."""
    if event_type is EventType.AUTO_RENEWED:
        key, created_at, previously_created_at = args
        return AutoRenewedData.model_construct(
            key=key,
            created_at=created_at,
            previously_created_at=previously_created_at,
        )
    if event_type in (EventType.CLEARED, EventType.PRUNED):
        return _removed_many(args[0] if args else ())
    if event_type is EventType.PUT:
        current: Entry = args[0]
        previous: Optional[Entry] = args[1] if len(args) > 1 else None
        return PutData.model_construct(
            current=freeze_entry(current),
            previous=freeze_entry(previous),
        )
    if event_type is EventType.REMOVED:
        return RemovedData.model_construct(removed=freeze_entry(args[0] if args else None))
    return None
