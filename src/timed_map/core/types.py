"""Shared entry model and value helpers used by the driver and the event bus."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Annotated, Any, Hashable, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

# TTL inputs: strict int, greater than zero
_POSITIVE_INT = TypeAdapter(Annotated[int, Field(strict=True, gt=0)])


class Entry(BaseModel):
    """One stored value.

    ``created_at`` is reset on every renewing read and on overwrite. When
    ``ttl`` is ``None`` the map's class-level TTL applies.
    """

    key: Hashable
    value: Any = None
    created_at: int = Field(..., description="Epoch millis of creation or last read")
    ttl: Optional[int] = Field(None, description="Entry-specific TTL in millis")

    def is_expired(self, now: int, max_age: int) -> bool:
        """True once the entry has gone unread for its effective TTL."""
        return now - self.created_at >= (self.ttl if self.ttl is not None else max_age)


class FrozenEntry(Entry):
    """Read-only entry handed to event listeners."""

    model_config = ConfigDict(frozen=True)


def is_positive_integer(value: Any) -> bool:
    """Return ``True`` for whole numbers greater than zero (bools excluded)."""
    try:
        _POSITIVE_INT.validate_python(value)
    except ValidationError:
        return False
    return True


def freeze(value: Any) -> Any:
    """Recursively convert containers into read-only equivalents.

    Dicts, lists, tuples and sets are converted. Any other object, such as a
    class instance, is returned as is, so every listener in one dispatch
    batch receives the same instance. Store values of that kind are already
    detached copies of the stored entry.
    """
    if isinstance(value, Entry):
        return freeze_entry(value)
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, set):
        return frozenset(value)
    return value


def freeze_entry(entry: Optional[Entry]) -> Optional[FrozenEntry]:
    if entry is None:
        return None
    return FrozenEntry.model_construct(
        key=entry.key,
        value=freeze(entry.value),
        created_at=entry.created_at,
        ttl=entry.ttl,
    )
