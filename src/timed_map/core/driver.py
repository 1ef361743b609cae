"""Entry storage, TTL bookkeeping and the background sweep timer.

At most one ``call_later`` handle is outstanding per driver, and it exists
exactly while the driver holds entries. Every path that (re)starts aging
cancels the previous handle first.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Generic, Hashable, List, Optional, TypeVar

from timed_map.config import TTL_30_MINS
from timed_map.core.loop import resolve_loop
from timed_map.core.types import Entry, is_positive_integer
from timed_map.events.bus import EventBus
from timed_map.events.constants import EventType
from timed_map.logging_config import log_store_event

T = TypeVar("T")


def _now() -> int:
    return time.time_ns() // 1_000_000


class Driver(Generic[T]):
    """Owns the key -> entry mapping, the class-level TTL and the sweep timer.

    Args:
        max_entry_age_millis: Class-level TTL. Invalid values fall back to
            ``default_max_age``.
        default_max_age: Fallback TTL (30 minutes unless configured).
        loop: Event loop for the sweep timer and deferred events. Defaults to
            the running loop when first needed.
        name: Label attached to log records.
    """

    def __init__(
        self,
        max_entry_age_millis: Optional[int] = None,
        *,
        default_max_age: int = TTL_30_MINS,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        name: str = "",
    ):
        self._name = name
        self._loop = loop
        self._events = EventBus(loop=loop, name=name)
        self._max_age: int = (
            default_max_age if is_positive_integer(default_max_age) else TTL_30_MINS
        )
        if self._is_valid_ttl_input(max_entry_age_millis):
            self._max_age = max_entry_age_millis
        self._entries: Dict[Hashable, Entry] = {}
        self._prune_date: Optional[int] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def entries(self) -> List[Entry]:
        """All live entries, as independent copies."""
        self._prune()
        return [e.model_copy(deep=True) for e in self._entries.values()]

    @property
    def is_empty(self) -> bool:
        return not self.keys

    @property
    def keys(self) -> List[Hashable]:
        """All live keys."""
        self._prune()
        return list(self._entries)

    @property
    def max_entry_age(self) -> int:
        return self._max_age

    @max_entry_age.setter
    def max_entry_age(self, max_entry_age_millis: int) -> None:
        if not self._is_valid_ttl_input(max_entry_age_millis):
            return
        old_max_age = self._max_age
        self._max_age = max_entry_age_millis
        if self._prune_date is None:
            return
        # Keep the current cycle's start; only the upcoming sweep moves.
        start_date = self._prune_date - old_max_age
        elapsed = _now() - start_date
        self._prune_date = start_date + max_entry_age_millis
        self._cancel_timer()
        self._schedule_sweep(max(max_entry_age_millis - elapsed, 0))

    @property
    def prune_date(self) -> Optional[int]:
        """Epoch millis the next sweep is targeted for; ``None`` when empty."""
        return self._prune_date

    @property
    def size(self) -> int:
        return len(self.keys)

    @property
    def timer(self) -> Optional[asyncio.TimerHandle]:
        return self._timer

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def clear(self) -> None:
        if not self._entries:
            return
        removed = [e.model_copy(deep=True) for e in self._entries.values()]
        self._entries = {}
        self._try_reset_aging()
        log_store_event("cleared", self._name, removed_count=len(removed))
        self._events.emit(EventType.CLEARED, removed)

    def close(self) -> None:
        """Cancel the sweep timer, notify CLOSING listeners, drop all state."""
        self._cancel_timer()
        self._prune_date = None
        try:
            self._events.emit_now(EventType.CLOSING)
        finally:
            # CLOSING listeners may have touched the map and re-armed aging
            self._cancel_timer()
            self._prune_date = None
            self._events.close()
            self._entries = {}
            log_store_event("closed", self._name)

    def get(self, key: Hashable) -> Optional[T]:
        """Return the value at ``key`` and restart its TTL."""
        if not self.has(key):
            return None
        return self._renew(key).value

    def get_entry(self, key: Hashable) -> Optional[Entry]:
        """Return a copy of the entry at ``key`` after restarting its TTL."""
        if not self.has(key):
            return None
        return self._renew(key).model_copy(deep=True)

    def has(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._is_prunable(entry):
            self.remove(key)
            return False
        return True

    def peak(self, key: Hashable) -> Optional[T]:
        """Return the value at ``key`` without renewing it."""
        entry = self._get_entry(key)
        return entry.value if entry is not None else None

    def put(self, key: Hashable, value: T, ttl: Optional[int] = None) -> Optional[Entry]:
        """Create or overwrite the entry at ``key``.

        Returns the entry that was replaced, or ``None`` when there was no
        live entry at ``key``.
        """
        self._get_loop()
        ex_entry = self._get_entry(key)
        self._entries[key] = Entry(
            key=key,
            value=value,
            created_at=_now(),
            ttl=ttl if is_positive_integer(ttl) else None,
        )
        if len(self._entries) == 1:
            self._try_start_aging()
        log_store_event("put", self._name, key=key)
        self._events.emit(
            EventType.PUT, self._entries[key].model_copy(deep=True), ex_entry
        )
        return ex_entry

    def remove(self, key: Hashable) -> Optional[Entry]:
        """Delete the entry at ``key``; returns it unless it had expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        ex_entry = None if self._is_prunable(entry) else entry.model_copy(deep=True)
        del self._entries[key]
        self._try_reset_aging()
        log_store_event("removed", self._name, key=key)
        self._events.emit(EventType.REMOVED, ex_entry)
        return ex_entry

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get_entry(self, key: Hashable) -> Optional[Entry]:
        if self.has(key):
            return self._entries[key].model_copy(deep=True)
        return None

    def _renew(self, key: Hashable) -> Entry:
        entry = self._entries[key]
        renewed_at = _now()
        self._events.emit(
            EventType.AUTO_RENEWED, key, renewed_at, entry.created_at
        )
        entry.created_at = renewed_at
        return entry

    def _is_prunable(self, entry: Entry) -> bool:
        return entry.is_expired(_now(), self._max_age)

    def _is_valid_ttl_input(self, ttl_input: Any) -> bool:
        return is_positive_integer(ttl_input) and ttl_input != self._max_age

    def _prune(self, *, scheduled: bool = False) -> None:
        """Evict every expired entry.

        A timer-driven sweep always re-arms the timer while entries remain;
        a lazy sweep only does so when it evicted something.
        """
        now = _now()
        removed: List[Entry] = []
        for key, entry in list(self._entries.items()):
            if entry.is_expired(now, self._max_age):
                removed.append(entry)
                del self._entries[key]
        if not self._try_reset_aging() and (scheduled or removed):
            self._try_start_aging()
        if not removed:
            return
        log_store_event("pruned", self._name, removed_count=len(removed))
        self._events.emit(EventType.PRUNED, removed)

    def _on_timer(self) -> None:
        self._timer = None
        self._prune(scheduled=True)

    def _try_reset_aging(self) -> bool:
        if self._entries:
            return False
        self._cancel_timer()
        self._prune_date = None
        return True

    def _try_start_aging(self) -> bool:
        if not self._entries:
            return False
        self._cancel_timer()
        self._prune_date = _now() + self._max_age
        self._schedule_sweep(self._max_age)
        return True

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = resolve_loop()
            self._events.bind_loop(self._loop)
        return self._loop

    def _schedule_sweep(self, delay_ms: float) -> None:
        self._timer = self._get_loop().call_later(delay_ms / 1000, self._on_timer)
        log_store_event("sweep_scheduled", self._name, delay_ms=delay_ms)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
