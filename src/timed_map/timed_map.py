"""TimedMap: an in-memory map whose entries expire unless read.

Entries not read (``get``/``get_entry``) within their TTL are evicted, either
lazily when the map is queried or by a background sweep scheduled on the
asyncio event loop. State changes are published to listeners registered
with ``on``/``once``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Generic, Hashable, List, Optional, TypeVar

from timed_map._decorator import requires_open
from timed_map.config import Settings
from timed_map.core.driver import Driver
from timed_map.core.types import Entry
from timed_map.events.bus import EventTypeLike, Listener
from timed_map.exceptions import StoreClosedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TimedMap(Generic[T]):
    """Map with per-entry time-to-live renewed on every read.

    ``get(key)`` and ``get_entry(key)`` count as reads and restart the
    entry's TTL. ``peak(key)`` reads without renewing. Call ``close()``
    before discarding the map so its sweep timer is cancelled.

    Args:
        max_entry_age_millis: Class-level TTL in milliseconds. Values that are
            not positive integers fall back to ``settings.default_max_entry_age_ms``
            (30 minutes unless configured).
        name: Label attached to this map's log records.
        loop: Event loop for the sweep timer and event delivery. Defaults to
            the running loop when first needed.
        settings: Library settings; read from the environment when omitted.
    """

    def __init__(
        self,
        max_entry_age_millis: Optional[int] = None,
        *,
        name: str = "",
        loop: Optional[asyncio.AbstractEventLoop] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or Settings()
        self._name = name
        self._closing = False
        self._driver: Optional[Driver[T]] = Driver(
            max_entry_age_millis,
            default_max_age=settings.default_max_entry_age_ms,
            loop=loop,
            name=name,
        )

    def __repr__(self) -> str:
        label = f" {self._name!r}" if self._name else ""
        if self._driver is None:
            return f"<TimedMap{label} closed>"
        return f"<TimedMap{label} max_entry_age={self._driver.max_entry_age}ms>"

    __str__ = __repr__

    def __contains__(self, key: Hashable) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        return self.size

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    @requires_open
    def entries(self) -> List[Entry]:
        """All available entries (copies)."""
        return self._driver.entries

    @property
    @requires_open
    def is_empty(self) -> bool:
        return self._driver.is_empty

    @property
    @requires_open
    def keys(self) -> List[Hashable]:
        return self._driver.keys

    @property
    @requires_open
    def max_entry_age(self) -> int:
        """Class-level TTL in milliseconds.

        Assigning a new positive integer shifts the upcoming sweep without
        touching existing entries' timestamps. Other values are ignored.
        """
        return self._driver.max_entry_age

    @max_entry_age.setter
    @requires_open
    def max_entry_age(self, max_entry_age_millis: int) -> None:
        self._driver.max_entry_age = max_entry_age_millis

    @property
    @requires_open
    def size(self) -> int:
        return self._driver.size

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @requires_open
    def clear(self) -> None:
        """Remove all entries."""
        self._driver.clear()

    def close(self) -> None:
        """Cancel the sweep timer and release the map.

        CLOSING listeners run before this returns and can still read the map.
        Every later call on the map, including another ``close()``, raises
        ``StoreClosedError``.
        """
        driver = self._driver
        if driver is None or self._closing:
            raise StoreClosedError("close")
        self._closing = True
        try:
            driver.close()
        finally:
            self._driver = None
            logger.debug("TimedMap %s closed", self._name or hex(id(self)))

    @requires_open
    def get(self, key: Hashable) -> Optional[T]:
        """Value at ``key``; restarts the entry's TTL."""
        return self._driver.get(key)

    @requires_open
    def get_entry(self, key: Hashable) -> Optional[Entry]:
        """Copy of the entry at ``key``; restarts the entry's TTL."""
        return self._driver.get_entry(key)

    @requires_open
    def has(self, key: Hashable) -> bool:
        """Whether a live entry exists at ``key``. Expired entries are removed."""
        return self._driver.has(key)

    @requires_open
    def peak(self, key: Hashable) -> Optional[T]:
        """Value at ``key`` without restarting its TTL."""
        return self._driver.peak(key)

    @requires_open
    def put(self, key: Hashable, value: T, ttl: Optional[int] = None) -> Optional[Entry]:
        """Create or overwrite the entry at ``key``.

        Args:
            ttl: Entry-specific TTL in milliseconds, overriding ``max_entry_age``.

        Returns:
            The live entry that was replaced, if any.
        """
        return self._driver.put(key, value, ttl)

    @requires_open
    def remove(self, key: Hashable) -> Optional[Entry]:
        """Remove the entry at ``key``; returns it unless it had already expired."""
        return self._driver.remove(key)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @requires_open
    def off(self, event_type: EventTypeLike, listener: Listener) -> None:
        """Cancel a subscription by listener reference."""
        self._driver.events.off(event_type, listener)

    @requires_open
    def off_by_id(self, event_id: str) -> None:
        """Cancel a subscription by the id returned from ``on``/``once``."""
        self._driver.events.off_by_id(event_id)

    @requires_open
    def on(
        self,
        event_type: EventTypeLike,
        listener: Listener,
        attributes: Optional[Dict[Any, Any]] = None,
    ) -> str:
        """Subscribe to ``event_type``.

        Args:
            attributes: Arbitrary data echoed back (as a copy) with every event.

        Returns:
            Subscription id in the form ``"<TYPE>@@@<n>"``.
        """
        return self._driver.events.on(event_type, listener, attributes)

    @requires_open
    def once(
        self,
        event_type: EventTypeLike,
        listener: Listener,
        attributes: Optional[Dict[Any, Any]] = None,
    ) -> str:
        """Subscribe to the next ``event_type`` emission only."""
        return self._driver.events.once(event_type, listener, attributes)
