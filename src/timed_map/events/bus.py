"""Listener registry and dispatch for timed map events.

``emit`` hands listeners to the event loop with ``call_soon`` so callers
never wait on observers; ``emit_now`` runs them inline and is reserved for
CLOSING, where the map is about to go away.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Union

from timed_map.core.loop import resolve_loop
from timed_map.events.constants import DELIMITER, EVENT_TYPES, EventType
from timed_map.events.models import EventData, EventInfo, build_event_data
from timed_map.exceptions import InvalidEventTypeError, StoreClosedError
from timed_map.logging_config import (
    reset_listener_id,
    reset_store_name,
    set_listener_id,
    set_store_name,
)

logger = logging.getLogger(__name__)

Listener = Callable[[EventInfo], Any]
EventTypeLike = Union[EventType, str]

_SCHEDULED_EMIT_WARNING = (
    "Issues communicating event ID %s. If dealing with objects going out "
    "of scope, please consider using the `emit_now` method."
)


@dataclass
class _Registration:
    id: str
    listener: Listener
    attributes: Dict[Any, Any] = field(default_factory=dict)
    once: bool = False


class _SharedEventInfo(NamedTuple):
    data: EventData
    date: datetime
    timestamp: int
    type: EventType


class EventBus:
    """Per-type listener registries with deferred and immediate delivery.

    Args:
        loop: Event loop used for deferred delivery. Defaults to the running
            loop at the time of the first deferred emission.
        name: Store name attached to log records emitted during dispatch.
    """

    def __init__(
        self,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        name: str = "",
    ):
        self._loop = loop
        self._name = name
        self._counter = 0
        self._closed = False
        self._listeners: Dict[EventType, Dict[int, _Registration]] = {
            t: {} for t in EventType
        }

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def on(
        self,
        event_type: EventTypeLike,
        listener: Listener,
        attributes: Optional[Dict[Any, Any]] = None,
    ) -> str:
        """Subscribe ``listener``; returns an id like ``"PUT@@@3"``."""
        self._check_open("on")
        resolved = _lookup_type(event_type)
        if resolved is None:
            raise InvalidEventTypeError(event_type, EVENT_TYPES)
        self._counter += 1
        reg_id = f"{resolved.value}{DELIMITER}{self._counter}"
        self._listeners[resolved][self._counter] = _Registration(
            id=reg_id,
            listener=listener,
            attributes=attributes if attributes is not None else {},
        )
        return reg_id

    def once(
        self,
        event_type: EventTypeLike,
        listener: Listener,
        attributes: Optional[Dict[Any, Any]] = None,
    ) -> str:
        """Subscribe ``listener`` for the next emission of ``event_type`` only."""
        reg_id = self.on(event_type, listener, attributes)
        resolved, number = _parse_id(reg_id)
        self._listeners[resolved][number].once = True
        return reg_id

    def off(self, event_type: EventTypeLike, listener: Listener) -> None:
        """Remove the first registration under ``event_type`` using ``listener``."""
        self._check_open("off")
        resolved = _lookup_type(event_type)
        if resolved is None:
            return
        group = self._listeners[resolved]
        for number, reg in group.items():
            if reg.listener == listener:
                del group[number]
                return

    def off_by_id(self, reg_id: str) -> None:
        """Remove the registration identified by ``reg_id``."""
        self._check_open("off_by_id")
        parsed = _parse_id(reg_id)
        if parsed is None:
            return
        resolved, number = parsed
        self._listeners[resolved].pop(number, None)

    def listener_count(self, event_type: EventTypeLike) -> int:
        resolved = _lookup_type(event_type)
        return len(self._listeners[resolved]) if resolved is not None else 0

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def emit(self, event_type: EventType, *args: Any) -> None:
        """Schedule listeners to run after the work already queued on the loop."""
        self._check_open("emit")
        shared = self._calc_shared_data(event_type, args)
        if shared is None:
            return
        registrations = self._snapshot(event_type)
        self._get_loop().call_soon(self._dispatch, shared, registrations)

    def emit_now(self, event_type: EventType, *args: Any) -> None:
        """Run listeners inline, in registration order, before returning."""
        self._check_open("emit_now")
        shared = self._calc_shared_data(event_type, args)
        if shared is None:
            return
        for reg in self._snapshot(event_type):
            self._invoke(reg, shared)

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Use ``loop`` for deferred delivery unless one is already set."""
        if self._loop is None:
            self._loop = loop

    def close(self) -> None:
        """Drop every registration; later calls raise ``StoreClosedError``."""
        self._check_open("close")
        for group in self._listeners.values():
            group.clear()
        self._closed = True

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_open(self, operation: str) -> None:
        if self._closed:
            raise StoreClosedError(operation)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = resolve_loop()
        return self._loop

    def _calc_shared_data(
        self, event_type: EventType, args: tuple
    ) -> Optional[_SharedEventInfo]:
        """Build the payload every listener of this emission shares."""
        if not self._listeners[event_type]:
            return None
        data = build_event_data(event_type, args)
        timestamp = time.time_ns() // 1_000_000
        date = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
        return _SharedEventInfo(data=data, date=date, timestamp=timestamp, type=event_type)

    def _snapshot(self, event_type: EventType) -> List[_Registration]:
        """Copy the current registrations and retire one-shot ones."""
        group = self._listeners[event_type]
        registrations = list(group.values())
        for number in [n for n, reg in group.items() if reg.once]:
            del group[number]
        return registrations

    def _dispatch(
        self, shared: _SharedEventInfo, registrations: List[_Registration]
    ) -> None:
        token = set_store_name(self._name) if self._name else None
        try:
            for reg in registrations:
                try:
                    self._invoke(reg, shared)
                except ReferenceError as exc:
                    logger.warning(
                        _SCHEDULED_EMIT_WARNING, reg.id,
                        extra={
                            "event": "stale_listener",
                            "event_type": shared.type.value,
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                        },
                    )
                except Exception as exc:
                    self._get_loop().call_exception_handler({
                        "message": f"Unhandled exception in listener {reg.id}",
                        "exception": exc,
                        "listener_id": reg.id,
                    })
        finally:
            if token is not None:
                reset_store_name(token)

    def _invoke(self, reg: _Registration, shared: _SharedEventInfo) -> None:
        info = EventInfo.model_construct(
            attributes=copy.deepcopy(reg.attributes),
            data=shared.data,
            date=copy.copy(shared.date),
            id=reg.id,
            timestamp=shared.timestamp,
            type=shared.type,
        )
        token = set_listener_id(reg.id)
        try:
            reg.listener(info)
        finally:
            reset_listener_id(token)


def _lookup_type(event_type: Any) -> Optional[EventType]:
    try:
        return EventType(event_type)
    except (ValueError, TypeError):
        return None


def _parse_id(reg_id: str) -> Optional[tuple]:
    type_part, sep, number = str(reg_id).partition(DELIMITER)
    resolved = _lookup_type(type_part)
    if not sep or resolved is None or not number.isdigit():
        return None
    return resolved, int(number)
