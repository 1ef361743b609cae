"""Structured exception hierarchy for timed map operations.

Every exception carries ``error_type``, ``suggestions``, and ``metadata``
so callers can log or surface errors without parsing messages.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional


class TimedMapError(Exception):
    """Base exception for all timed map errors.

    Attributes:
        error_type: Machine-readable error category.
        suggestions: Actionable recovery steps for the caller.
        metadata: Structured context for debugging.
    """

    error_type: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        suggestions: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.suggestions = suggestions or []
        self.metadata = metadata or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for structured logs and error reports."""
        return {
            "error_type": self.error_type,
            "error": str(self),
            "suggestions": self.suggestions,
            "metadata": self.metadata,
        }


# -----------------------------------------------------------------------
# Concrete exceptions
# -----------------------------------------------------------------------


class StoreClosedError(TimedMapError):
    """The map was used after ``close()`` released its resources."""

    error_type = "store_closed"

    def __init__(self, operation: str = "", **kwargs: Any):
        message = "TimedMap has been closed"
        if operation:
            message = f"Cannot call '{operation}': {message}"
        super().__init__(
            message,
            suggestions=[
                "Create a new TimedMap instead of reusing a closed one",
                "Call close() only when the map is about to be discarded",
            ],
            metadata={"operation": operation},
            **kwargs,
        )
        self.operation = operation


class InvalidEventTypeError(TimedMapError, TypeError):
    """A listener was registered for an event type that does not exist."""

    error_type = "invalid_event_type"

    def __init__(self, event_type: Any, valid_types: Iterable[str]):
        valid = list(valid_types)
        super().__init__(
            f"Invalid event type: {event_type}. "
            f"Valid event types are: [{', '.join(valid)}]",
            suggestions=["Use one of the EventType members"],
            metadata={"event_type": str(event_type), "valid_types": valid},
        )
        self.event_type = event_type
        self.valid_types = valid


class LoopNotRunningError(TimedMapError):
    """No asyncio event loop is available to schedule sweeps or dispatch."""

    error_type = "loop_not_running"

    def __init__(self, message: str = "No running asyncio event loop", **kwargs: Any):
        super().__init__(
            message,
            suggestions=[
                "Use the map from inside a coroutine running on an event loop",
                "Or pass loop=... when constructing the TimedMap",
            ],
            **kwargs,
        )
