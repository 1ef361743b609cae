"""@requires_open decorator shared by the TimedMap facade.

Wraps public methods so that any call made after ``close()`` raises
``StoreClosedError`` instead of touching released state.
"""

from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

from timed_map.exceptions import StoreClosedError

F = TypeVar("F", bound=Callable[..., Any])


def requires_open(fn: F) -> F:
    """Fail fast when the owning map has already been closed.

    Usage::

        @requires_open
        def get(self, key):
            return self._driver.get(key)
    """

    @functools.wraps(fn)
    def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        if self._driver is None:
            raise StoreClosedError(fn.__name__)
        return fn(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]
