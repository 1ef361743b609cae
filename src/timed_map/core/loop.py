"""Event loop lookup shared by the driver and the event bus."""

from __future__ import annotations

import asyncio
from typing import Optional

from timed_map.exceptions import LoopNotRunningError


def resolve_loop(
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> asyncio.AbstractEventLoop:
    """Return ``loop`` if given, else the running loop."""
    if loop is not None:
        return loop
    try:
        return asyncio.get_running_loop()
    except RuntimeError as exc:
        raise LoopNotRunningError() from exc
