from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

# Event carrying `{"connection": "connecting" | "open" | "close"}` payloads.
CONNECTION_UPDATE = "connection.update"

Listener = Callable[[Any], Awaitable[None] | None]


class EventEmitter:
    """Minimal async event fan-out used by transports and the client."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> None:
        """Register `listener` for `event`."""
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> None:
        """Remove a previously registered listener; unknown listeners are ignored."""
        listeners = self._listeners.get(event)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    async def emit(self, event: str, payload: Any) -> None:
        """Call every listener of `event` and await those that are coroutines.

        Async listeners run concurrently; a listener error propagates to the
        emitter.
        """
        pending: list[Awaitable[None]] = []
        for listener in list(self._listeners.get(event, ())):
            result = listener(payload)
            if inspect.isawaitable(result):
                pending.append(result)
        if pending:
            await asyncio.gather(*pending)
