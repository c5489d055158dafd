from __future__ import annotations

import asyncio
from typing import Any

from newsletter_socket_client.events import EventEmitter


def test_emit_calls_sync_and_async_listeners() -> None:
    seen: list[tuple[str, Any]] = []

    def sync_listener(payload: Any) -> None:
        seen.append(("sync", payload))

    async def async_listener(payload: Any) -> None:
        await asyncio.sleep(0)
        seen.append(("async", payload))

    async def _run() -> None:
        emitter = EventEmitter()
        emitter.on("connection.update", sync_listener)
        emitter.on("connection.update", async_listener)
        await emitter.emit("connection.update", {"connection": "open"})
        await emitter.emit("other", {})

    asyncio.run(_run())
    assert seen == [
        ("sync", {"connection": "open"}),
        ("async", {"connection": "open"}),
    ]


def test_off_removes_listener() -> None:
    calls: list[Any] = []

    async def _run() -> None:
        emitter = EventEmitter()
        emitter.on("e", calls.append)
        assert emitter.listener_count("e") == 1
        emitter.off("e", calls.append)
        emitter.off("e", calls.append)
        emitter.off("missing", calls.append)
        await emitter.emit("e", 1)

    asyncio.run(_run())
    assert calls == []
