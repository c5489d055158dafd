from __future__ import annotations

import asyncio
import json
import logging

import pytest

from newsletter_socket_client.client import NewsletterClient
from newsletter_socket_client.errors import NewsletterTransportError
from newsletter_socket_client.events import CONNECTION_UPDATE
from newsletter_socket_client.models import (
    DEFAULT_AUTO_FOLLOW_CHANNELS,
    FollowResult,
    FollowState,
    NewsletterConfig,
)
from newsletter_socket_client.nodes import BinaryNode, get_binary_node_child
from newsletter_socket_client.protocol import QueryId
from newsletter_socket_client.transport import Transport


class FollowTransport(Transport):
    def __init__(
        self,
        failing: set[str] | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        super().__init__()
        self.failing = failing or set()
        self.gate = gate
        self.followed: list[str] = []

    async def connect(self) -> None:
        await self.events.emit(CONNECTION_UPDATE, {"connection": "open"})

    async def query(self, node: BinaryNode, *, timeout: float | None = None) -> BinaryNode:
        query = get_binary_node_child(node, "query")
        assert query is not None
        assert query.attrs["query_id"] == QueryId.FOLLOW.value
        jid = json.loads(query.content)["variables"]["newsletter_id"]
        if self.gate is not None:
            await self.gate.wait()
        # Yield so concurrent open events interleave with the burst.
        await asyncio.sleep(0)
        self.followed.append(jid)
        if jid in self.failing:
            raise NewsletterTransportError(f"follow of {jid} timed out")
        return BinaryNode(tag="iq", attrs={"type": "result"}, content=[])

    async def close(self) -> None:
        await self.events.emit(CONNECTION_UPDATE, {"connection": "close"})


CHANNELS = ("1@newsletter", "2@newsletter", "3@newsletter")


def test_default_config_follows_fixed_channels() -> None:
    async def _run() -> None:
        transport = FollowTransport()
        client = NewsletterClient(transport)
        await client.start()
        results = await client.wait_for_auto_follow()
        assert transport.followed == list(DEFAULT_AUTO_FOLLOW_CHANNELS)
        assert results is not None
        assert all(result.ok for result in results)
        assert client.follow_state is FollowState.FOLLOWED

    asyncio.run(_run())


def test_start_returns_before_follows_complete() -> None:
    async def _run() -> None:
        gate = asyncio.Event()
        transport = FollowTransport(gate=gate)
        client = NewsletterClient(transport, config=NewsletterConfig(auto_follow_channels=CHANNELS))

        await asyncio.wait_for(client.start(), timeout=1.0)
        assert client.follow_state is FollowState.FOLLOWING
        assert transport.followed == []

        gate.set()
        await client.wait_for_auto_follow()
        assert transport.followed == list(CHANNELS)
        assert client.follow_state is FollowState.FOLLOWED

    asyncio.run(_run())


def test_close_cancels_unfinished_burst() -> None:
    async def _run() -> None:
        transport = FollowTransport(gate=asyncio.Event())
        client = NewsletterClient(transport, config=NewsletterConfig(auto_follow_channels=CHANNELS))
        await client.start()
        await asyncio.sleep(0)

        await asyncio.wait_for(client.close(), timeout=1.0)
        assert await client.wait_for_auto_follow() is None
        assert transport.followed == []

        # The gate stays closed for the rest of the client's life.
        await client.start()
        assert client.follow_state is FollowState.FOLLOWING

    asyncio.run(_run())


def test_wait_without_open_connection_returns_none() -> None:
    async def _run() -> None:
        client = NewsletterClient(
            FollowTransport(), config=NewsletterConfig(auto_follow_channels=CHANNELS)
        )
        assert await client.wait_for_auto_follow() is None

    asyncio.run(_run())


def test_concurrent_open_events_follow_once() -> None:
    async def _run() -> None:
        transport = FollowTransport()
        client = NewsletterClient(transport, config=NewsletterConfig(auto_follow_channels=CHANNELS))
        open_event = {"connection": "open"}
        await asyncio.gather(
            transport.events.emit(CONNECTION_UPDATE, open_event),
            transport.events.emit(CONNECTION_UPDATE, open_event),
        )
        await client.wait_for_auto_follow()
        assert transport.followed == list(CHANNELS)
        assert client.follow_state is FollowState.FOLLOWED

        await transport.events.emit(CONNECTION_UPDATE, open_event)
        await client.wait_for_auto_follow()
        assert transport.followed == list(CHANNELS)

    asyncio.run(_run())


def test_follow_failures_do_not_abort_the_burst(caplog: pytest.LogCaptureFixture) -> None:
    observed: list[list[FollowResult]] = []

    async def _run() -> None:
        transport = FollowTransport(failing={"2@newsletter"})
        client = NewsletterClient(
            transport,
            config=NewsletterConfig(auto_follow_channels=CHANNELS),
            on_auto_follow=observed.append,
        )
        with caplog.at_level(logging.WARNING, logger="newsletter_socket_client.client"):
            await transport.connect()
            await client.wait_for_auto_follow()
        assert transport.followed == list(CHANNELS)

    asyncio.run(_run())

    assert len(observed) == 1
    results = observed[0]
    assert [result.jid for result in results] == list(CHANNELS)
    assert [result.ok for result in results] == [True, False, True]
    assert results[1].error == "follow of 2@newsletter timed out"
    assert "auto-follow of 2@newsletter failed" in caplog.text


def test_async_observer_is_awaited() -> None:
    seen: list[int] = []

    async def observer(results: list[FollowResult]) -> None:
        seen.append(len(results))

    async def _run() -> None:
        transport = FollowTransport()
        client = NewsletterClient(
            transport,
            config=NewsletterConfig(auto_follow_channels=CHANNELS),
            on_auto_follow=observer,
        )
        await transport.connect()
        await client.wait_for_auto_follow()

    asyncio.run(_run())
    assert seen == [3]


def test_failing_observer_does_not_break_connection() -> None:
    def observer(results: list[FollowResult]) -> None:
        raise RuntimeError("observer bug")

    async def _run() -> None:
        transport = FollowTransport()
        client = NewsletterClient(
            transport,
            config=NewsletterConfig(auto_follow_channels=CHANNELS),
            on_auto_follow=observer,
        )
        await client.start()
        results = await client.wait_for_auto_follow()
        assert results is not None and len(results) == 3
        assert client.follow_state is FollowState.FOLLOWED

    asyncio.run(_run())


def test_non_open_updates_are_ignored() -> None:
    async def _run() -> None:
        transport = FollowTransport()
        client = NewsletterClient(transport, config=NewsletterConfig(auto_follow_channels=CHANNELS))
        await transport.events.emit(CONNECTION_UPDATE, {"connection": "connecting"})
        await transport.close()
        assert await client.wait_for_auto_follow() is None
        assert transport.followed == []
        assert client.follow_state is FollowState.UNSET

    asyncio.run(_run())


def test_follow_state_is_per_client() -> None:
    async def _run() -> None:
        first = FollowTransport()
        second = FollowTransport()
        config = NewsletterConfig(auto_follow_channels=CHANNELS)
        client = NewsletterClient(first, config=config)
        other = NewsletterClient(second, config=config)

        await first.connect()
        await client.wait_for_auto_follow()
        assert other.follow_state is FollowState.UNSET
        await second.connect()
        await other.wait_for_auto_follow()
        assert second.followed == list(CHANNELS)

    asyncio.run(_run())


def test_reconnect_does_not_refollow() -> None:
    async def _run() -> None:
        transport = FollowTransport()
        client = NewsletterClient(transport, config=NewsletterConfig(auto_follow_channels=CHANNELS))
        await client.start()
        await client.wait_for_auto_follow()
        await client.close()
        await client.start()
        await client.wait_for_auto_follow()
        assert transport.followed == list(CHANNELS)

    asyncio.run(_run())
