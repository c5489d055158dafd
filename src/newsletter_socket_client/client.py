from __future__ import annotations

import asyncio
import base64
import contextlib
import json
import logging
import os
from collections.abc import Awaitable, Callable, Mapping, Sequence
from functools import partial
from typing import Any

from .errors import NewsletterUnexpectedResponseError, NewsletterUnknownActionError
from .events import CONNECTION_UPDATE
from .media import generate_profile_picture
from .metadata import UrlResolver, get_url_from_direct_path, metadata_from_body
from .models import (
    FetchedUpdate,
    FollowResult,
    FollowState,
    MetadataType,
    NewsletterConfig,
    NewsletterMetadata,
    ProfilePicture,
    ReactionMode,
    ViewRole,
)
from .nodes import S_WHATSAPP_NET, BinaryNode, get_binary_node_child
from .protocol import (
    QueryId,
    XWAPath,
    generate_message_id,
    humanize_data_path,
    make_create_tos_notice,
    make_fetch_messages_node,
    make_fetch_updates_node,
    make_newsletter_query,
    make_newsletter_wmex_query,
    make_reaction_message,
    make_wmex_query,
    raise_for_server_errors,
    unwrap_result,
)
from .transport import Transport, WebSocketTransport
from .updates import FetchKind, parse_fetched_updates

logger = logging.getLogger(__name__)

FollowObserver = Callable[[list[FollowResult]], Awaitable[None] | None]
PictureBuilder = Callable[[bytes], ProfilePicture]
UpdatesParser = Callable[[BinaryNode, FetchKind], list[FetchedUpdate]]

# Flags requested on every metadata lookup.
_METADATA_FETCH_FLAGS = {
    "fetch_viewer_metadata": True,
    "fetch_full_image": True,
    "fetch_creation_time": True,
}


class NewsletterClient:
    """Async command/query client for newsletter channels.

    The client is stateless apart from the auto-follow gate: every call sends
    one request (two for `create`) through the transport and decodes the reply.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        config: NewsletterConfig | None = None,
        on_auto_follow: FollowObserver | None = None,
        resolve_url: UrlResolver | None = None,
        build_picture: PictureBuilder = generate_profile_picture,
        parse_updates: UpdatesParser = parse_fetched_updates,
    ) -> None:
        """Create a client bound to a transport.

        Args:
            transport: Connected or connectable transport instance.
            config: Client settings; defaults to `NewsletterConfig()`.
            on_auto_follow: Optional observer receiving the per-channel
                results of the auto-follow burst.
            resolve_url: Media direct-path resolver. Defaults to the
                configured media host.
            build_picture: Encoder used by `update_picture`.
            parse_updates: Parser used by `fetch_messages` and `fetch_updates`.
        """
        self._transport = transport
        self._config = config if config is not None else NewsletterConfig()
        self._on_auto_follow = on_auto_follow
        self._resolve_url = resolve_url or partial(
            get_url_from_direct_path, host=self._config.media_host
        )
        self._build_picture = build_picture
        self._parse_updates = parse_updates
        self._follow_state = FollowState.UNSET
        self._follow_task: asyncio.Task[list[FollowResult]] | None = None

        transport.events.on(CONNECTION_UPDATE, self._on_connection_update)

    @classmethod
    def connect_websocket(
        cls,
        *,
        url: str | None = None,
        token: str | None = None,
        headers: Mapping[str, str] | None = None,
        connect_timeout: float = 30.0,
        config: NewsletterConfig | None = None,
        on_auto_follow: FollowObserver | None = None,
    ) -> NewsletterClient:
        """Create an unstarted client configured for websocket transport."""
        resolved_config = config if config is not None else NewsletterConfig()
        resolved_url = url or os.getenv("NEWSLETTER_BRIDGE_WS_URL") or "ws://127.0.0.1:8765"
        resolved_token = token or os.getenv("NEWSLETTER_BRIDGE_TOKEN")
        resolved_headers = dict(headers) if headers is not None else {}
        if resolved_token and "Authorization" not in resolved_headers:
            resolved_headers["Authorization"] = f"Bearer {resolved_token}"

        transport = WebSocketTransport(
            resolved_url,
            headers=resolved_headers,
            connect_timeout=connect_timeout,
            request_timeout=resolved_config.request_timeout,
        )
        return cls(transport, config=resolved_config, on_auto_follow=on_auto_follow)

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def follow_state(self) -> FollowState:
        """Progress of the auto-follow burst for this client."""
        return self._follow_state

    async def start(self) -> NewsletterClient:
        """Connect the transport."""
        await self._transport.connect()
        return self

    async def __aenter__(self) -> NewsletterClient:
        return await self.start()

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel an unfinished auto-follow burst and close the transport."""
        task = self._follow_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._transport.close()

    async def wait_for_auto_follow(self) -> list[FollowResult] | None:
        """Wait for the auto-follow burst and return its per-channel results.

        Returns None when no burst has started or it was cancelled.
        """
        task = self._follow_task
        if task is None:
            return None
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    async def execute_wmex_query(
        self,
        variables: Mapping[str, Any],
        query_id: QueryId | str,
        data_path: str | None = None,
    ) -> Any:
        """Run a WMex query and return `data[data_path]` of the decoded result.

        Server-reported errors are checked before the data path is resolved.
        A present value is returned as-is even when it is falsy; only a
        missing key raises `NewsletterUnexpectedResponseError`.
        """
        node = make_wmex_query(variables, query_id, self._transport.generate_message_tag())
        result = await self._transport.query(node)

        body = unwrap_result(result)
        if body is not None:
            raise_for_server_errors(body)
            data = body.get("data") if isinstance(body, Mapping) else None
            if data_path:
                if isinstance(data, Mapping) and data_path in data:
                    return data[data_path]
            elif isinstance(body, Mapping) and "data" in body:
                return data

        raise NewsletterUnexpectedResponseError(
            f"Failed to {humanize_data_path(data_path)}, unexpected response structure.",
            status_code=400,
            data=result,
        )

    async def fetch_all_subscribed(self) -> Any:
        """Return every channel the account follows."""
        return await self.execute_wmex_query({}, QueryId.SUBSCRIBED, XWAPath.SUBSCRIBED.value)

    async def follow(self, jid: str) -> None:
        await self._newsletter_wmex_query(jid, QueryId.FOLLOW)

    async def unfollow(self, jid: str) -> None:
        await self._newsletter_wmex_query(jid, QueryId.UNFOLLOW)

    async def mute(self, jid: str) -> None:
        await self._newsletter_wmex_query(jid, QueryId.MUTE)

    async def unmute(self, jid: str) -> None:
        await self._newsletter_wmex_query(jid, QueryId.UNMUTE)

    async def action(self, jid: str, name: str) -> None:
        """Run a channel operation selected by name, e.g. ``"follow"``.

        The name is matched case-insensitively against `QueryId` member names.
        """
        try:
            query_id = QueryId[name.upper()]
        except KeyError:
            raise NewsletterUnknownActionError(name) from None
        await self._newsletter_wmex_query(jid, query_id)

    async def subscribe_live_updates(self, jid: str) -> dict[str, str] | None:
        """Subscribe to live updates of a channel.

        Returns the attributes of the `live_updates` reply (e.g. its
        ``duration``), or None when the reply carries none.
        """
        result = await self._newsletter_query(
            jid, "set", [BinaryNode(tag="live_updates", attrs={}, content=[])]
        )
        live_updates = get_binary_node_child(result, "live_updates")
        return dict(live_updates.attrs) if live_updates is not None else None

    async def update_reaction_mode(self, jid: str, mode: ReactionMode) -> None:
        await self._newsletter_wmex_query(
            jid,
            QueryId.JOB_MUTATION,
            {"updates": {"settings": {"reaction_codes": {"value": mode}}}},
        )

    async def update_description(self, jid: str, description: str | None) -> None:
        await self._update(jid, {"description": description or ""})

    async def update_name(self, jid: str, name: str) -> None:
        await self._update(jid, {"name": name})

    async def update_picture(self, jid: str, content: bytes) -> None:
        picture = self._build_picture(content)
        await self._update(jid, {"picture": base64.b64encode(picture.img).decode("ascii")})

    async def remove_picture(self, jid: str) -> None:
        await self._update(jid, {"picture": ""})

    async def lookup_by_invite_url(self, url: str) -> str:
        """Resolve an invite URL to a compact ``{"name", "id"}`` JSON string.

        The invite key is the second-to-last ``/`` segment, so the URL is
        expected to end with a trailing slash.
        """
        parts = url.split("/")
        if len(parts) < 2:
            raise ValueError(f"not a channel invite url: {url!r}")
        key = parts[-2]
        metadata = await self._fetch_metadata_node(
            {"key": key, "type": "INVITE", "view_role": "GUEST"},
        )
        return json.dumps({"name": metadata.name, "id": metadata.id}, separators=(",", ":"))

    async def fetch_metadata(
        self,
        kind: MetadataType | str,
        key: str,
        role: ViewRole | None = None,
    ) -> NewsletterMetadata:
        """Fetch channel metadata by invite code (``kind="invite"``) or jid."""
        return await self._fetch_metadata_node(
            {"key": key, "type": kind.upper(), "view_role": role or "GUEST"},
        )

    async def create(
        self,
        name: str,
        description: str | None,
        reaction_codes: ReactionMode | str,
    ) -> NewsletterMetadata:
        """Create a channel and return its metadata.

        The terms-of-service notice is acknowledged first; channel creation is
        rejected by the server without it.
        """
        await self._transport.query(make_create_tos_notice(self._transport.generate_message_tag()))
        create_input: dict[str, Any] = {"name": name}
        if description is not None:
            create_input["description"] = description
        create_input["settings"] = {"reaction_codes": {"value": reaction_codes.upper()}}
        result = await self._newsletter_wmex_query(
            None, QueryId.CREATE, {"input": create_input}
        )
        return self._metadata_from_result(result, is_create=True)

    async def admin_count(self, jid: str) -> int:
        """Return the number of admins of a channel."""
        result = await self._newsletter_wmex_query(jid, QueryId.ADMIN_COUNT)
        body = unwrap_result(result)
        raise_for_server_errors(body)
        data = body.get("data") if isinstance(body, Mapping) else None
        admin = data.get(XWAPath.ADMIN_COUNT.value) if isinstance(data, Mapping) else None
        if not isinstance(admin, Mapping) or "admin_count" not in admin:
            raise NewsletterUnexpectedResponseError(
                f"Failed to {humanize_data_path(XWAPath.ADMIN_COUNT.value)}, "
                "unexpected response structure.",
                data=result,
            )
        return admin["admin_count"]

    async def change_owner(self, jid: str, user: str) -> None:
        await self._newsletter_wmex_query(jid, QueryId.CHANGE_OWNER, {"user_id": user})

    async def demote(self, jid: str, user: str) -> None:
        await self._newsletter_wmex_query(jid, QueryId.DEMOTE, {"user_id": user})

    async def delete(self, jid: str) -> None:
        await self._newsletter_wmex_query(jid, QueryId.DELETE)

    async def react_to_message(self, jid: str, server_id: str, code: str | None = None) -> None:
        """React to a channel message; a falsy `code` removes the reaction."""
        await self._transport.query(
            make_reaction_message(jid, server_id, code, generate_message_id())
        )

    async def fetch_messages(
        self,
        kind: MetadataType | str,
        key: str,
        count: int,
        after: int | str | None = None,
    ) -> list[FetchedUpdate]:
        """Fetch channel messages by invite key or channel jid."""
        result = await self._newsletter_query(
            S_WHATSAPP_NET, "get", [make_fetch_messages_node(kind, key, count, after)]
        )
        return self._parse_updates(result, "messages")

    async def fetch_updates(
        self,
        jid: str,
        count: int,
        after: int | str | None = None,
        since: int | str | None = None,
    ) -> list[FetchedUpdate]:
        """Fetch view and reaction updates of channel messages."""
        result = await self._newsletter_query(
            jid, "get", [make_fetch_updates_node(count, after, since)]
        )
        return self._parse_updates(result, "updates")

    async def _update(self, jid: str, updates: Mapping[str, Any]) -> None:
        # `settings: null` keeps the server from resetting channel settings.
        await self._newsletter_wmex_query(
            jid, QueryId.JOB_MUTATION, {"updates": {**updates, "settings": None}}
        )

    async def _fetch_metadata_node(self, lookup: Mapping[str, Any]) -> NewsletterMetadata:
        result = await self._newsletter_wmex_query(
            None, QueryId.METADATA, {"input": dict(lookup), **_METADATA_FETCH_FLAGS}
        )
        return self._metadata_from_result(result, is_create=False)

    def _metadata_from_result(self, result: BinaryNode, *, is_create: bool) -> NewsletterMetadata:
        body = unwrap_result(result)
        if body is None:
            path = XWAPath.CREATE.value if is_create else XWAPath.NEWSLETTER.value
            raise NewsletterUnexpectedResponseError(
                f"Failed to {humanize_data_path(path)}, unexpected response structure.",
                data=result,
            )
        raise_for_server_errors(body)
        return metadata_from_body(body, is_create, resolve_url=self._resolve_url)

    async def _newsletter_wmex_query(
        self,
        jid: str | None,
        query_id: QueryId,
        content: Mapping[str, Any] | None = None,
    ) -> BinaryNode:
        node = make_newsletter_wmex_query(
            jid, query_id, self._transport.generate_message_tag(), content
        )
        return await self._transport.query(node)

    async def _newsletter_query(
        self,
        jid: str,
        iq_type: str,
        content: list[BinaryNode],
    ) -> BinaryNode:
        node = make_newsletter_query(jid, iq_type, self._transport.generate_message_tag(), content)
        return await self._transport.query(node)

    def _on_connection_update(self, update: Mapping[str, Any]) -> None:
        """Start the auto-follow burst on the first open connection.

        The burst runs in a background task so connection establishment never
        waits on it.
        """
        if update.get("connection") != "open" or self._follow_state is not FollowState.UNSET:
            return
        self._follow_state = FollowState.FOLLOWING
        self._follow_task = asyncio.create_task(
            self._auto_follow(self._config.auto_follow_channels)
        )

    async def _auto_follow(self, channels: Sequence[str]) -> list[FollowResult]:
        logger.debug("auto-following %d channel(s)", len(channels))
        results: list[FollowResult] = []
        for jid in channels:
            try:
                await self.follow(jid)
            except Exception as exc:
                logger.warning("auto-follow of %s failed: %s", jid, exc)
                results.append(FollowResult(jid=jid, ok=False, error=str(exc) or type(exc).__name__))
            else:
                results.append(FollowResult(jid=jid, ok=True))

        self._follow_state = FollowState.FOLLOWED
        logger.debug(
            "auto-follow finished: %d/%d succeeded",
            sum(1 for result in results if result.ok),
            len(results),
        )
        if self._on_auto_follow is not None:
            try:
                observed = self._on_auto_follow(results)
                if observed is not None:
                    await observed
            except Exception:
                logger.exception("auto-follow observer failed")
        return results
