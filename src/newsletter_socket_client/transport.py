from __future__ import annotations

import asyncio
import base64
import contextlib
import json
import logging
import secrets
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

import websockets

from .errors import NewsletterServerError, NewsletterTimeoutError, NewsletterTransportError
from .events import CONNECTION_UPDATE, EventEmitter
from .nodes import BinaryNode, get_binary_node_child

logger = logging.getLogger(__name__)

# Unsolicited nodes (no pending query with a matching id) are emitted here.
NODE_RECEIVED = "node.received"


class Transport(ABC):
    """Abstract request/response channel that carries binary nodes.

    Implementations own correlation, timeouts and reconnection. They publish
    connection state on `events` under ``connection.update``.
    """

    def __init__(self) -> None:
        self.events = EventEmitter()
        prefix = secrets.token_bytes(2)
        self._tag_prefix = f"{prefix[0]}.{prefix[1]}-"
        self._tag_epoch = 1

    def generate_message_tag(self) -> str:
        """Return a request id unique for the lifetime of this transport."""
        tag = f"{self._tag_prefix}{self._tag_epoch}"
        self._tag_epoch += 1
        return tag

    @abstractmethod
    async def connect(self) -> None:
        """Open transport resources and establish connection."""
        raise NotImplementedError

    @abstractmethod
    async def query(self, node: BinaryNode, *, timeout: float | None = None) -> BinaryNode:
        """Send one node and await the reply correlated by its `id` attribute."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Close transport resources."""
        raise NotImplementedError


class WebSocketTransport(Transport):
    """Node transport over a websocket connection to a protocol bridge.

    Each frame is one node encoded as JSON: ``{"tag", "attrs", "content"}``
    where byte payloads are wrapped as ``{"$b64": "..."}``.
    """

    def __init__(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        connect_timeout: float = 30.0,
        request_timeout: float = 30.0,
    ) -> None:
        """Configure websocket transport.

        Args:
            url: Websocket endpoint URL of the bridge.
            headers: Optional request headers, including auth.
            connect_timeout: Timeout for websocket handshake.
            request_timeout: Default timeout for correlated replies.
        """
        super().__init__()
        self._url = url
        self._headers = dict(headers) if headers is not None else None
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout
        self._socket: Any = None
        self._pending: dict[str, asyncio.Future[BinaryNode]] = {}
        self._send_lock = asyncio.Lock()
        self._receiver_task: asyncio.Task[None] | None = None
        self._dispatch_tasks: set[asyncio.Task[None]] = set()

    async def connect(self) -> None:
        """Open websocket if not already connected."""
        if self._socket is not None:
            return
        await self.events.emit(CONNECTION_UPDATE, {"connection": "connecting"})
        try:
            self._socket = await asyncio.wait_for(
                websockets.connect(
                    self._url,
                    additional_headers=self._headers,
                    compression=None,
                ),
                timeout=self._connect_timeout,
            )
        except Exception as exc:
            await self.events.emit(CONNECTION_UPDATE, {"connection": "close", "error": exc})
            raise NewsletterTransportError(
                "failed to connect websocket transport: "
                f"{self._url} ({exc.__class__.__name__}: {exc})"
            ) from exc
        logger.debug("websocket transport connected to %s", self._url)
        self._receiver_task = asyncio.create_task(self._receiver_loop())
        await self.events.emit(CONNECTION_UPDATE, {"connection": "open"})

    async def query(self, node: BinaryNode, *, timeout: float | None = None) -> BinaryNode:
        """Send `node` and await the reply carrying the same `id`."""
        if self._socket is None:
            raise NewsletterTransportError("websocket transport is not connected")
        message_id = node.attrs.get("id")
        if not message_id:
            message_id = self.generate_message_tag()
            node.attrs["id"] = message_id

        loop = asyncio.get_running_loop()
        future: asyncio.Future[BinaryNode] = loop.create_future()
        self._pending[message_id] = future
        try:
            await self._send_frame(node)
        except BaseException:
            self._pending.pop(message_id, None)
            raise

        timeout_seconds = timeout if timeout is not None else self._request_timeout
        try:
            reply = await asyncio.wait_for(future, timeout=timeout_seconds)
        except asyncio.TimeoutError as exc:
            self._pending.pop(message_id, None)
            raise NewsletterTimeoutError(
                f"no reply for {node.tag} id={message_id!r} after {timeout_seconds:.1f}s"
            ) from exc
        _raise_for_error_reply(reply)
        return reply

    async def close(self) -> None:
        """Close websocket connection and fail pending queries."""
        if self._socket is None:
            return
        socket = self._socket
        self._socket = None

        if self._receiver_task is not None:
            self._receiver_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._receiver_task
            self._receiver_task = None

        dispatch_tasks = list(self._dispatch_tasks)
        for task in dispatch_tasks:
            task.cancel()
        await asyncio.gather(*dispatch_tasks, return_exceptions=True)
        self._dispatch_tasks.clear()

        self._fail_pending(NewsletterTransportError("transport is closing"))
        try:
            await socket.close()
        except Exception:
            logger.debug("error while closing websocket transport", exc_info=True)
        await self.events.emit(CONNECTION_UPDATE, {"connection": "close"})

    async def _send_frame(self, node: BinaryNode) -> None:
        frame = json.dumps(node_to_json(node), separators=(",", ":"))
        try:
            async with self._send_lock:
                await self._socket.send(frame)
        except Exception as exc:
            raise NewsletterTransportError("failed writing to websocket transport") from exc

    async def _receiver_loop(self) -> None:
        """Route incoming frames to pending queries or the `node.received` event."""
        try:
            while self._socket is not None:
                message = await self._socket.recv()
                if isinstance(message, (bytes, bytearray)):
                    text = message.decode("utf-8")
                else:
                    text = str(message)
                try:
                    node = node_from_json(json.loads(text))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    logger.debug("dropping undecodable websocket frame")
                    continue

                future = self._pending.pop(node.attrs.get("id", ""), None)
                if future is not None:
                    if not future.done():
                        future.set_result(node)
                    continue
                task = asyncio.create_task(self._dispatch(node))
                self._dispatch_tasks.add(task)
                task.add_done_callback(self._dispatch_tasks.discard)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._socket is None:
                return
            self._socket = None
            self._fail_pending(NewsletterTransportError(f"receiver loop failed: {exc}"))
            await self.events.emit(CONNECTION_UPDATE, {"connection": "close", "error": exc})

    async def _dispatch(self, node: BinaryNode) -> None:
        # Listeners run outside the receiver loop so they can issue queries.
        try:
            await self.events.emit(NODE_RECEIVED, node)
        except Exception:
            logger.exception("node.received listener failed for %s", node.tag)

    def _fail_pending(self, error: Exception) -> None:
        for future in list(self._pending.values()):
            if not future.done():
                future.set_exception(error)
        self._pending.clear()


def node_to_json(node: BinaryNode) -> dict[str, Any]:
    """Encode a node as a JSON-serializable bridge frame."""
    content = node.content
    encoded: Any
    if isinstance(content, list):
        encoded = [node_to_json(child) for child in content]
    elif isinstance(content, (bytes, bytearray)):
        encoded = {"$b64": base64.b64encode(bytes(content)).decode("ascii")}
    else:
        encoded = content
    return {"tag": node.tag, "attrs": dict(node.attrs), "content": encoded}


def node_from_json(payload: Mapping[str, Any]) -> BinaryNode:
    """Decode a bridge frame back into a node."""
    content = payload.get("content")
    decoded: Any
    if isinstance(content, list):
        decoded = [node_from_json(child) for child in content]
    elif isinstance(content, Mapping):
        decoded = base64.b64decode(content["$b64"])
    else:
        decoded = content
    attrs = payload.get("attrs") or {}
    return BinaryNode(
        tag=str(payload["tag"]),
        attrs={str(key): str(value) for key, value in attrs.items()},
        content=decoded,
    )


def _raise_for_error_reply(reply: BinaryNode) -> None:
    """Raise when an `iq` reply is typed `error`."""
    if reply.tag != "iq" or reply.attrs.get("type") != "error":
        return
    error = get_binary_node_child(reply, "error")
    attrs = error.attrs if error is not None else {}
    try:
        code = int(attrs.get("code", "500"))
    except ValueError:
        code = 500
    raise NewsletterServerError(
        attrs.get("text") or "server returned an error reply",
        status_code=code,
        data=reply,
    )
