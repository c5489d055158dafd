from __future__ import annotations

from typing import Literal, TypeAlias

from .metadata import to_number
from .models import FetchedUpdate, ReactionCount
from .nodes import (
    BinaryNode,
    content_bytes,
    get_all_binary_node_children,
    get_binary_node_child,
    get_binary_node_children,
)

FetchKind: TypeAlias = Literal["messages", "updates"]


def parse_fetched_updates(node: BinaryNode, kind: FetchKind) -> list[FetchedUpdate]:
    """Parse the reply of a message or message-update fetch.

    Message fetches carry `messages` directly under the reply; update fetches
    nest it under `message_updates`. Only fetched messages carry a payload.
    """
    if kind == "messages":
        container = get_binary_node_child(node, "messages")
    else:
        container = get_binary_node_child(get_binary_node_child(node, "message_updates"), "messages")
    if container is None:
        return []

    channel_jid = container.attrs.get("jid")
    updates: list[FetchedUpdate] = []
    for message_node in get_all_binary_node_children(container):
        views_node = get_binary_node_child(message_node, "views_count")
        reactions = [
            ReactionCount(code=reaction.attrs.get("code"), count=to_number(reaction.attrs.get("count")))
            for reaction in get_binary_node_children(
                get_binary_node_child(message_node, "reactions"), "reaction"
            )
        ]
        message: bytes | None = None
        if kind == "messages":
            message = content_bytes(get_binary_node_child(message_node, "plaintext"))
        updates.append(
            FetchedUpdate(
                server_id=message_node.attrs.get("server_id"),
                views=_parse_count(views_node.attrs.get("count") if views_node else None),
                reactions=reactions,
                message=message,
                from_jid=channel_jid,
            )
        )
    return updates


def _parse_count(value: str | None) -> int:
    try:
        return int(value or "0")
    except ValueError:
        return 0
