from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

# Server jid used as the destination of account-level queries.
S_WHATSAPP_NET = "s.whatsapp.net"

NodeContent = Union[list["BinaryNode"], bytes, str, None]


@dataclass(slots=True)
class BinaryNode:
    """One node of the binary protocol tree.

    Attributes:
        tag: Node tag, e.g. ``iq``, ``query`` or ``result``.
        attrs: String attributes of the node.
        content: Child nodes, a raw byte payload, text, or nothing.
    """

    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    content: NodeContent = None


def get_binary_node_children(node: BinaryNode | None, tag: str) -> list[BinaryNode]:
    """Return all direct children of `node` carrying `tag`."""
    if node is None or not isinstance(node.content, list):
        return []
    return [child for child in node.content if isinstance(child, BinaryNode) and child.tag == tag]


def get_binary_node_child(node: BinaryNode | None, tag: str) -> BinaryNode | None:
    """Return the first direct child of `node` carrying `tag`, if any."""
    if node is None or not isinstance(node.content, list):
        return None
    for child in node.content:
        if isinstance(child, BinaryNode) and child.tag == tag:
            return child
    return None


def get_all_binary_node_children(node: BinaryNode | None) -> list[BinaryNode]:
    if node is None or not isinstance(node.content, list):
        return []
    return [child for child in node.content if isinstance(child, BinaryNode)]


def content_bytes(node: BinaryNode | None) -> bytes | None:
    """Return the node payload as bytes, or None when it carries no payload."""
    if node is None:
        return None
    content = node.content
    if isinstance(content, (bytes, bytearray)):
        return bytes(content)
    if isinstance(content, str):
        return content.encode("utf-8")
    return None
