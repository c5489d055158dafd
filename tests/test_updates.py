from __future__ import annotations

from newsletter_socket_client.nodes import BinaryNode
from newsletter_socket_client.updates import parse_fetched_updates


def _message(server_id: str, views: str | None, plaintext: bytes | None = None) -> BinaryNode:
    children = [
        BinaryNode(
            tag="reactions",
            content=[
                BinaryNode(tag="reaction", attrs={"code": "👍", "count": "3"}),
                BinaryNode(tag="reaction", attrs={"code": "🔥", "count": "1"}),
            ],
        )
    ]
    if views is not None:
        children.append(BinaryNode(tag="views_count", attrs={"count": views}))
    if plaintext is not None:
        children.append(BinaryNode(tag="plaintext", content=plaintext))
    return BinaryNode(tag="message", attrs={"server_id": server_id}, content=children)


def test_parse_fetched_messages() -> None:
    reply = BinaryNode(
        tag="iq",
        content=[
            BinaryNode(
                tag="messages",
                attrs={"jid": "1@newsletter"},
                content=[_message("100", "25", b"\x0a\x02hi"), _message("101", None)],
            )
        ],
    )
    first, second = parse_fetched_updates(reply, "messages")

    assert first.server_id == "100"
    assert first.views == 25
    assert [(r.code, r.count) for r in first.reactions] == [("👍", 3), ("🔥", 1)]
    assert first.message == b"\x0a\x02hi"
    assert first.from_jid == "1@newsletter"
    assert second.views == 0
    assert second.message is None


def test_parse_fetched_updates_reads_nested_messages() -> None:
    reply = BinaryNode(
        tag="iq",
        content=[
            BinaryNode(
                tag="message_updates",
                content=[BinaryNode(tag="messages", content=[_message("7", "9", b"ignored")])],
            )
        ],
    )
    (update,) = parse_fetched_updates(reply, "updates")
    assert update.server_id == "7"
    assert update.views == 9
    assert update.message is None


def test_parse_fetched_updates_without_container_is_empty() -> None:
    assert parse_fetched_updates(BinaryNode(tag="iq", content=[]), "messages") == []
    assert parse_fetched_updates(BinaryNode(tag="iq", content=[]), "updates") == []
