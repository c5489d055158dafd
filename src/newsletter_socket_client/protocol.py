from __future__ import annotations

import json
import secrets
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from .errors import NewsletterDecodeError, NewsletterServerError
from .nodes import S_WHATSAPP_NET, BinaryNode, content_bytes, get_binary_node_child

# Namespace for GraphQL-over-binary-node queries.
WMEX_XMLNS = "w:mex"
NEWSLETTER_XMLNS = "newsletter"
TOS_XMLNS = "tos"

# Terms-of-service notice acknowledged before a channel can be created.
CREATE_TOS_NOTICE_ID = "20601218"
CREATE_TOS_NOTICE_STAGE = "5"

# Sent as `edit` on a reaction message to withdraw the reaction.
REACTION_REMOVE_EDIT = "7"

DEFAULT_FETCH_AFTER = "100"
DEFAULT_FETCH_SINCE = "0"

DEFAULT_SERVER_ERROR_CODE = 400


class QueryId(str, Enum):
    """Server-defined identifiers of the newsletter WMex operations."""

    JOB_MUTATION = "7150902998257522"
    METADATA = "6620195908089573"
    UNFOLLOW = "7238632346214362"
    FOLLOW = "7871414976211147"
    UNMUTE = "7337137176362961"
    MUTE = "25151904754424642"
    CREATE = "6996806640408138"
    ADMIN_COUNT = "7130823597031706"
    CHANGE_OWNER = "7341777602580933"
    DELETE = "8316537688363079"
    DEMOTE = "6551828931592903"
    SUBSCRIBED = "6388546374527196"


class XWAPath(str, Enum):
    """Keys under a decoded result's `data` object."""

    PROMOTE = "xwa2_newsletter_admin_promote"
    DEMOTE = "xwa2_newsletter_admin_demote"
    ADMIN_COUNT = "xwa2_newsletter_admin"
    CREATE = "xwa2_newsletter_create"
    NEWSLETTER = "xwa2_newsletter"
    SUBSCRIBED = "xwa2_newsletter_subscribed"
    METADATA_UPDATE = "xwa2_newsletter_metadata_update"


def generate_message_id() -> str:
    """Return a random client message id."""
    return "3EB0" + secrets.token_hex(18).upper()


def encode_variables(variables: Mapping[str, Any]) -> bytes:
    """Encode WMex variables as the UTF-8 JSON body of a `query` node."""
    return json.dumps({"variables": dict(variables)}, separators=(",", ":")).encode("utf-8")


def make_wmex_query(
    variables: Mapping[str, Any],
    query_id: QueryId | str,
    message_tag: str,
    *,
    iq_type: str = "get",
) -> BinaryNode:
    """Build a WMex `iq` envelope carrying one `query` child."""
    return BinaryNode(
        tag="iq",
        attrs={
            "id": message_tag,
            "type": iq_type,
            "to": S_WHATSAPP_NET,
            "xmlns": WMEX_XMLNS,
        },
        content=[
            BinaryNode(
                tag="query",
                attrs={"query_id": _query_id_value(query_id)},
                content=encode_variables(variables),
            )
        ],
    )


def make_newsletter_wmex_query(
    jid: str | None,
    query_id: QueryId | str,
    message_tag: str,
    content: Mapping[str, Any] | None = None,
) -> BinaryNode:
    """Build a channel-scoped WMex envelope.

    `newsletter_id` is left out of the variables when `jid` is None, for
    operations that are not bound to a channel (creation, invite lookup).
    """
    variables: dict[str, Any] = {}
    if jid is not None:
        variables["newsletter_id"] = jid
    if content:
        variables.update(content)
    return make_wmex_query(variables, query_id, message_tag, iq_type="set")


def make_newsletter_query(
    jid: str,
    iq_type: str,
    message_tag: str,
    content: Sequence[BinaryNode],
) -> BinaryNode:
    """Build a plain `newsletter` namespaced `iq` envelope."""
    return BinaryNode(
        tag="iq",
        attrs={"id": message_tag, "type": iq_type, "xmlns": NEWSLETTER_XMLNS, "to": jid},
        content=list(content),
    )


def make_create_tos_notice(message_tag: str) -> BinaryNode:
    """Build the terms-of-service acknowledgement sent before channel creation."""
    return BinaryNode(
        tag="iq",
        attrs={"to": S_WHATSAPP_NET, "xmlns": TOS_XMLNS, "id": message_tag, "type": "set"},
        content=[
            BinaryNode(
                tag="notice",
                attrs={"id": CREATE_TOS_NOTICE_ID, "stage": CREATE_TOS_NOTICE_STAGE},
                content=[],
            )
        ],
    )


def make_reaction_message(
    jid: str,
    server_id: str,
    code: str | None,
    message_id: str,
) -> BinaryNode:
    """Build a reaction `message` node.

    A falsy `code` withdraws the reaction: the message is flagged with
    `edit="7"` and the nested `reaction` tag carries no `code`.
    """
    attrs: dict[str, str] = {"to": jid}
    if not code:
        attrs["edit"] = REACTION_REMOVE_EDIT
    attrs.update({"type": "reaction", "server_id": server_id, "id": message_id})
    return BinaryNode(
        tag="message",
        attrs=attrs,
        content=[BinaryNode(tag="reaction", attrs={"code": code} if code else {})],
    )


def make_fetch_messages_node(
    kind: str,
    key: str,
    count: int,
    after: int | str | None = None,
) -> BinaryNode:
    """Build the `messages` child used to page through channel messages."""
    attrs: dict[str, str] = {"type": kind}
    if kind == "invite":
        attrs["key"] = key
    else:
        attrs["jid"] = key
    attrs["count"] = str(count)
    attrs["after"] = _attr_or_default(after, DEFAULT_FETCH_AFTER)
    return BinaryNode(tag="messages", attrs=attrs)


def make_fetch_updates_node(
    count: int,
    after: int | str | None = None,
    since: int | str | None = None,
) -> BinaryNode:
    """Build the `message_updates` child used to page through channel updates."""
    return BinaryNode(
        tag="message_updates",
        attrs={
            "count": str(count),
            "after": _attr_or_default(after, DEFAULT_FETCH_AFTER),
            "since": _attr_or_default(since, DEFAULT_FETCH_SINCE),
        },
    )


def unwrap_result(node: BinaryNode) -> Any | None:
    """Decode the JSON body of the `result` child of a WMex response.

    Returns None when the response has no `result` child or the child has no
    payload. Invalid JSON raises `NewsletterDecodeError`.
    """
    payload = content_bytes(get_binary_node_child(node, "result"))
    if not payload:
        return None
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise NewsletterDecodeError(
            f"result payload is not valid JSON: {exc}",
            content=payload,
        ) from exc


def extract_errors(body: Any) -> list[Any]:
    """Return the server `errors` list of a decoded body, or an empty list."""
    if not isinstance(body, Mapping):
        return []
    errors = body.get("errors")
    if isinstance(errors, list):
        return errors
    return []


def raise_for_server_errors(body: Any) -> None:
    """Raise `NewsletterServerError` when the decoded body lists errors."""
    errors = extract_errors(body)
    if not errors:
        return
    messages = ", ".join(_error_message(error) for error in errors)
    first = errors[0]
    raise NewsletterServerError(
        f"GraphQL server error: {messages}",
        status_code=_error_code(first),
        data=first,
    )


def humanize_data_path(data_path: str | None) -> str:
    """Turn a data path into an action phrase for error messages.

    One leading ``xwa2_`` is removed and underscores become spaces, so
    ``xwa2_newsletter_subscribed`` reads ``newsletter subscribed``.
    """
    if not data_path:
        return ""
    if data_path.startswith("xwa2_"):
        data_path = data_path[len("xwa2_"):]
    return data_path.replace("_", " ")


def _error_message(error: Any) -> str:
    if isinstance(error, Mapping):
        message = error.get("message")
        if message:
            return str(message)
    return "Unknown error"


def _error_code(error: Any) -> int:
    if not isinstance(error, Mapping):
        return DEFAULT_SERVER_ERROR_CODE
    extensions = error.get("extensions")
    if not isinstance(extensions, Mapping):
        return DEFAULT_SERVER_ERROR_CODE
    code = extensions.get("error_code")
    if isinstance(code, bool) or not code:
        return DEFAULT_SERVER_ERROR_CODE
    if isinstance(code, int):
        return code
    try:
        return int(str(code).strip()) or DEFAULT_SERVER_ERROR_CODE
    except ValueError:
        return DEFAULT_SERVER_ERROR_CODE


def _query_id_value(query_id: QueryId | str) -> str:
    if isinstance(query_id, QueryId):
        return query_id.value
    return str(query_id)


def _attr_or_default(value: int | str | None, default: str) -> str:
    if value is None or value == "":
        return default
    return str(value)
