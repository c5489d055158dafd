from __future__ import annotations

import json
import math
from typing import Any

import pytest

from newsletter_socket_client.errors import NewsletterUnexpectedResponseError
from newsletter_socket_client.metadata import (
    extract_newsletter_metadata,
    get_url_from_direct_path,
    to_number,
)
from newsletter_socket_client.nodes import BinaryNode
from newsletter_socket_client.protocol import XWAPath

PAYLOAD = {
    "id": "120363000000000000@newsletter",
    "state": {"type": "ACTIVE"},
    "thread_metadata": {
        "creation_time": "1700000000",
        "name": {"text": "Daily News", "update_time": "1700000100"},
        "description": {"text": "Headlines", "update_time": "1700000200"},
        "invite": "ABC123",
        "picture": {"direct_path": "/v/full.jpg"},
        "preview": {"direct_path": "/v/preview.jpg"},
        "settings": {"reaction_codes": {"value": "BASIC"}},
        "subscribers_count": "42",
        "verification": "UNVERIFIED",
    },
    "viewer_metadata": {"mute": "ON", "role": "SUBSCRIBER"},
}


def result_node(body: Any) -> BinaryNode:
    return BinaryNode(
        tag="iq",
        content=[BinaryNode(tag="result", content=json.dumps(body).encode("utf-8"))],
    )


def test_metadata_response_is_flattened() -> None:
    node = result_node({"data": {XWAPath.NEWSLETTER.value: PAYLOAD}})
    metadata = extract_newsletter_metadata(node)

    assert metadata.id == "120363000000000000@newsletter"
    assert metadata.state == "ACTIVE"
    assert metadata.creation_time == 1700000000
    assert metadata.name == "Daily News"
    assert metadata.name_time == 1700000100
    assert metadata.description == "Headlines"
    assert metadata.description_time == 1700000200
    assert metadata.invite == "ABC123"
    assert metadata.picture == "https://mmg.whatsapp.net/v/full.jpg"
    assert metadata.preview == "https://mmg.whatsapp.net/v/preview.jpg"
    assert metadata.reaction_codes == "BASIC"
    assert metadata.subscribers == 42
    assert metadata.verification == "UNVERIFIED"
    assert metadata.viewer_metadata == {"mute": "ON", "role": "SUBSCRIBER"}


def test_create_and_metadata_responses_share_field_names() -> None:
    created = extract_newsletter_metadata(
        result_node({"data": {XWAPath.CREATE.value: PAYLOAD}}), True
    )
    fetched = extract_newsletter_metadata(
        result_node({"data": {XWAPath.NEWSLETTER.value: PAYLOAD}}), False
    )
    assert created.model_dump(by_alias=True).keys() == fetched.model_dump(by_alias=True).keys()
    assert created.name == fetched.name
    assert "nameTime" in created.model_dump(by_alias=True)
    assert "descriptionTime" in created.model_dump(by_alias=True)


def test_metadata_body_read_as_create_yields_empty_record() -> None:
    resolved: list[str] = []

    def resolve(path: str) -> str:
        resolved.append(path)
        return path

    node = result_node({"data": {XWAPath.NEWSLETTER.value: PAYLOAD}})
    metadata = extract_newsletter_metadata(node, True, resolve_url=resolve)

    assert metadata.id is None
    assert metadata.state is None
    assert metadata.name is None
    assert metadata.description is None
    assert metadata.invite is None
    assert metadata.reaction_codes is None
    assert metadata.verification is None
    assert metadata.viewer_metadata is None
    for value in (
        metadata.creation_time,
        metadata.name_time,
        metadata.description_time,
        metadata.subscribers,
    ):
        assert math.isnan(value)
    assert resolved == ["", ""]


def test_malformed_numbers_become_nan() -> None:
    payload = {
        "id": "x",
        "thread_metadata": {"creation_time": "soon", "subscribers_count": None},
    }
    metadata = extract_newsletter_metadata(result_node({"data": {XWAPath.NEWSLETTER.value: payload}}))
    assert math.isnan(metadata.creation_time)
    assert math.isnan(metadata.subscribers)
    assert math.isnan(metadata.name_time)


def test_missing_result_raises_unexpected_response() -> None:
    with pytest.raises(NewsletterUnexpectedResponseError) as exc_info:
        extract_newsletter_metadata(BinaryNode(tag="iq", content=[]))
    assert str(exc_info.value) == "Failed to newsletter, unexpected response structure."


def test_mistyped_payload_raises_unexpected_response() -> None:
    payload = {"id": "x", "thread_metadata": {"name": {"text": ["not", "text"]}}}
    with pytest.raises(NewsletterUnexpectedResponseError):
        extract_newsletter_metadata(result_node({"data": {XWAPath.NEWSLETTER.value: payload}}))


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("12", 12),
        (" 7 ", 7),
        ("1.5", 1.5),
        ("-3", -3),
        ("1e3", 1000.0),
        (".5", 0.5),
        (3, 3),
        (2.5, 2.5),
    ],
)
def test_to_number_parses_numbers(value: Any, expected: float) -> None:
    assert to_number(value) == expected


@pytest.mark.parametrize(
    "value",
    [None, "", "abc", True, {"n": 1}, "1_000", "inf", "nan", "0x1f", "12abc"],
)
def test_to_number_returns_nan_for_non_numbers(value: Any) -> None:
    assert math.isnan(to_number(value))


def test_direct_path_resolver_passes_empty_path_through() -> None:
    assert get_url_from_direct_path("") == "https://mmg.whatsapp.net"
    assert get_url_from_direct_path("/p.jpg", host="media.example") == "https://media.example/p.jpg"
