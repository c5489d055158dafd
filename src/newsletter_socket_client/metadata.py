from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError

from .errors import NewsletterUnexpectedResponseError
from .models import DEFAULT_MEDIA_HOST, NewsletterMetadata, NewsletterPayload
from .nodes import BinaryNode
from .protocol import XWAPath, humanize_data_path, unwrap_result

UrlResolver = Callable[[str], str]

# Plain decimal or exponent notation; no digit separators, inf or nan.
_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)


def get_url_from_direct_path(direct_path: str, *, host: str = DEFAULT_MEDIA_HOST) -> str:
    """Resolve a server-relative media path into a fetchable URL."""
    return f"https://{host}{direct_path}"


def extract_newsletter_metadata(
    node: BinaryNode,
    is_create: bool = False,
    *,
    resolve_url: UrlResolver = get_url_from_direct_path,
) -> NewsletterMetadata:
    """Normalize the metadata carried by a WMex response node.

    Create responses keep the channel under a different key than metadata
    lookups; `is_create` selects which one is read.
    """
    body = unwrap_result(node)
    if body is None:
        path = _metadata_path(is_create)
        raise NewsletterUnexpectedResponseError(
            f"Failed to {humanize_data_path(path)}, unexpected response structure.",
            data=node,
        )
    return metadata_from_body(body, is_create, resolve_url=resolve_url)


def metadata_from_body(
    body: Any,
    is_create: bool = False,
    *,
    resolve_url: UrlResolver = get_url_from_direct_path,
) -> NewsletterMetadata:
    """Normalize an already decoded result body."""
    data = body.get("data") if isinstance(body, Mapping) else None
    raw = data.get(_metadata_path(is_create)) if isinstance(data, Mapping) else None
    try:
        payload = NewsletterPayload.model_validate(raw if isinstance(raw, Mapping) else {})
    except ValidationError as exc:
        raise NewsletterUnexpectedResponseError(
            f"Failed to decode newsletter metadata: {exc.error_count()} invalid field(s).",
            data=body,
        ) from exc

    thread = payload.thread_metadata
    name = thread.name if thread else None
    description = thread.description if thread else None
    picture = thread.picture if thread else None
    preview = thread.preview if thread else None
    settings = thread.settings if thread else None
    reaction_codes = settings.reaction_codes if settings else None

    return NewsletterMetadata(
        id=payload.id,
        state=payload.state.type if payload.state else None,
        creation_time=to_number(thread.creation_time if thread else None),
        name=name.text if name else None,
        name_time=to_number(name.update_time if name else None),
        description=description.text if description else None,
        description_time=to_number(description.update_time if description else None),
        invite=thread.invite if thread else None,
        picture=resolve_url((picture.direct_path if picture else None) or ""),
        preview=resolve_url((preview.direct_path if preview else None) or ""),
        reaction_codes=reaction_codes.value if reaction_codes else None,
        subscribers=to_number(thread.subscribers_count if thread else None),
        verification=thread.verification if thread else None,
        viewer_metadata=payload.viewer_metadata,
    )


def to_number(value: Any) -> int | float:
    """Coerce a server numeric field, returning ``nan`` when it is not a number.

    Strings must be plain decimal text (``"12"``, ``"1.5"``, ``"1e3"``);
    empty strings, digit separators and ``inf``/``nan`` spellings give ``nan``.
    """
    if value is None or isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return value
    if not isinstance(value, str):
        return math.nan
    text = value.strip()
    if not _NUMBER_RE.fullmatch(text):
        return math.nan
    try:
        return int(text)
    except ValueError:
        return float(text)


def _metadata_path(is_create: bool) -> str:
    return XWAPath.CREATE.value if is_create else XWAPath.NEWSLETTER.value
