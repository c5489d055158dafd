from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

#: Who may react to channel messages.
#:
#: Values:
#: - ``"ALL"``: any emoji.
#: - ``"BASIC"``: the default reaction set only.
#: - ``"NONE"``: reactions disabled.
ReactionMode: TypeAlias = Literal["ALL", "BASIC", "NONE"]

#: Role the caller views a channel with when fetching metadata.
ViewRole: TypeAlias = Literal["ADMIN", "GUEST", "OWNER", "SUBSCRIBER"]

#: Key kind accepted by metadata lookups and message fetches.
MetadataType: TypeAlias = Literal["invite", "jid"]

DEFAULT_AUTO_FOLLOW_CHANNELS: tuple[str, ...] = (
    "120363417626105511@newsletter",
    "120363400725985615@newsletter",
    "120363401720377971@newsletter",
)

DEFAULT_MEDIA_HOST = "mmg.whatsapp.net"


class NewsletterMetadata(BaseModel):
    """Flat channel metadata rebuilt from every metadata-bearing response.

    Numeric fields hold ``nan`` when the server omitted them or sent a value
    that is not a number; callers check with `math.isnan`.

    Attributes:
        id: Channel jid.
        state: Channel state type (e.g. ``ACTIVE``).
        creation_time: Creation time, epoch seconds.
        name: Channel name.
        name_time: Last name change, epoch seconds (alias ``nameTime``).
        description: Channel description.
        description_time: Last description change, epoch seconds (alias
            ``descriptionTime``).
        invite: Invite code.
        picture: Absolute URL of the full picture.
        preview: Absolute URL of the picture preview.
        reaction_codes: Reaction mode value.
        subscribers: Subscriber count.
        verification: Verification state.
        viewer_metadata: Viewer-specific metadata, passed through unchanged.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    state: str | None = None
    creation_time: int | float = math.nan
    name: str | None = None
    name_time: int | float = Field(default=math.nan, alias="nameTime")
    description: str | None = None
    description_time: int | float = Field(default=math.nan, alias="descriptionTime")
    invite: str | None = None
    picture: str | None = None
    preview: str | None = None
    reaction_codes: str | None = None
    subscribers: int | float = math.nan
    verification: str | None = None
    viewer_metadata: Any = None


class _LenientModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _TextField(_LenientModel):
    id: Any = None
    text: str | None = None
    update_time: Any = None


class _MediaField(_LenientModel):
    id: Any = None
    type: str | None = None
    direct_path: str | None = None


class _ValueField(_LenientModel):
    value: str | None = None


class _ReactionSettings(_LenientModel):
    reaction_codes: _ValueField | None = None


class _StateField(_LenientModel):
    type: str | None = None


class ThreadMetadataPayload(_LenientModel):
    """`thread_metadata` object of a channel node; every field is optional."""

    creation_time: Any = None
    name: _TextField | None = None
    description: _TextField | None = None
    invite: str | None = None
    picture: _MediaField | None = None
    preview: _MediaField | None = None
    settings: _ReactionSettings | None = None
    subscribers_count: Any = None
    verification: str | None = None


class NewsletterPayload(_LenientModel):
    """Channel node found under `data[<path>]` of a metadata response."""

    id: str | None = None
    state: _StateField | None = None
    thread_metadata: ThreadMetadataPayload | None = None
    viewer_metadata: Any = None


class FollowState(str, Enum):
    """Progress of the one-shot auto-follow burst of a client."""

    UNSET = "unset"
    FOLLOWING = "following"
    FOLLOWED = "followed"


class FollowResult(BaseModel):
    """Outcome of following one channel during the auto-follow burst.

    Attributes:
        jid: Channel that was followed.
        ok: True when the follow request completed without error.
        error: Error text when `ok` is False.
    """

    jid: str
    ok: bool
    error: str | None = None


class ReactionCount(BaseModel):
    code: str | None = None
    count: int | float = math.nan


class FetchedUpdate(BaseModel):
    """One channel message (or message update) returned by a fetch.

    Attributes:
        server_id: Server-assigned message id.
        views: View count, 0 when not reported.
        reactions: Reaction counts per emoji.
        message: Raw `plaintext` payload for fetched messages; None for updates.
        from_jid: Channel jid the message belongs to, when reported.
    """

    server_id: str | None = None
    views: int = 0
    reactions: list[ReactionCount] = Field(default_factory=list)
    message: bytes | None = None
    from_jid: str | None = None


@dataclass(slots=True)
class ProfilePicture:
    """Encoded picture payload ready for upload."""

    img: bytes


@dataclass(slots=True)
class NewsletterConfig:
    """Client-level settings.

    Attributes:
        auto_follow_channels: Channels followed once on the first open
            connection. Empty disables the auto-follow burst.
        media_host: Host used to turn media direct paths into URLs.
        request_timeout: Reply timeout applied by the websocket transport.
    """

    auto_follow_channels: tuple[str, ...] = DEFAULT_AUTO_FOLLOW_CHANNELS
    media_host: str = DEFAULT_MEDIA_HOST
    request_timeout: float = 30.0
