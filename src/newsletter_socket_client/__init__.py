from .client import NewsletterClient
from .errors import (
    NewsletterDecodeError,
    NewsletterError,
    NewsletterServerError,
    NewsletterTimeoutError,
    NewsletterTransportError,
    NewsletterUnexpectedResponseError,
    NewsletterUnknownActionError,
)
from .events import CONNECTION_UPDATE, EventEmitter
from .metadata import extract_newsletter_metadata, get_url_from_direct_path
from .models import (
    FetchedUpdate,
    FollowResult,
    FollowState,
    NewsletterConfig,
    NewsletterMetadata,
    ProfilePicture,
    ReactionCount,
    ReactionMode,
    ViewRole,
)
from .nodes import S_WHATSAPP_NET, BinaryNode, get_binary_node_child, get_binary_node_children
from .protocol import QueryId, XWAPath
from .transport import Transport, WebSocketTransport

__all__ = [
    "BinaryNode",
    "CONNECTION_UPDATE",
    "EventEmitter",
    "FetchedUpdate",
    "FollowResult",
    "FollowState",
    "NewsletterClient",
    "NewsletterConfig",
    "NewsletterDecodeError",
    "NewsletterError",
    "NewsletterMetadata",
    "NewsletterServerError",
    "NewsletterTimeoutError",
    "NewsletterTransportError",
    "NewsletterUnexpectedResponseError",
    "NewsletterUnknownActionError",
    "ProfilePicture",
    "QueryId",
    "ReactionCount",
    "ReactionMode",
    "S_WHATSAPP_NET",
    "Transport",
    "ViewRole",
    "WebSocketTransport",
    "XWAPath",
    "extract_newsletter_metadata",
    "get_binary_node_child",
    "get_binary_node_children",
    "get_url_from_direct_path",
]
