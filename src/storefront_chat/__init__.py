"""Client library for storefront buyer/store chat over REST and WebSocket."""

from .api import ChatApiClient
from .auth import CallableCredentials, ChatAuth, StaticCredentials
from .client import ChatClient
from .config import Settings
from .errors import (
    BackendRequestError,
    ChatAuthError,
    ChatError,
    NotFoundError,
    SendFailedError,
    StaleResponseError,
    TransientNetworkError,
    ValidationError,
)
from .models import Conversation, Message, MessageStatus, NewMessageEvent
from .realtime import ConnectionState, RealtimeChannel
from .stores import ConversationStore, MessageStore, ViewState

__all__ = [
    "ChatApiClient",
    "ChatAuth",
    "StaticCredentials",
    "CallableCredentials",
    "ChatClient",
    "Settings",
    "ChatError",
    "TransientNetworkError",
    "BackendRequestError",
    "SendFailedError",
    "ChatAuthError",
    "ValidationError",
    "StaleResponseError",
    "NotFoundError",
    "Conversation",
    "Message",
    "MessageStatus",
    "NewMessageEvent",
    "ConnectionState",
    "RealtimeChannel",
    "ConversationStore",
    "MessageStore",
    "ViewState",
]
