"""Render-ready chat state with push-based subscriptions."""

from .base import ObservableStore, ViewState
from .conversations import ConversationListState, ConversationStore
from .messages import MessageStore, MessageViewState, validate_message_text

__all__ = [
    "ObservableStore",
    "ViewState",
    "ConversationStore",
    "ConversationListState",
    "MessageStore",
    "MessageViewState",
    "validate_message_text",
]
