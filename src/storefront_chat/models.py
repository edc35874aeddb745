"""
Pydantic models for the storefront chat API.

Wire names follow the storefront backend (``message`` for the body text,
``unread_count_seller`` for the store-side counter, ``lastMessage`` for the
preview); attributes use the names the rest of the package works with.
Numeric ids are coerced to strings so ids from REST and the socket compare
equal.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class WireModel(BaseModel):
    """Base for models parsed from backend payloads."""

    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class ApiEnvelope(WireModel):
    """Standard ``{success, data, message}`` response wrapper."""

    success: bool
    data: Any = None
    message: Optional[str] = None


class UserSummary(WireModel):
    """Buyer side of a conversation."""

    user_id: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None


class StoreSummary(WireModel):
    """Store side of a conversation."""

    store_id: Optional[str] = None
    store_name: Optional[str] = None
    logo_url: Optional[str] = None


class LastMessage(WireModel):
    """Preview of the last message in a conversation."""

    sender_id: Optional[str] = None
    text: str = Field(default="", validation_alias=AliasChoices("message", "text"))
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_aware(value)


class Conversation(WireModel):
    """Single buyer/store conversation as listed by the backend."""

    conversation_id: str
    user_id: str
    store_id: str
    user: Optional[UserSummary] = None
    store: Optional[StoreSummary] = None
    unread_count_user: int = 0
    unread_count_store: int = Field(
        default=0,
        validation_alias=AliasChoices("unread_count_store", "unread_count_seller"),
    )
    last_message: Optional[LastMessage] = Field(
        default=None,
        validation_alias=AliasChoices("last_message", "lastMessage"),
    )
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("last_message_at", "created_at")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_aware(value)

    def is_buyer(self, viewer_id: Optional[str]) -> bool:
        """The viewer is the buyer unless a different id was configured."""
        return viewer_id is None or str(viewer_id) == self.user_id

    def unread_for(self, viewer_id: Optional[str]) -> int:
        if self.is_buyer(viewer_id):
            return self.unread_count_user
        return self.unread_count_store

    def with_unread(self, viewer_id: Optional[str], count: int) -> "Conversation":
        field = "unread_count_user" if self.is_buyer(viewer_id) else "unread_count_store"
        return self.model_copy(update={field: max(count, 0)})

    def other_party_name(self, viewer_id: Optional[str]) -> str:
        if self.is_buyer(viewer_id):
            name = self.store.store_name if self.store else None
            return name or f"store {self.store_id}"
        name = self.user.full_name if self.user else None
        return name or f"user {self.user_id}"


class ConversationList(WireModel):
    conversations: List[Conversation] = Field(default_factory=list)


class MessageStatus(str, Enum):
    """Delivery state of a message in the local store."""

    PENDING = "pending"
    CONFIRMED = "confirmed"


class Message(WireModel):
    """Single chat message."""

    message_id: Optional[str] = None
    conversation_id: str
    sender_id: Optional[str] = None
    text: str = Field(validation_alias=AliasChoices("message", "text"))
    created_at: datetime = Field(default_factory=utcnow)
    is_read: bool = False
    sender: Optional[UserSummary] = None

    # Local bookkeeping, never sent by the backend.
    local_id: Optional[str] = None
    status: MessageStatus = MessageStatus.CONFIRMED

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_aware(value)

    @property
    def is_pending(self) -> bool:
        return self.status == MessageStatus.PENDING

    def preview(self) -> LastMessage:
        return LastMessage(sender_id=self.sender_id, text=self.text, created_at=self.created_at)


class MessageList(WireModel):
    messages: List[Message] = Field(default_factory=list)


class UnreadCount(WireModel):
    count: int = 0


class NewMessageEvent(WireModel):
    """Payload of an inbound ``new_message`` realtime event."""

    conversation_id: str
    message: Message

    @classmethod
    def from_payload(cls, payload: Any) -> "NewMessageEvent":
        """Fill the nested message's conversation id from the envelope when absent."""
        if isinstance(payload, dict):
            message = payload.get("message")
            conversation_id = payload.get("conversation_id")
            if isinstance(message, dict) and "conversation_id" not in message:
                payload = {**payload, "message": {**message, "conversation_id": conversation_id}}
        return cls.model_validate(payload)
