"""
Message history of the open conversation.

Only one conversation is held at a time; opening another discards the list.
Rules:
- Messages are kept in ascending ``created_at`` order; equal timestamps keep
  arrival order.
- ``message_id`` is the only dedup key. A realtime echo of a message we
  already hold is a no-op, whichever of REST and socket delivered it first.
- A send is confirmed by its REST response. The optimistic entry is found by
  its temporary id and replaced (or dropped if the echo got there first).
  A send only touches the view it was started from; reopening the same
  conversation starts a new view.
- Responses for a conversation that is no longer open are discarded.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Iterable, List, Optional, Set, Tuple
from uuid import uuid4

from ..errors import (
    ChatError,
    NotFoundError,
    SendFailedError,
    StaleResponseError,
    ValidationError,
)
from ..models import Conversation, Message, MessageStatus, NewMessageEvent
from .base import ObservableStore, ViewState

if TYPE_CHECKING:
    from ..api import ChatApiClient

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_LENGTH = 1000


@dataclass(frozen=True)
class MessageViewState:
    """Render-ready snapshot of the open conversation."""

    conversation_id: Optional[str] = None
    conversation: Optional[Conversation] = None
    messages: Tuple[Message, ...] = ()
    status: ViewState = ViewState.IDLE
    error: Optional[str] = None
    draft: str = ""

    @property
    def pending(self) -> Tuple[Message, ...]:
        return tuple(m for m in self.messages if m.is_pending)


def _insert_sorted(messages: List[Message], message: Message) -> None:
    index = bisect.bisect_right([m.created_at for m in messages], message.created_at)
    messages.insert(index, message)


def _contains(messages: Iterable[Message], message_id: Optional[str]) -> bool:
    return message_id is not None and any(m.message_id == message_id for m in messages)


def validate_message_text(text: str, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> str:
    """Return the trimmed body to send, or raise ValidationError."""
    body = (text or "").strip()
    if not body:
        raise ValidationError("Message cannot be empty", code="message_empty")
    if len(body) > max_length:
        raise ValidationError(
            f"Message is longer than {max_length} characters",
            code="message_too_long",
            details={"length": len(body), "max_length": max_length},
        )
    return body


class MessageStore(ObservableStore[MessageViewState]):
    """Owns the message list of the currently open conversation."""

    def __init__(
        self,
        api: ChatApiClient,
        viewer_id: Optional[str] = None,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
    ) -> None:
        super().__init__(MessageViewState())
        self.api = api
        self.viewer_id = str(viewer_id) if viewer_id is not None else None
        self.max_message_length = max_message_length
        self._active_id: Optional[str] = None
        self._in_flight: Set[str] = set()

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    @property
    def messages(self) -> List[Message]:
        return list(self.state.messages)

    def _ensure_active(self, conversation_id: str) -> None:
        if conversation_id != self._active_id:
            raise StaleResponseError(conversation_id, self._active_id)

    def _merge(self, history: Iterable[Message]) -> Tuple[Message, ...]:
        """Combine fetched history with what arrived locally while it was in flight."""
        merged = sorted(history, key=lambda m: m.created_at)
        for message in self.state.messages:
            if message.is_pending or not _contains(merged, message.message_id):
                _insert_sorted(merged, message)
        return tuple(merged)

    async def open_conversation(self, conversation_id: str) -> MessageViewState:
        conversation_id = str(conversation_id)
        self._active_id = conversation_id
        self._in_flight = set()
        self._set_state(MessageViewState(conversation_id=conversation_id, status=ViewState.LOADING))
        self._spawn(self._mark_read_quietly(conversation_id))

        try:
            await self._load(conversation_id)
        except StaleResponseError as e:
            logger.debug("[MESSAGES] Discarding stale load: %s", e.message)
        return self.state

    async def _load(self, conversation_id: str) -> None:
        try:
            conversation, history = await asyncio.gather(
                self.api.get_conversation(conversation_id),
                self.api.list_messages(conversation_id),
            )
        except NotFoundError as e:
            self._ensure_active(conversation_id)
            logger.info("[MESSAGES] Conversation %s not found", conversation_id)
            self._set_state(replace(self.state, status=ViewState.NOT_FOUND, error=e.message))
            raise
        except ChatError as e:
            self._ensure_active(conversation_id)
            logger.warning("[MESSAGES] Failed to load conversation %s: %s", conversation_id, e.message)
            self._set_state(replace(self.state, status=ViewState.ERROR, error=e.message))
            raise

        self._ensure_active(conversation_id)
        self._set_state(
            replace(
                self.state,
                conversation=conversation,
                messages=self._merge(history),
                status=ViewState.SENDING if self._in_flight else ViewState.READY,
                error=None,
            )
        )
        logger.debug("[MESSAGES] Loaded %d messages for %s", len(history), conversation_id)

    async def refresh(self) -> MessageViewState:
        """Reload the open conversation's history without dropping local entries."""
        conversation_id = self._active_id
        if conversation_id is None or self.state.status == ViewState.NOT_FOUND:
            return self.state
        try:
            history = await self.api.list_messages(conversation_id)
        except ChatError as e:
            if conversation_id != self._active_id:
                logger.debug("[MESSAGES] Discarding failed refresh of %s", conversation_id)
                return self.state
            self._set_state(replace(self.state, status=ViewState.ERROR, error=e.message))
            raise
        if conversation_id != self._active_id:
            logger.debug("[MESSAGES] Discarding stale refresh of %s", conversation_id)
            return self.state

        status = self.state.status
        if status in (ViewState.LOADING, ViewState.ERROR):
            status = ViewState.SENDING if self._in_flight else ViewState.READY
        self._set_state(replace(self.state, messages=self._merge(history), status=status, error=None))
        return self.state

    def _validate(self, text: str) -> Tuple[str, str]:
        if self._active_id is None:
            raise ValidationError("No conversation is open", code="no_conversation")
        return self._active_id, validate_message_text(text, self.max_message_length)

    async def send_message(self, text: str) -> Message:
        conversation_id, body = self._validate(text)

        local_id = f"temp-{uuid4()}"
        optimistic = Message(
            local_id=local_id,
            conversation_id=conversation_id,
            sender_id=self.viewer_id,
            text=body,
            status=MessageStatus.PENDING,
        )
        messages = list(self.state.messages)
        _insert_sorted(messages, optimistic)
        self._in_flight.add(local_id)
        self._set_state(
            replace(
                self.state,
                messages=tuple(messages),
                status=ViewState.SENDING,
                error=None,
                draft="",
            )
        )

        try:
            confirmed = await self.api.send_message(conversation_id, body)
        except ChatError as e:
            if local_id in self._in_flight:
                self._in_flight.discard(local_id)
                self._set_state(
                    replace(
                        self.state,
                        messages=tuple(m for m in self.state.messages if m.local_id != local_id),
                        status=ViewState.ERROR,
                        error=e.message,
                        draft=text,
                    )
                )
            logger.warning("[MESSAGES] Send to %s failed: %s", conversation_id, e.message)
            raise SendFailedError(e.message, text=text, cause=e) from e

        confirmed = confirmed.model_copy(update={"status": MessageStatus.CONFIRMED, "local_id": None})
        if local_id not in self._in_flight:
            logger.debug("[MESSAGES] Send confirmed after leaving %s", conversation_id)
            return confirmed

        self._in_flight.discard(local_id)
        messages = [m for m in self.state.messages if m.local_id != local_id]
        if not _contains(messages, confirmed.message_id):
            _insert_sorted(messages, confirmed)
        status = self.state.status
        if status == ViewState.SENDING and not self._in_flight:
            status = ViewState.READY
        self._set_state(replace(self.state, messages=tuple(messages), status=status))
        return confirmed

    async def apply_incoming_message_event(self, event: NewMessageEvent) -> bool:
        """Add a realtime message to the open conversation; returns False when ignored."""
        if event.conversation_id != self._active_id:
            return False
        message = event.message
        if _contains(self.state.messages, message.message_id):
            logger.debug("[MESSAGES] Duplicate message %s ignored", message.message_id)
            return False

        messages = list(self.state.messages)
        _insert_sorted(
            messages,
            message.model_copy(update={"status": MessageStatus.CONFIRMED, "local_id": None}),
        )
        self._set_state(replace(self.state, messages=tuple(messages)))
        self._spawn(self._mark_read_quietly(event.conversation_id))
        return True

    def mark_read(self) -> None:
        """Fire-and-forget read receipt for the open conversation."""
        if self._active_id is not None:
            self._spawn(self._mark_read_quietly(self._active_id))

    async def _mark_read_quietly(self, conversation_id: str) -> None:
        try:
            await self.api.mark_read(conversation_id)
        except Exception as e:
            logger.warning("[MESSAGES] Mark as read failed for %s: %s", conversation_id, e)

    def set_draft(self, text: str) -> None:
        self._set_state(replace(self.state, draft=text))

    def dismiss_error(self) -> None:
        if self.state.status != ViewState.ERROR:
            self._set_state(replace(self.state, error=None))
            return
        status = ViewState.SENDING if self._in_flight else ViewState.READY
        self._set_state(replace(self.state, error=None, status=status))

    def close(self) -> None:
        """Forget the open conversation; late responses for it are discarded."""
        self._active_id = None
        self._in_flight = set()
        self._set_state(MessageViewState())
