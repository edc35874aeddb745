"""Chat facade used by the presentation layer."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from .api import ChatApiClient
from .auth import ChatAuth, CredentialProvider, credentials_from_settings
from .config import Settings
from .errors import ChatError, SendFailedError
from .events import EventType
from .models import Conversation, Message, NewMessageEvent
from .realtime import ConnectionState, RealtimeChannel, Unsubscribe
from .stores import ConversationStore, MessageStore, MessageViewState, validate_message_text

logger = logging.getLogger(__name__)


class ChatClient:
    """
    Combines the REST port and the realtime channel behind the operations a UI calls.

    Usage:
        async with ChatClient(settings) as chat:
            await chat.list_conversations()
            await chat.open_conversation(conversation_id)
            chat.messages.subscribe(render)
            await chat.send(conversation_id, "Hello")

    The stores (``conversations`` and ``messages``) hold the state; subscribe
    to them for snapshots after every change.
    """

    def __init__(
        self,
        settings: Settings,
        credentials: Optional[CredentialProvider] = None,
        *,
        api: Optional[ChatApiClient] = None,
        channel: Optional[RealtimeChannel] = None,
        viewer_id: Optional[str] = None,
    ) -> None:
        self.settings = settings
        credentials = credentials or credentials_from_settings(settings)
        self.viewer_id = viewer_id if viewer_id is not None else settings.user_id
        self.api = api or ChatApiClient(settings, ChatAuth(credentials))
        self.channel = channel or RealtimeChannel.from_settings(settings, credentials)
        self.conversations = ConversationStore(self.api, viewer_id=self.viewer_id)
        self.messages = MessageStore(
            self.api,
            viewer_id=self.viewer_id,
            max_message_length=settings.max_message_length,
        )
        self._unsubscribers: List[Unsubscribe] = []
        self._tasks: Set[asyncio.Task[None]] = set()
        self._has_connected = False
        self._started = False

    async def __aenter__(self) -> "ChatClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def start(self, connect: bool = True) -> None:
        """Wire channel events to the stores and (optionally) open the socket."""
        if self._started:
            return
        self._unsubscribers.append(
            self.channel.subscribe(EventType.NEW_MESSAGE, self._handle_new_message)
        )
        self._unsubscribers.append(self.channel.on_state_change(self._handle_connection_state))
        self._started = True
        if connect:
            await self.channel.connect()

    async def get_or_create_conversation(self, store_id: str | int) -> Conversation:
        conversation = await self.api.get_or_create_conversation(store_id)
        self.conversations.upsert(conversation)
        return conversation

    async def list_conversations(self, **params: Any) -> List[Conversation]:
        return await self.conversations.load_conversations(**params)

    async def get_unread_count(self) -> int:
        return await self.conversations.load_unread_count()

    async def open_conversation(self, conversation_id: str | int) -> MessageViewState:
        conversation_id = str(conversation_id)
        self.conversations.set_active(conversation_id)
        await self.channel.join_room(conversation_id)
        self.conversations.mark_read_locally(conversation_id)
        return await self.messages.open_conversation(conversation_id)

    async def close_conversation(self) -> None:
        active_id = self.messages.active_id
        if active_id is not None:
            await self.channel.leave_room(active_id)
        self.messages.close()
        self.conversations.set_active(None)

    async def send(self, conversation_id: str | int, text: str) -> Message:
        """Send to the open conversation optimistically, or straight over REST otherwise."""
        conversation_id = str(conversation_id)
        if conversation_id == self.messages.active_id:
            message = await self.messages.send_message(text)
        else:
            body = validate_message_text(text, self.settings.max_message_length)
            try:
                message = await self.api.send_message(conversation_id, body)
            except ChatError as e:
                raise SendFailedError(e.message, text=text, cause=e) from e
        self.conversations.record_outgoing(message)
        return message

    async def mark_read(self, conversation_id: str | int) -> bool:
        """Acknowledge a conversation; failures are logged, never raised."""
        conversation_id = str(conversation_id)
        self.conversations.mark_read_locally(conversation_id)
        try:
            await self.api.mark_read(conversation_id)
        except ChatError as e:
            logger.warning("[CHAT] Mark as read failed for %s: %s", conversation_id, e.message)
            return False
        return True

    async def _handle_new_message(self, payload: Any) -> None:
        try:
            event = NewMessageEvent.from_payload(payload)
        except PydanticValidationError as e:
            logger.warning("[CHAT] Ignoring malformed new_message event: %s", e)
            return
        await self.messages.apply_incoming_message_event(event)
        await self.conversations.apply_incoming_message_event(event)

    def _handle_connection_state(self, state: ConnectionState, previous: ConnectionState) -> None:
        if state != ConnectionState.CONNECTED:
            return
        if self._has_connected:
            self._spawn(self._reconcile())
        self._has_connected = True

    async def _reconcile(self) -> None:
        logger.info("[CHAT] Channel reconnected, refreshing from REST")
        try:
            await self.conversations.load_conversations()
            await self.messages.refresh()
        except ChatError as e:
            logger.warning("[CHAT] Refresh after reconnect failed: %s", e.message)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def aclose(self) -> None:
        """Leave the room, drop every subscription and release connections."""
        active_id = self.messages.active_id
        if active_id is not None:
            await self.channel.leave_room(active_id)
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._started = False

        await self.channel.close()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.messages.aclose()
        await self.conversations.aclose()
        await self.api.aclose()
