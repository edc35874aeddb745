"""
Conversation list state.

The backend is authoritative for the list: a load replaces local state
wholesale. Between loads, realtime ``new_message`` events patch previews and
unread counters in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from ..errors import ChatError
from ..models import Conversation, Message, NewMessageEvent
from .base import ObservableStore, ViewState

if TYPE_CHECKING:
    from ..api import ChatApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationListState:
    """Render-ready snapshot of the conversation list."""

    conversations: Tuple[Conversation, ...] = ()
    unread_total: int = 0
    status: ViewState = ViewState.IDLE
    error: Optional[str] = None
    active_id: Optional[str] = None


class ConversationStore(ObservableStore[ConversationListState]):
    """Owns the conversation collection and the unread badge total."""

    def __init__(self, api: ChatApiClient, viewer_id: Optional[str] = None) -> None:
        super().__init__(ConversationListState())
        self.api = api
        self.viewer_id = str(viewer_id) if viewer_id is not None else None

    @property
    def conversations(self) -> List[Conversation]:
        return list(self.state.conversations)

    def get(self, conversation_id: str) -> Optional[Conversation]:
        conversation_id = str(conversation_id)
        for conversation in self.state.conversations:
            if conversation.conversation_id == conversation_id:
                return conversation
        return None

    async def load_conversations(self, **params: Any) -> List[Conversation]:
        self._set_state(replace(self.state, status=ViewState.LOADING))
        try:
            conversations = await self.api.list_conversations(**params)
        except ChatError as e:
            logger.warning("[CONVERSATIONS] Failed to load conversations: %s", e.message)
            self._set_state(replace(self.state, status=ViewState.ERROR, error=e.message))
            raise

        self._set_state(
            replace(
                self.state,
                conversations=tuple(conversations),
                status=ViewState.READY,
                error=None,
            )
        )
        logger.debug("[CONVERSATIONS] Loaded %d conversations", len(conversations))
        return conversations

    async def load_unread_count(self) -> int:
        try:
            count = await self.api.get_unread_count()
        except ChatError as e:
            logger.warning("[CONVERSATIONS] Failed to load unread count: %s", e.message)
            self._set_state(replace(self.state, error=e.message))
            raise

        self._set_state(replace(self.state, unread_total=count))
        return count

    async def apply_incoming_message_event(self, event: NewMessageEvent) -> None:
        conversation = self.get(event.conversation_id)
        if conversation is None:
            # The event lacks the party summaries needed to build an entry.
            logger.info(
                "[CONVERSATIONS] new_message for unknown conversation %s, reloading list",
                event.conversation_id,
            )
            self._spawn(self._reload_quietly())
            return

        message = event.message
        updated = conversation.model_copy(
            update={"last_message": message.preview(), "last_message_at": message.created_at}
        )
        unread_total = self.state.unread_total
        if self._counts_as_unread(event):
            updated = updated.with_unread(self.viewer_id, updated.unread_for(self.viewer_id) + 1)
            unread_total += 1

        self._set_state(
            replace(self.state, conversations=self._replaced(updated), unread_total=unread_total)
        )

    async def _reload_quietly(self) -> None:
        try:
            await self.load_conversations()
        except ChatError:
            pass  # recorded on state by load_conversations

    def _counts_as_unread(self, event: NewMessageEvent) -> bool:
        if event.conversation_id == self.state.active_id:
            return False
        sender_id = event.message.sender_id
        return not (self.viewer_id is not None and sender_id == self.viewer_id)

    def _replaced(self, conversation: Conversation) -> Tuple[Conversation, ...]:
        return tuple(
            conversation if c.conversation_id == conversation.conversation_id else c
            for c in self.state.conversations
        )

    def upsert(self, conversation: Conversation) -> None:
        """Insert or replace a conversation; get-or-create never duplicates entries."""
        if self.get(conversation.conversation_id) is None:
            conversations = (conversation,) + self.state.conversations
        else:
            conversations = self._replaced(conversation)
        self._set_state(replace(self.state, conversations=conversations))

    def set_active(self, conversation_id: Optional[str]) -> None:
        active_id = str(conversation_id) if conversation_id is not None else None
        self._set_state(replace(self.state, active_id=active_id))

    def mark_read_locally(self, conversation_id: str) -> None:
        conversation = self.get(conversation_id)
        if conversation is None:
            return
        unread = conversation.unread_for(self.viewer_id)
        if unread == 0:
            return
        self._set_state(
            replace(
                self.state,
                conversations=self._replaced(conversation.with_unread(self.viewer_id, 0)),
                unread_total=max(self.state.unread_total - unread, 0),
            )
        )

    def record_outgoing(self, message: Message) -> None:
        """Refresh the preview after one of our own messages was confirmed."""
        conversation = self.get(message.conversation_id)
        if conversation is None:
            return
        updated = conversation.model_copy(
            update={"last_message": message.preview(), "last_message_at": message.created_at}
        )
        self._set_state(replace(self.state, conversations=self._replaced(updated)))

    def dismiss_error(self) -> None:
        status = ViewState.READY if self.state.status == ViewState.ERROR else self.state.status
        self._set_state(replace(self.state, error=None, status=status))
