"""Shared fakes for store, channel and facade tests."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from storefront_chat.errors import ChatError, NotFoundError
from storefront_chat.models import Conversation, Message

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_conversation(
    conversation_id: str,
    user_id: str = "u1",
    store_id: str = "s1",
    unread_user: int = 0,
    unread_store: int = 0,
) -> Conversation:
    return Conversation(
        conversation_id=conversation_id,
        user_id=user_id,
        store_id=store_id,
        unread_count_user=unread_user,
        unread_count_store=unread_store,
    )


def make_message(
    message_id: str,
    conversation_id: str = "c1",
    text: str = "hi",
    minutes: int = 0,
    sender_id: str = "seller-1",
) -> Message:
    return Message(
        message_id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        text=text,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


class FakeChatApi:
    """In-memory stand-in for ChatApiClient.

    ``gates[(method, key)]`` holds a call until the event is set;
    ``failures[method]`` makes every call to that method raise.
    """

    def __init__(self) -> None:
        self.conversations: List[Conversation] = []
        self.histories: Dict[str, List[Message]] = {}
        self.unread = 0
        self.calls: List[Tuple[str, Any]] = []
        self.gates: Dict[Tuple[str, Any], asyncio.Event] = {}
        self.failures: Dict[str, ChatError] = {}
        self.next_message_id: Optional[str] = None
        self.sender_id = "u1"
        self.closed = False
        self._counter = 1000

    def calls_to(self, name: str) -> List[Any]:
        return [key for method, key in self.calls if method == name]

    async def _enter(self, name: str, key: Any = None) -> None:
        self.calls.append((name, key))
        gate = self.gates.get((name, key))
        if gate is not None:
            await gate.wait()
        error = self.failures.get(name)
        if error is not None:
            raise error

    async def get_or_create_conversation(self, store_id: Any) -> Conversation:
        await self._enter("get_or_create_conversation", str(store_id))
        for conversation in self.conversations:
            if conversation.store_id == str(store_id):
                return conversation
        self._counter += 1
        conversation = make_conversation(str(self._counter), store_id=str(store_id))
        self.conversations.append(conversation)
        return conversation

    async def list_conversations(self, **params: Any) -> List[Conversation]:
        await self._enter("list_conversations", params or None)
        return list(self.conversations)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        await self._enter("get_conversation", conversation_id)
        for conversation in self.conversations:
            if conversation.conversation_id == conversation_id:
                return conversation
        raise NotFoundError("Conversation not found")

    async def list_messages(self, conversation_id: str, **params: Any) -> List[Message]:
        await self._enter("list_messages", conversation_id)
        return list(self.histories.get(conversation_id, []))

    async def send_message(self, conversation_id: str, text: str) -> Message:
        await self._enter("send_message", conversation_id)
        self._counter += 1
        message_id = self.next_message_id or f"m{self._counter}"
        self.next_message_id = None
        message = Message(
            message_id=message_id,
            conversation_id=conversation_id,
            sender_id=self.sender_id,
            text=text,
        )
        self.histories.setdefault(conversation_id, []).append(message)
        return message

    async def mark_read(self, conversation_id: str) -> None:
        await self._enter("mark_read", conversation_id)

    async def get_unread_count(self) -> int:
        await self._enter("get_unread_count")
        return self.unread

    async def aclose(self) -> None:
        self.closed = True


class FakeConnection:
    """Socket double: frames pushed by the test are yielded to the channel."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.inbound: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self.closed = False
        self.fail_send = False

    async def send_json(self, data: Any) -> None:
        if self.fail_send:
            raise ConnectionResetError("socket gone")
        self.sent.append(data)

    async def messages(self):
        while True:
            raw = await self.inbound.get()
            if raw is None:
                return
            yield raw

    async def close(self) -> None:
        self.closed = True
        self.inbound.put_nowait(None)

    def push(self, event: str, data: Any) -> None:
        self.inbound.put_nowait(json.dumps({"event": event, "data": data}))

    def push_raw(self, raw: str) -> None:
        self.inbound.put_nowait(raw)

    def drop(self) -> None:
        self.inbound.put_nowait(None)


class FakeTransport:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.attempts = 0
        self.headers: List[Dict[str, str]] = []
        self.connections: List[FakeConnection] = []

    async def connect(self, url: str, headers: Dict[str, str]) -> FakeConnection:
        self.attempts += 1
        self.headers.append(headers)
        if self.failures:
            self.failures -= 1
            raise ConnectionRefusedError("refused")
        connection = FakeConnection()
        self.connections.append(connection)
        return connection

    @property
    def current(self) -> FakeConnection:
        return self.connections[-1]


async def eventually(predicate: Callable[[], Any], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def api() -> FakeChatApi:
    return FakeChatApi()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
