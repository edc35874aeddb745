import json

import httpx
import pytest
import respx
from storefront_chat.api import ChatApiClient
from storefront_chat.auth import CallableCredentials, ChatAuth, StaticCredentials
from storefront_chat.config import Settings
from storefront_chat.errors import (
    BackendRequestError,
    ChatAuthError,
    NotFoundError,
    TransientNetworkError,
)

BASE = "https://api.storefront.test/api"

CONVERSATION = {
    "conversation_id": 7,
    "user_id": 3,
    "store_id": 11,
    "unread_count_user": 1,
    "unread_count_seller": 4,
    "lastMessage": {"sender_id": 3, "message": "is it in stock?"},
    "last_message_at": "2024-05-01T10:00:00",
    "store": {"store_id": 11, "store_name": "Corner Shop", "logo_url": None},
    "user": {"user_id": 3, "full_name": "Dana Buyer"},
}


def _client(token: str = "tok") -> ChatApiClient:
    settings = Settings(api_base_url=BASE, api_token=token)
    return ChatApiClient(settings, ChatAuth(StaticCredentials(settings.api_token)))


@pytest.mark.asyncio
@respx.mock
async def test_list_conversations_parses_backend_names():
    client = _client()
    route = respx.get(f"{BASE}/chat/conversations").respond(
        200, json={"success": True, "data": {"conversations": [CONVERSATION]}}
    )

    conversations = await client.list_conversations()

    conversation = conversations[0]
    assert conversation.conversation_id == "7"
    assert conversation.unread_count_store == 4
    assert conversation.unread_for("3") == 1
    assert conversation.last_message.text == "is it in stock?"
    assert conversation.last_message_at.tzinfo is not None
    assert conversation.other_party_name("3") == "Corner Shop"
    request = route.calls[0].request
    assert request.headers["Authorization"] == "Bearer tok"
    assert request.headers.get("X-Request-Id")
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_get_or_create_posts_store_id():
    client = _client()
    route = respx.post(f"{BASE}/chat/conversations").respond(
        200, json={"success": True, "data": CONVERSATION}
    )

    conversation = await client.get_or_create_conversation(11)

    assert conversation.store_id == "11"
    assert json.loads(route.calls[0].request.content) == {"store_id": 11}
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_get_conversation_resolves_from_list():
    client = _client()
    respx.get(f"{BASE}/chat/conversations").respond(
        200, json={"success": True, "data": {"conversations": [CONVERSATION]}}
    )

    assert (await client.get_conversation("7")).store.store_name == "Corner Shop"
    with pytest.raises(NotFoundError) as exc:
        await client.get_conversation("8")
    assert exc.value.code == "conversation_not_found"
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_list_messages_fills_conversation_id():
    client = _client()
    respx.get(f"{BASE}/chat/conversations/7/messages").respond(
        200,
        json={
            "success": True,
            "data": {
                "messages": [
                    {
                        "message_id": 1,
                        "sender_id": 3,
                        "message": "hello",
                        "created_at": "2024-05-01T10:00:00Z",
                        "is_read": True,
                        "sender": {"user_id": 3, "full_name": "Dana Buyer"},
                    }
                ]
            },
        },
    )

    messages = await client.list_messages("7")

    assert len(messages) == 1
    assert messages[0].conversation_id == "7"
    assert messages[0].message_id == "1"
    assert messages[0].text == "hello"
    assert messages[0].sender.full_name == "Dana Buyer"
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_send_message_posts_message_field():
    client = _client()
    route = respx.post(f"{BASE}/chat/conversations/7/messages").respond(
        201,
        json={
            "success": True,
            "data": {"message_id": 55, "sender_id": 3, "message": "hello"},
        },
    )

    message = await client.send_message("7", "hello")

    assert json.loads(route.calls[0].request.content) == {"message": "hello"}
    assert message.message_id == "55"
    assert message.conversation_id == "7"
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_mark_read_and_unread_count():
    client = _client()
    read = respx.patch(f"{BASE}/chat/conversations/7/read").respond(
        200, json={"success": True, "data": None}
    )
    respx.get(f"{BASE}/chat/unread-count").respond(
        200, json={"success": True, "data": {"count": 5}}
    )

    await client.mark_read("7")
    assert read.called
    assert await client.get_unread_count() == 5
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_envelope_failure_uses_server_message():
    client = _client()
    respx.get(f"{BASE}/chat/unread-count").respond(
        200, json={"success": False, "message": "Store is closed"}
    )

    with pytest.raises(BackendRequestError) as exc:
        await client.get_unread_count()
    assert exc.value.message == "Store is closed"
    assert exc.value.code == "backend_rejected"
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_error_statuses_map_to_error_types():
    client = _client()
    route = respx.get(f"{BASE}/chat/unread-count")

    route.respond(401, json={"success": False, "message": "Invalid token"})
    with pytest.raises(ChatAuthError) as auth_exc:
        await client.get_unread_count()
    assert auth_exc.value.message == "Invalid token"

    route.respond(404)
    with pytest.raises(NotFoundError):
        await client.get_unread_count()

    route.respond(500, text="oops")
    with pytest.raises(BackendRequestError) as server_exc:
        await client.get_unread_count()
    assert server_exc.value.status_code == 500
    assert isinstance(server_exc.value, TransientNetworkError)

    route.respond(200, text="<html>")
    with pytest.raises(BackendRequestError) as malformed:
        await client.get_unread_count()
    assert malformed.value.code == "backend_malformed_response"
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_unexpected_payload_shape_is_reported():
    client = _client()
    respx.post(f"{BASE}/chat/conversations").respond(
        200, json={"success": True, "data": {"store_id": 1}}
    )

    with pytest.raises(BackendRequestError) as exc:
        await client.get_or_create_conversation(1)
    assert exc.value.code == "backend_malformed_response"
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_connection_errors_are_transient():
    client = _client()
    route = respx.get(f"{BASE}/chat/unread-count")

    route.side_effect = httpx.ConnectError("refused")
    with pytest.raises(TransientNetworkError) as exc:
        await client.get_unread_count()
    assert exc.value.code == "backend_connection_failed"

    route.side_effect = httpx.ReadTimeout("slow")
    with pytest.raises(TransientNetworkError) as timeout:
        await client.get_unread_count()
    assert timeout.value.code == "backend_timeout"
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_missing_token_fails_before_request():
    client = _client(token="")
    route = respx.get(f"{BASE}/chat/unread-count")

    with pytest.raises(ChatAuthError):
        await client.get_unread_count()
    assert not route.called
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_token_supplier_is_asked_per_request():
    tokens = iter(["first", "second"])
    settings = Settings(api_base_url=BASE)
    client = ChatApiClient(settings, ChatAuth(CallableCredentials(lambda: next(tokens))))
    route = respx.get(f"{BASE}/chat/unread-count").respond(
        200, json={"success": True, "data": {"count": 0}}
    )

    await client.get_unread_count()
    await client.get_unread_count()

    assert [c.request.headers["Authorization"] for c in route.calls] == [
        "Bearer first",
        "Bearer second",
    ]
    await client.aclose()
