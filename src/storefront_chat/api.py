"""HTTP client for the storefront chat REST endpoints."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote
from uuid import uuid4

import httpx
from pydantic import ValidationError as PydanticValidationError

from .auth import ChatAuth
from .config import Settings
from .errors import (
    BackendRequestError,
    ChatAuthError,
    NotFoundError,
    TransientNetworkError,
)
from .models import (
    ApiEnvelope,
    Conversation,
    ConversationList,
    Message,
    MessageList,
    UnreadCount,
)

logger = logging.getLogger(__name__)


def _conversation_path(conversation_id: str, suffix: str = "") -> str:
    return f"/chat/conversations/{quote(str(conversation_id), safe='')}{suffix}"


def _with_conversation_id(payload: Any, conversation_id: str) -> Any:
    if isinstance(payload, dict) and not payload.get("conversation_id"):
        return {**payload, "conversation_id": conversation_id}
    return payload


class ChatApiClient:
    """HTTP client for the storefront chat API."""

    def __init__(
        self,
        settings: Settings,
        auth: ChatAuth,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.auth = auth
        self.http = http or httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout),
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def call(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Issue a request and return the envelope's ``data``."""
        request_id = str(uuid4())
        headers = await self.auth.get_headers(request_id)
        try:
            response = await self.http.request(
                method,
                path,
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(
                f"Request to {path} timed out", code="backend_timeout"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientNetworkError(
                f"Could not reach chat service: {exc}", code="backend_connection_failed"
            ) from exc

        envelope = self._parse_envelope(response)
        server_message = envelope.message if envelope else None

        if response.status_code in {401, 403}:
            raise ChatAuthError(server_message or "Not authorized", code="backend_auth_failed")
        if response.status_code == 404:
            raise NotFoundError(server_message or f"{path} not found", code="backend_not_found")
        if response.status_code >= 400:
            raise BackendRequestError(
                server_message or f"Chat service error {response.status_code}",
                status_code=response.status_code,
                code=f"backend_error_{response.status_code}",
            )
        if envelope is None:
            raise BackendRequestError(
                "Malformed response from chat service",
                status_code=response.status_code,
                code="backend_malformed_response",
            )
        if not envelope.success:
            raise BackendRequestError(
                envelope.message or "Request failed",
                status_code=response.status_code,
                code="backend_rejected",
            )

        logger.debug("%s %s -> %s (request_id=%s)", method, path, response.status_code, request_id)
        return envelope.data

    @staticmethod
    def _parse_envelope(response: httpx.Response) -> ApiEnvelope | None:
        try:
            return ApiEnvelope.model_validate(response.json())
        except (ValueError, PydanticValidationError):
            return None

    @staticmethod
    def _parse(model: Any, data: Any, what: str) -> Any:
        try:
            return model.model_validate(data)
        except PydanticValidationError as exc:
            raise BackendRequestError(
                f"Unexpected {what} payload from chat service",
                code="backend_malformed_response",
                details={"errors": exc.errors()},
            ) from exc

    async def get_or_create_conversation(self, store_id: str | int) -> Conversation:
        data = await self.call("POST", "/chat/conversations", json={"store_id": store_id})
        return self._parse(Conversation, data, "conversation")

    async def list_conversations(self, **params: Any) -> list[Conversation]:
        data = await self.call("GET", "/chat/conversations", params=params or None)
        return self._parse(ConversationList, data or {}, "conversation list").conversations

    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Resolve one conversation from the listing; the backend has no detail endpoint."""
        for conversation in await self.list_conversations():
            if conversation.conversation_id == str(conversation_id):
                return conversation
        raise NotFoundError("Conversation not found", code="conversation_not_found")

    async def list_messages(self, conversation_id: str, **params: Any) -> list[Message]:
        data = await self.call(
            "GET", _conversation_path(conversation_id, "/messages"), params=params or None
        )
        raw = data.get("messages", []) if isinstance(data, dict) else []
        return self._parse(
            MessageList,
            {"messages": [_with_conversation_id(item, str(conversation_id)) for item in raw]},
            "message list",
        ).messages

    async def send_message(self, conversation_id: str, text: str) -> Message:
        data = await self.call(
            "POST",
            _conversation_path(conversation_id, "/messages"),
            json={"message": text},
        )
        return self._parse(Message, _with_conversation_id(data, str(conversation_id)), "message")

    async def mark_read(self, conversation_id: str) -> None:
        await self.call("PATCH", _conversation_path(conversation_id, "/read"))

    async def get_unread_count(self) -> int:
        data = await self.call("GET", "/chat/unread-count")
        return self._parse(UnreadCount, data or {}, "unread count").count
