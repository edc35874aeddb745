"""
Error taxonomy for the chat client.

Every error raised to the presentation layer derives from ChatError and
carries a short user-facing message, a machine-readable code and optional
details. StaleResponseError never leaves the stores.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ChatError(Exception):
    """Base error for chat client failures."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class TransientNetworkError(ChatError):
    """Raised when a REST call or channel operation did not complete."""


class BackendRequestError(TransientNetworkError):
    """Raised when the backend rejects a request (success=false or non-2xx)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, code=code, details=details)


class SendFailedError(TransientNetworkError):
    """Raised when sending a message failed; carries the text to restore."""

    def __init__(self, message: str, text: str, cause: Optional[ChatError] = None) -> None:
        self.text = text
        self.cause = cause
        super().__init__(message, code="send_failed")


class ChatAuthError(ChatError):
    """Raised when the backend rejects our credentials or none are available."""


class ValidationError(ChatError):
    """Raised for input rejected locally, before any network call."""


class StaleResponseError(ChatError):
    """Raised internally when a response targets a conversation no longer open."""

    def __init__(self, conversation_id: str, active_id: Optional[str]) -> None:
        self.conversation_id = conversation_id
        self.active_id = active_id
        super().__init__(
            f"response for conversation {conversation_id} arrived after switching to {active_id}",
            code="stale_response",
        )


class NotFoundError(ChatError):
    """Raised when a conversation does not resolve server-side."""
