"""Credential providers and auth headers for backend and socket requests."""

from __future__ import annotations

import inspect
from typing import Awaitable, Callable, Protocol, TYPE_CHECKING, Union

from pydantic import SecretStr

from .errors import ChatAuthError

if TYPE_CHECKING:
    from .config import Settings


TokenSupplier = Callable[[], Union[str, None, Awaitable[Union[str, None]]]]


def _secret_value(value: SecretStr | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    return str(value)


class CredentialProvider(Protocol):
    async def get_token(self) -> str: ...


class StaticCredentials:
    """Returns a fixed bearer token."""

    def __init__(self, token: SecretStr | str | None) -> None:
        self._token = _secret_value(token).strip()

    async def get_token(self) -> str:
        if not self._token:
            raise ChatAuthError("api_token_missing")
        return self._token


class CallableCredentials:
    """Asks a caller-supplied function for the current token on every request."""

    def __init__(self, supplier: TokenSupplier) -> None:
        self._supplier = supplier

    async def get_token(self) -> str:
        token = self._supplier()
        if inspect.isawaitable(token):
            token = await token
        token = _secret_value(token).strip()
        if not token:
            raise ChatAuthError("api_token_missing")
        return token


def credentials_from_settings(settings: Settings) -> StaticCredentials:
    return StaticCredentials(settings.api_token)


class ChatAuth:
    """Builds auth headers from an injected credential provider."""

    def __init__(self, credentials: CredentialProvider) -> None:
        self.credentials = credentials

    async def get_headers(self, request_id: str | None = None) -> dict[str, str]:
        token = await self.credentials.get_token()
        headers = {"Authorization": f"Bearer {token}"}
        if request_id:
            headers["X-Request-Id"] = request_id
        return headers
