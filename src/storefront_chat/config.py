"""Configuration for the storefront chat client."""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from environment."""

    api_base_url: str = "http://localhost:5000/api"
    socket_url: str = "ws://localhost:5000/ws"
    api_token: SecretStr = SecretStr("")
    user_id: str | None = None

    request_timeout: float = 30.0
    connect_timeout: float = 10.0

    max_message_length: int = Field(default=1000, ge=1)

    reconnect_initial_delay: float = Field(default=0.5, gt=0)
    reconnect_max_delay: float = Field(default=5.0, gt=0)
    socket_heartbeat: float = 20.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="STOREFRONT_CHAT_", env_file=".env")
