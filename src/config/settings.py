"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO")

    # Agent service credentials
    elevenlabs_api_key: str = Field(default="")
    elevenlabs_agent_id: str = Field(default="")
    elevenlabs_realtime_url: str = Field(
        default="",
        description="Explicit agent websocket URL, tried before any regional host.",
    )
    elevenlabs_auth_mode: Literal["xi-api-key", "bearer"] | None = Field(
        default=None,
        description="Preferred credential style; tried first for every endpoint.",
    )
    elevenlabs_api_base: str = Field(
        default="https://api.elevenlabs.io",
        description="REST base URL used by the diagnostic routes.",
    )

    # Agent dialing
    agent_base_hosts: list[str] = Field(
        default=[
            "wss://api.elevenlabs.io",
            "wss://api.us.elevenlabs.io",
            "wss://api.eu.elevenlabs.io",
        ],
        description="Regional websocket hosts in priority order (global first).",
    )
    agent_conversation_path: str = Field(default="/v1/convai/conversation")
    agent_protocol: Literal["elevenlabs", "realtime"] = Field(default="elevenlabs")
    dial_timeout_seconds: float = Field(default=8.0, gt=0)

    # Liveness
    heartbeat_interval_seconds: float = Field(default=20.0, gt=0)

    # Call media websocket server (the telephony provider connects here)
    call_media_host: str = Field(default="0.0.0.0")
    call_media_port: int = Field(default=10001)
    call_media_path: str = Field(default="/call-media")

    pre_ready_buffer_frames: int = Field(
        default=0,
        ge=0,
        description="Media frames kept while the agent leg is not ready yet. 0 drops them.",
    )

    @field_validator("elevenlabs_api_key", "elevenlabs_agent_id", "elevenlabs_realtime_url")
    @classmethod
    def strip_whitespace(cls, value: str) -> str:
        return value.strip()

    @property
    def has_agent_credentials(self) -> bool:
        return bool(self.elevenlabs_api_key and self.elevenlabs_agent_id)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
