"""Application configuration for the signaling server."""
from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_MEDIA_CODECS: list[dict[str, Any]] = [
    {
        "kind": "audio",
        "mimeType": "audio/opus",
        "clockRate": 48000,
        "channels": 2,
    },
    {
        "kind": "video",
        "mimeType": "video/VP8",
        "clockRate": 90000,
        "parameters": {"x-google-start-bitrate": 1000},
    },
    {
        "kind": "video",
        "mimeType": "video/H264",
        "clockRate": 90000,
        "parameters": {
            "packetization-mode": 1,
            "profile-level-id": "42e01f",
            "level-asymmetry-allowed": 1,
        },
    },
]


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])
    log_level: str = Field(default="INFO")

    listen_host: str = Field(default="0.0.0.0")
    listen_port: int = Field(default=8080, ge=1, le=65535)

    media_engine: str = Field(default="local")
    num_workers: int = Field(default=1, ge=1)
    rtc_min_port: int = Field(default=10000, ge=1, le=65535)
    rtc_max_port: int = Field(default=10100, ge=1, le=65535)
    listen_ip: str = Field(default="0.0.0.0")
    announced_ip: str | None = Field(default=None)
    max_incoming_bitrate: int = Field(default=1_500_000, ge=0)
    initial_available_outgoing_bitrate: int = Field(default=1_000_000, ge=0)

    worker_death_grace_seconds: float = Field(default=2.0, ge=0)
    router_ready_timeout: float = Field(default=5.0, gt=0)

    media_codecs: list[dict[str, Any]] = Field(default_factory=lambda: [dict(codec) for codec in DEFAULT_MEDIA_CODECS])

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> object:
        """Allow comma-separated env values for CORS origins."""

        if isinstance(value, str):
            if value.lstrip().startswith("["):
                return json.loads(value)
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
