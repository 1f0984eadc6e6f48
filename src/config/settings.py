"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=10000)

    # Calling service control plane (Graph API /calls)
    graph_api_base_url: str = Field(default="https://graph.facebook.com")
    graph_api_version: str = Field(default="v19.0")
    phone_number_id: str | None = Field(
        default=None,
        description="Business phone number id whose /calls endpoint receives call actions.",
    )
    access_token: str | None = Field(default=None, description="Bearer token for the control plane.")
    messaging_product: str = Field(default="whatsapp")
    control_plane_timeout_seconds: float = Field(default=10.0, gt=0.0)

    # Webhook subscription handshake
    verify_token: str | None = Field(
        default=None,
        description="Token the calling service echoes back during webhook verification.",
    )

    # Call acceptance
    accept_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause between pre_accept and accept required by the calling service.",
    )

    # ICE servers handed to every peer connection
    stun_urls: list[str] = Field(default_factory=lambda: ["stun:stun.l.google.com:19302"])
    turn_urls: list[str] = Field(
        default_factory=lambda: [
            "turn:global.relay.metered.ca:80",
            "turns:global.relay.metered.ca:443?transport=tcp",
        ]
    )
    turn_username: str | None = Field(default=None)
    turn_credential: str | None = Field(default=None)

    @field_validator("graph_api_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def calls_endpoint(self) -> str:
        return f"{self.graph_api_base_url}/{self.graph_api_version}/{self.phone_number_id}/calls"

    def ice_servers(self) -> list[dict[str, Any]]:
        """ICE server entries; TURN relays are only listed when credentials exist."""

        servers: list[dict[str, Any]] = [{"urls": url} for url in self.stun_urls]
        if self.turn_username and self.turn_credential:
            servers.extend(
                {
                    "urls": url,
                    "username": self.turn_username,
                    "credential": self.turn_credential,
                }
                for url in self.turn_urls
            )
        return servers


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
