from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tailscalesd.utils import parse_duration, split_host_port
from tailscalesd.versioning import get_version

PUBLIC_API_HOST = "api.tailscale.com"
LOCAL_API_SOCKET = "/run/tailscale/tailscaled.sock"
DEFAULT_LISTEN = "0.0.0.0:9242"
DEFAULT_POLL_LIMIT_SECONDS = 300.0


class Settings(BaseSettings):
    app_name: str = Field(default="tailscalesd")
    app_version: str = Field(default_factory=get_version, validation_alias="TAILSCALESD_VERSION")

    listen: str = Field(default=DEFAULT_LISTEN, validation_alias="LISTEN")
    include_ipv6: bool = Field(default=False, validation_alias="EXPOSE_IPV6")
    use_local_api: bool = Field(default=False, validation_alias="TAILSCALE_USE_LOCAL_API")
    poll_limit_seconds: float = Field(
        default=DEFAULT_POLL_LIMIT_SECONDS,
        validation_alias="TAILSCALE_API_POLL_LIMIT",
    )
    local_api_socket: str = Field(default=LOCAL_API_SOCKET, validation_alias="TAILSCALE_LOCAL_API_SOCKET")

    tailnet: str = Field(default="-", validation_alias="TAILNET")
    token: str = Field(default="", validation_alias="TAILSCALE_API_TOKEN")
    client_id: str = Field(default="", validation_alias="TAILSCALE_CLIENT_ID")
    client_secret: str = Field(default="", validation_alias="TAILSCALE_CLIENT_SECRET")
    api_host: str = Field(default=PUBLIC_API_HOST, validation_alias="TAILSCALE_API_HOST")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str = Field(default="", validation_alias="LOG_FILE")
    metrics_enabled: bool = Field(default=True, validation_alias="METRICS_ENABLED")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("poll_limit_seconds", mode="before")
    @classmethod
    def parse_poll_limit(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    @property
    def has_oauth(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def listen_host(self) -> str:
        return split_host_port(self.listen)[0]

    @property
    def listen_port(self) -> int:
        return split_host_port(self.listen)[1]

    @model_validator(mode="after")
    def validate_sources(self) -> "Settings":
        issues: list[str] = []
        if self.poll_limit_seconds <= 0:
            issues.append("TAILSCALE_API_POLL_LIMIT must be a positive duration.")
        try:
            split_host_port(self.listen)
        except ValueError as exc:
            issues.append(f"LISTEN is invalid: {exc}.")
        if not self.use_local_api and not self.token and not self.has_oauth:
            issues.append(
                "Either TAILSCALE_API_TOKEN and TAILNET or TAILSCALE_CLIENT_ID and "
                "TAILSCALE_CLIENT_SECRET are required when using the public API."
            )
        if issues:
            raise ValueError(" ".join(issues))
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
