"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from relaychat.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_PUSH_TIMEOUT,
    DEFAULT_RECONNECT_BACKOFF,
    DEFAULT_VSN,
)


class RelaySettings(BaseSettings):
    """Relay client settings driven entirely by environment variables."""

    # Relay Selection
    relay_urls: List[str] = Field(default_factory=list)
    relay_index: int = Field(default=0, ge=0)

    # Protocol
    protocol_vsn: Literal["1.0.0", "2.0.0"] = Field(default=DEFAULT_VSN)
    push_timeout: float = Field(default=DEFAULT_PUSH_TIMEOUT, gt=0, le=300)
    heartbeat_interval: float = Field(default=DEFAULT_HEARTBEAT_INTERVAL, gt=0, le=600)
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0, le=120)

    # Reconnection (opt-in)
    reconnect_enabled: bool = Field(default=False)
    reconnect_backoff: List[float] = Field(default_factory=lambda: list(DEFAULT_RECONNECT_BACKOFF))
    reconnect_max_attempts: Optional[int] = Field(default=None, ge=1)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    @field_validator("relay_urls")
    @classmethod
    def validate_relay_urls(cls, v):
        """Only websocket endpoints can host a relay socket."""
        for url in v:
            if not url.startswith(("ws://", "wss://")):
                raise ValueError(f"relay url must use ws:// or wss://, got {url!r}")
        return v

    @field_validator("reconnect_backoff")
    @classmethod
    def validate_backoff(cls, v):
        if not v:
            raise ValueError("reconnect_backoff needs at least one delay")
        if any(delay < 0 for delay in v):
            raise ValueError("reconnect_backoff delays must be non-negative")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return level

    model_config = {
        "env_prefix": "RELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
