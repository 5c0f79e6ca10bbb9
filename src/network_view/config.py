"""Configuration management for Network View."""

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .discovery.catalog import DEFAULT_SERVICE_CATEGORIES, normalize_category


class DiscoveryConfig(BaseModel):
    """Configuration for the discovery engine."""

    interface: Optional[str] = Field(default=None, description="Network interface to bind discovery to. If empty, the first up, non-loopback interface with an IPv4 address is used.")
    multicast_group: str = Field(default="224.0.0.251", description="mDNS multicast group.")
    multicast_port: int = Field(default=5353, ge=1, le=65535, description="mDNS multicast port.")
    service_categories: List[str] = Field(default_factory=lambda: list(DEFAULT_SERVICE_CATEGORIES), description="Service types queried by the scheduler and browsed by the zeroconf browser.")

    query_interval_seconds: float = Field(default=5.0, gt=0, le=3600, description="Interval between active query rounds.")
    pointer_timeout_seconds: float = Field(default=0.5, gt=0, le=10, description="How long a PTR query collects responses.")
    resolve_timeout_seconds: float = Field(default=1.0, gt=0, le=10, description="Timeout for SRV and A exchanges.")
    unicast_lookup_timeout_seconds: float = Field(default=2.0, gt=0, le=30, description="Timeout for the regular name-resolution fallback.")
    read_timeout_seconds: float = Field(default=1.0, gt=0, le=60, description="Read deadline of the multicast receive loop.")
    receive_buffer_size: int = Field(default=9000, ge=512, le=65535, description="Maximum datagram size read from the multicast socket.")
    max_concurrent_resolutions: int = Field(default=16, ge=1, le=256, description="Maximum datagrams resolved concurrently by the listener.")

    subscriber_queue_size: int = Field(default=100, ge=1, le=100000, description="Pending events buffered per subscriber before events are dropped for it.")
    dedup_ttl_seconds: Optional[float] = Field(default=None, gt=0, description="If set, a service identity may be reported again after this many seconds. If empty, identities are reported once per session.")
    shutdown_grace_seconds: float = Field(default=2.0, ge=0, le=60, description="How long a superseded session's loops get to acknowledge cancellation.")

    enable_listener: bool = Field(default=True, description="Passively listen to multicast traffic.")
    enable_scheduler: bool = Field(default=True, description="Periodically query the service catalog.")
    enable_browser: bool = Field(default=True, description="Run a zeroconf service browser alongside the raw listener.")
    browser_request_timeout_ms: int = Field(default=3000, ge=100, le=60000, description="Timeout for zeroconf service info requests.")

    @field_validator("service_categories")
    @classmethod
    def normalize_categories(cls, v: List[str]) -> List[str]:
        return [normalize_category(category) for category in v if category.strip()]


class ServerConfig(BaseModel):
    """Configuration for the HTTP layer."""

    host: str = Field(default="", description="Address to bind to. Empty means all addresses.")
    port: int = Field(default=9999, ge=1, le=65535, description="Port to listen on.")
    sse_keepalive_seconds: float = Field(default=15.0, gt=0, le=3600, description="Interval of keepalive comments on the event stream.")
    cors_allow_origin: str = Field(default="*", description="Value of the Access-Control-Allow-Origin header.")


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format")
    file: Optional[Path] = Field(default=None, description="Log file path")


class Config(BaseSettings):
    """Main configuration for Network View. Loads from environment variables prefixed with NETWORK_VIEW_."""

    model_config = SettingsConfigDict(
        env_prefix='NETWORK_VIEW_',
        env_nested_delimiter='__', # e.g., NETWORK_VIEW_DISCOVERY__QUERY_INTERVAL_SECONDS
        extra='ignore',
        env_file='.env',
        env_file_encoding='utf-8'
    )

    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, file_path: Path) -> "Config":
        """Create configuration strictly from a JSON file.

        Environment variables are not layered on top; `Config()` loads from the
        environment (and a .env file) instead.
        """
        with open(file_path) as f:
            config_data = json.load(f)
        return cls.model_validate(config_data)
