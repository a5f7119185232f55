"""
Shared configuration management for the API gateway.
"""

import json
from typing import Annotated, Any, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Storage
    storage_backend: str = Field(default="redis", description="redis or memory")
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Security
    admin_auth_key: Optional[str] = Field(default=None)
    allowed_origins: Annotated[List[str], NoDecode] = Field(default_factory=list)

    # Static routing and pricing tables
    targets_file: Optional[str] = Field(default=None)
    cost_table_file: Optional[str] = Field(default=None)

    # Forwarding
    backend_timeout_seconds: float = Field(default=30.0, gt=0)
    follow_redirects: bool = Field(default=True)
    header_policy: str = Field(default="allowlist", description="allowlist or denylist")

    # Pipeline policy
    require_client_record: bool = Field(default=True)
    insufficient_credits_status: int = Field(default=429)
    refund_on_upstream_failure: bool = Field(default=False)

    # In-process caches
    api_key_cache_ttl_seconds: float = Field(default=300.0)
    client_cache_ttl_seconds: float = Field(default=300.0)
    cache_max_entries: int = Field(default=1000, ge=1)
    cache_sweep_interval_seconds: float = Field(default=60.0)

    # Usage counters
    usage_ttl_days: int = Field(default=90, ge=1)

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, value: Any) -> Any:
        """Accept a JSON array or a comma-separated string."""
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                return json.loads(value)
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @property
    def is_production(self) -> bool:
        return self.env.lower() in ("production", "prod")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
