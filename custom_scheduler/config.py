"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_connect_timeout_seconds: float = 5.0
    store_ttl_seconds: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 18888

    # Stacks API / Monitor
    stacks_api_base_url: str = "https://agent.buildkite.com/v3"
    buildkite_agent_token: str | None = None
    stack_key: str = "custom-scheduler-demo"
    scheduler_queues: Annotated[list[str], NoDecode] = ["default"]
    monitor_poll_interval_seconds: float = 1.0
    monitor_page_size: int = 50
    reservation_expiry_seconds: int = 300
    stacks_api_timeout_seconds: float = 30.0

    # Worker Configuration
    worker_api_server: str = "http://localhost:18888"
    worker_agent_query_rules: Annotated[list[str], NoDecode] = ["queue=default"]
    worker_tags: Annotated[list[str], NoDecode] = []
    worker_queue: str = ""
    buildkite_agent_path: str = "/usr/local/bin/buildkite-agent"
    worker_poll_interval_seconds: float = 2.0
    worker_http_timeout_seconds: float = 10.0
    worker_metrics_port: int | None = None

    # Shutdown
    shutdown_grace_seconds: float = 10.0

    # Observability
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "custom-scheduler"
    tracing_enabled: bool = True
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    @field_validator(
        "scheduler_queues",
        "worker_agent_query_rules",
        "worker_tags",
        mode="before",
    )
    @classmethod
    def split_comma_separated(cls, value: object) -> object:
        """Accept comma-separated strings for list settings."""
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
