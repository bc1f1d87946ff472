"""
Shared configuration management for the Todo Service.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TODO_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/todo")
    kafka_bootstrap: str = Field(default="localhost:9092")

    # Token verification over Kafka
    verification_request_topic: str = Field(default="token_verification_requests")
    verification_response_topic: str = Field(default="token_verification_responses")
    verification_consumer_group: str = Field(default="todo-service-consumer-group")
    verification_timeout_seconds: float = Field(default=10.0, gt=0)
    verification_subscribe_attempts: int = Field(default=10, ge=1)
    verification_retry_base_delay: float = Field(default=5.0, ge=0)
    verification_retry_max_delay: float = Field(default=60.0, ge=0)

    # Cache time-to-live, seconds
    collection_cache_ttl: int = Field(default=300, gt=0)
    entity_cache_ttl: int = Field(default=3600, gt=0)


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
