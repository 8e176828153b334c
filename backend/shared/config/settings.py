"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with defaults for development."""

    # Environment
    environment: str = "development"
    debug: bool = True

    # Redis
    redis_url: str = "redis://localhost:6379"
    redis_pool_max_connections: int = 50
    redis_socket_timeout: int = 5  # Socket timeout in seconds (for both connect and read/write)

    # Connection registry
    # "redis" in every deployed environment, "memory" for local runs and tests
    registry_backend: str = "redis"
    # Table name of the deployed store, reused as the Redis key prefix
    registry_namespace: str = "websocket.comment-feed"
    default_channel: str = "default"
    # Pending-switch journal entries expire after this many seconds
    switch_pending_ttl: int = 300

    # Store circuit breaker
    store_circuit_failure_threshold: int = 5
    store_circuit_recovery_timeout: float = 30.0

    # Push gateway (connection management API)
    # Used when an inbound event does not carry its own domainName/stage
    push_endpoint_url: str = ""
    push_timeout: float = 5.0
    push_max_connections: int = 100

    # Broadcast
    # In-process time budget for one fan-out, 0 disables it
    broadcast_timeout: float = 25.0
    max_message_bytes: int = 128 * 1024

    # Server port for the trigger host
    trigger_port: int = 8002

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    def validate_production_settings(self) -> list[str]:
        """
        Validate that the service is configured for production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        if self.environment == "production":
            if self.debug:
                errors.append("DEBUG must be False in production")

            if self.registry_backend != "redis":
                errors.append(
                    "REGISTRY_BACKEND must be 'redis' in production, the in-memory registry is per process"
                )

            if not self.push_endpoint_url:
                errors.append(
                    "PUSH_ENDPOINT_URL should be set in production for events without a request context"
                )

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience exports
settings = get_settings()
