"""Configuration settings for the Cosmic Portal client."""
from pydantic_settings import BaseSettings

from ..relay.backoff import ReconnectPolicy


class Settings(BaseSettings):
    """Client settings loaded from environment."""

    # Relay backend (sessions, uploads, deliveries)
    relay_url: str = "http://localhost:8000"
    relay_ws_url: str = "ws://localhost:8000"

    # Inventory backend (file tree, raw files, new-file push)
    inventory_url: str = "http://localhost:8080"
    inventory_ws_url: str = "ws://localhost:8080/ws"
    watch_inventory: bool = True

    # Limits
    max_upload_bytes: int = 100 * 1024 * 1024
    request_timeout: float = 30.0

    # Reconnect backoff
    reconnect_max_attempts: int = 5
    reconnect_initial_delay: float = 1.0
    reconnect_backoff_multiplier: float = 2.0
    reconnect_max_delay: float = 30.0
    reconnect_jitter: float = 0.1

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    class Config:
        env_prefix = "COSMIC_PORTAL_"
        env_file = ".env"
        extra = "ignore"

    def reconnect_policy(self) -> ReconnectPolicy:
        """Build the backoff policy from the reconnect_* settings."""
        return ReconnectPolicy(
            max_attempts=self.reconnect_max_attempts,
            initial_delay=self.reconnect_initial_delay,
            backoff_multiplier=self.reconnect_backoff_multiplier,
            max_delay=self.reconnect_max_delay,
            jitter=self.reconnect_jitter,
        )


settings = Settings()
