"""Client settings loaded from the environment."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Settings for the task view client.

    Overridable with ``TRIALRISK_`` prefixed environment variables, e.g.
    ``TRIALRISK_API_BASE_URL``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRIALRISK_",
        env_file=".env",
        extra="ignore",
    )

    api_base_url: str = "http://localhost:8000/api/v1"
    request_timeout: float = 10.0  # seconds, per request

    # Mark-read attempts before fetching comments anyway
    mark_read_attempts: int = 2
    # Wait before the first fetch when mark-read was not confirmed
    initial_delay: float = 0.25
    # Comment fetch attempts, and linear backoff step between them
    max_attempts: int = 3
    backoff_step: float = 0.3


@lru_cache()
def get_client_settings() -> ClientSettings:
    return ClientSettings()
