"""Service configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    # HTTP surface
    host: str = "0.0.0.0"
    port: int = 8010

    # Docker daemon connection
    docker_url: str = "unix:///var/run/docker.sock"
    docker_timeout: int = 60  # seconds
    docker_api_version: str = "auto"

    # Event monitoring
    watch_events: bool = True
    # Upper bound on concurrent container lookups per subscription (0 = unbounded)
    max_concurrent_lookups: int = 0
    recent_events_limit: int = 100

    # Optional event forwarding (disabled when empty)
    event_forward_url: str = ""
    event_forward_timeout: float = 5.0

    # Logging configuration
    log_format: str = "json"  # "json" or "text"
    log_level: str = "INFO"

    class Config:
        env_prefix = "DOCKERWATCH_"


settings = Settings()
