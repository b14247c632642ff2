# ─────────────────────────────────────────────────────────────────────────────
# Settings — Pydantic v2 BaseSettings
# ─────────────────────────────────────────────────────────────────────────────


from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Dispatcher configuration sourced from environment variables.

    Uses pydantic-settings v2 (separate package from pydantic).
    """

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    # ── Server ───────────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8080

    # Comma-separated origins for CORS. Empty string = deny all cross-origin requests.
    allowed_origins: str = "https://waifus.nemusona.com"

    # ── Broker ───────────────────────────────────────────────────────────────
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    # SecretStr keeps the password out of logs and repr().
    redis_password: SecretStr = SecretStr("")
    redis_max_connections: int = 50
    redis_socket_timeout_seconds: float = 5.0
    queue_prefix: str = "bull"

    # ── Dispatch ─────────────────────────────────────────────────────────────
    # Backlog ceiling shared by every model queue. Also caps how many
    # completed/failed jobs each queue retains.
    queue_limit: int = Field(10, ge=0)
    queue_delay_seconds: float = Field(0.0, ge=0)
    queue_timeout_seconds: float = Field(120.0, gt=0)
    default_steps: int = Field(20, ge=1)

    # Back-off between failed reads of a queue's event stream.
    listener_retry_seconds: float = 1.0

    # ── Logging ──────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
