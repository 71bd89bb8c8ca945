"""Configuration settings for the Kazwab admission controller."""

from functools import lru_cache

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class PolicyOverride(BaseModel):
    """Partial replacement for a catalog policy."""

    window_seconds: float | None = None
    max_requests: int | None = None
    message: str | None = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="KAZWAB_", env_file=".env")

    # Server
    host: str = "127.0.0.1"  # Use KAZWAB_HOST=0.0.0.0 for Docker
    port: int = 8080
    debug: bool = False

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_backend: str = "memory"
    rate_limit_allowlist: list[str] = ["127.0.0.1", "::1"]
    rate_limit_sweep_interval_seconds: float = 3600.0
    rate_limit_policy_overrides: dict[str, PolicyOverride] = {}
    rate_limit_exempt_paths: list[str] = ["/health", "/ready", "/metrics"]
    rate_limit_include_headers: bool = True
    trust_proxy: bool = False

    # Redis (rate_limit_backend=redis)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    redis_pool_size: int = 50
    redis_key_prefix: str = "kazwab:ratelimit"

    # Admin API
    admin_token: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
