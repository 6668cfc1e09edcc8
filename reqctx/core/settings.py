from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REQCTX_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Identity mode:
    # - "session": one context per x-session-id / authorization value, reused across requests.
    # - "request": a fresh context per request, cleared once the response has been sent.
    MODE: str = "session"

    # Global TTL (seconds) for writes without an explicit ttl. Unset means no expiry.
    EXPIRY_SECONDS: float | None = None

    # Identity resolution (session mode).
    SESSION_HEADER: str = "x-session-id"
    AUTH_HEADER: str = "authorization"
    DEFAULT_SESSION: str = "default-session"

    # The session registry never evicts; log a warning every time it grows by this many
    # identities. 0 disables the warning.
    REGISTRY_WARN_SIZE: int = 10_000


settings = Settings()
