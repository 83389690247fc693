"""Telebridge configuration via environment / .env file."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Conferencing deployment ---
    JITSI_DOMAIN: str = "meet.jit.si"
    JITSI_APP_ID: str = ""

    # --- Credential signing (hosted deployments only) ---
    JITSI_PRIVATE_KEY: str = ""
    JITSI_KEY_ID: str = ""
    JITSI_TOKEN_TTL_SECONDS: int = 3600
    CREDENTIAL_ENDPOINT: str = ""

    # --- External library loading ---
    SCRIPT_MAX_RETRIES: int = 4
    SCRIPT_RETRY_BASE_SECONDS: float = 2.0
    SCRIPT_RATE_LIMIT_BASE_SECONDS: float = 10.0
    SCRIPT_MAX_RETRY_DELAY_SECONDS: float = 30.0
    SCRIPT_RATE_LIMIT_COOLDOWN_SECONDS: float = 60.0
    SCRIPT_FETCH_TIMEOUT_SECONDS: float = 15.0

    # --- Embed readiness ---
    READINESS_FALLBACK_SECONDS: float = 1.0

    # --- Observability ---
    LOG_LEVEL: str = "INFO"

    # --- CORS ---
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("JITSI_PRIVATE_KEY", mode="before")
    @classmethod
    def _unescape_newlines(cls, v: str) -> str:
        # Keys pasted into .env files usually arrive with literal "\n"
        if isinstance(v, str) and "\\n" in v:
            return v.replace("\\n", "\n")
        return v

    @field_validator("JITSI_DOMAIN", mode="before")
    @classmethod
    def _strip_scheme(cls, v: str) -> str:
        if isinstance(v, str):
            for scheme in ("https://", "http://"):
                if v.startswith(scheme):
                    v = v[len(scheme):]
            return v.strip().rstrip("/")
        return v


settings = Settings()
