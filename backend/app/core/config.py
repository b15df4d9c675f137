# backend/app/core/config.py

from __future__ import annotations

from typing import List, Optional
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from pydantic_settings import BaseSettings, SettingsConfigDict


def _strip_asyncpg_unsupported_params(url: str) -> str:
    """
    asyncpg does NOT accept sslmode or channel_binding as connect kwargs.
    Hosted Postgres connection strings usually carry them, so drop them here.
    """
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = parse_qsl(parts.query, keep_blank_values=True)
    filtered = [(k, v) for (k, v) in params if k not in {"sslmode", "channel_binding"}]
    new_query = urlencode(filtered, doseq=True)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, new_query, parts.fragment))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -----------------------------
    # Environment
    # -----------------------------
    # Use: development | staging | production
    ENVIRONMENT: str = "development"

    # -----------------------------
    # DB (backing store URL + service credential live in the URL)
    # -----------------------------
    DATABASE_URL_ASYNC: str

    # -----------------------------
    # JWT
    # -----------------------------
    JWT_SECRET: str = "dev-secret-change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # -----------------------------
    # Tenant assignment (shared secret, distinct from user tokens)
    # -----------------------------
    ASSIGN_TENANT_SECRET: Optional[str] = None

    # -----------------------------
    # Invitations
    # -----------------------------
    INVITE_EXPIRY_DAYS: int = 7
    # Used for accept_url when the request carries no Origin header
    PUBLIC_APP_URL: str = "http://localhost:5173"

    # -----------------------------
    # HTTP / logging
    # -----------------------------
    # comma-separated; "*" allows any origin
    CORS_ALLOWED_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def DATABASE_URL_ASYNC_CLEAN(self) -> str:
        return _strip_asyncpg_unsupported_params(self.DATABASE_URL_ASYNC)

    @property
    def is_production(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"staging", "production"}

    def model_post_init(self, __context) -> None:  # pydantic v2 hook
        # Never run staging/production with a placeholder secret.
        if self.is_production:
            if not self.JWT_SECRET or self.JWT_SECRET.strip() == "dev-secret-change-me":
                raise ValueError("JWT_SECRET must be set to a strong value in staging/production.")
            if len(self.JWT_SECRET.strip()) < 32:
                raise ValueError("JWT_SECRET is too short; use at least 32 characters in staging/production.")

        if self.JWT_ALGORITHM not in {"HS256"}:
            raise ValueError(f"Unsupported JWT_ALGORITHM={self.JWT_ALGORITHM!r}. Allowed: HS256")

        if self.INVITE_EXPIRY_DAYS < 1:
            raise ValueError("INVITE_EXPIRY_DAYS must be at least 1.")


settings = Settings()
