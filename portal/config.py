from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


DEFAULT_KNOWLEDGE = (
    "Rafiq-AI est un assistant virtuel développé pour la Nuit de l'Info 2025. "
    "Il aide les citoyens à comprendre les services publics algériens et le projet NIRD."
)


class Settings(BaseSettings):
    # App
    app_name: str = "Rafiq Citizen Portal"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./portal.db"

    # Property alias for Alembic compatibility
    @property
    def DATABASE_URL(self) -> str:
        return self.database_url

    # API
    api_prefix: str = "/api"
    cors_origins: list[str] = [
        "http://localhost:5173", "http://localhost:5174", "http://localhost:3000",
    ]

    # Auth
    jwt_secret: str = "rafiq-dev-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 1 day
    admin_email: str = "admin@nird.gov"
    admin_password: str = "password"

    # ── AI Gateway ───────────────────────────────────────────
    ai_base_url: str = ""  # Empty = gateway disabled, knowledge fallback only
    ai_api_style: str = ""  # legacy | analyze | rafiq | session ("" = detect from URL)
    ai_api_key: Optional[str] = None  # Sent as X-API-Key
    ai_timeout_ms: int = 5000  # Upper bound for one assistant turn
    ai_default_knowledge: str = DEFAULT_KNOWLEDGE  # Primes each new session
    ai_legacy_payload: str = "text"  # auto | file | json | text
    ai_fallback_base_urls: list[str] = []  # Tried in order by the session dialect
    ai_history_turns: int = 10  # Turns re-injected into each prompt

    # ── Offline client ───────────────────────────────────────
    client_api_url: str = "http://localhost:4001/api"
    client_cache_url: str = "sqlite+aiosqlite:///./portal_offline.db"
    client_timeout_ms: int = 5000

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
