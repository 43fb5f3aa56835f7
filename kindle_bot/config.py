from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings

LOCALES_DIR = Path(__file__).resolve().parent / "locales"

BOT_MODES = {"polling", "webhook"}
DB_TYPES = {"memory", "sql"}


class Settings(BaseSettings):
    telegram_bot_token: str = ""
    bot_mode: str = "polling"
    webhook_url: str = ""
    webhook_secret: str = ""

    db_type: str = "memory"
    database_url: str = ""

    default_language: str = "en"
    locales_dir: Path = LOCALES_DIR
    kindle_email_suffix: str = "@kindle.com"
    search_context_ttl_minutes: int = 10
    max_search_results: int = 10
    polling_timeout_seconds: int = 60

    admin_token: str = ""
    log_level: str = "INFO"
    port: int = 8080

    class Config:
        env_file = ".env"
        extra = "ignore"

    @model_validator(mode="after")
    def check_required(self) -> "Settings":
        if not self.telegram_bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required")

        self.bot_mode = self.bot_mode.lower()
        if self.bot_mode not in BOT_MODES:
            raise ValueError(f"invalid BOT_MODE: {self.bot_mode} (must be 'polling' or 'webhook')")
        if self.bot_mode == "webhook" and not self.webhook_url:
            raise ValueError("WEBHOOK_URL is required for webhook mode")

        self.db_type = self.db_type.lower()
        if self.db_type not in DB_TYPES:
            raise ValueError(f"invalid DB_TYPE: {self.db_type} (must be 'memory' or 'sql')")
        if self.db_type == "sql" and not self.database_url:
            raise ValueError("DATABASE_URL is required when DB_TYPE is 'sql'")

        if self.search_context_ttl_minutes <= 0:
            raise ValueError("SEARCH_CONTEXT_TTL_MINUTES must be positive")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
