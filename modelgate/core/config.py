from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # App
    app_name: str = "ModelGate"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///modelgate.db"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "/var/log/modelgate"
    file_logging: bool = False

    # Policies
    policy_file: Optional[str] = None

    # Notifications
    notification_base_url: str = "http://localhost:3000"
    webhook_url: Optional[str] = None
    webhook_timeout: int = 30
    webhook_max_retries: int = 3
    webhook_retry_delay: float = 1.0

    @property
    def webhook_enabled(self) -> bool:
        return bool(self.webhook_url)

    model_config = SettingsConfigDict(
        env_prefix="MODELGATE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
