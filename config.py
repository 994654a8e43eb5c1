import logging
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=True)

    APP_NAME: str = "AgriLink"
    APP_VERSION: str = "0.2.0"

    # Database
    DATABASE_URL: str = "sqlite:///./agrilink.db"

    # JWT Settings
    JWT_SECRET: str = "your-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # IoT
    IOT_MASTER_KEY: str = "MASTER_IOT_KEY_CHANGE_IN_PRODUCTION"
    IOT_DEVICES_REQUIRE_AUTH: bool = False  # device list is public unless enabled

    # QA analytics
    QA_DEFAULT_TEMP_THRESHOLD: float = 8.0
    QA_DEFAULT_PERIOD_DAYS: int = 30

    # Public URL used in lot QR codes
    BASE_URL: str = "http://localhost:5173"

    # CORS - comma-separated
    CORS_ORIGINS: str = "*"

    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
