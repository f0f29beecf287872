from functools import lru_cache
from typing import List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(default="MaestroYa CRM Service")
    brand_name: str = Field(default="MaestroYa CRM")
    cors_origins: List[AnyHttpUrl] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:9002",
        ]
    )
    use_memory_store: bool = Field(
        default=True
    )
    store_base_url: AnyHttpUrl | None = Field(
        default=None
    )
    store_timeout: float = Field(
        default=10.0
    )
    store_token: str | None = Field(
        default=None
    )
    store_poll_interval: float = Field(
        default=2.0
    )
    google_api_key: str | None = Field(
        default=None
    )
    assistant_model: str = Field(
        default="gemini-1.5-flash"
    )
    warranty_days: int = Field(
        default=30
    )
    default_vat_percentage: float = Field(
        default=15.0
    )
    quote_validity_days: int = Field(
        default=15
    )
    whatsapp_country_code: str = Field(
        default="593"
    )
    business_timezone: str = Field(
        default="America/Guayaquil"
    )

    model_config = SettingsConfigDict(env_prefix="MAESTRO_", case_sensitive=False)

    @field_validator("cors_origins", mode="before")
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
