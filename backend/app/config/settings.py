"""
Application Settings for the Billing Service

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Efí credentials are optional here. The payment gateway
    adapter validates them when it is built, so the API (health checks,
    webhooks, admin overview) can boot without them.
    """

    # Supabase Auth Configuration
    supabase_url: str = ""
    supabase_jwt_secret: Optional[str] = None

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    frontend_url: str = "http://localhost:3000"
    site_url: Optional[str] = None
    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Efí (Gerencianet) Gateway Configuration
    efi_sandbox: bool = True
    efi_client_id: Optional[str] = None
    efi_client_secret: Optional[str] = None
    efi_cert_path: Optional[str] = None
    efi_cert_pem_base64: Optional[str] = None
    efi_cert_password: Optional[str] = None
    efi_webhook_url: Optional[str] = None
    efi_webhook_token: Optional[str] = None  # comma-separated list
    efi_debug_http: bool = False

    # Billing defaults
    billing_currency: str = "BRL"
    free_plan_slug: str = "free"
    free_plan_max_employees: int = 3
    webhook_event_retention_days: int = 30

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def normalize_urls(self) -> "Settings":
        """Strip trailing slashes so URLs can be joined safely."""
        if self.supabase_url:
            self.supabase_url = self.supabase_url.rstrip("/")
        if self.site_url:
            self.site_url = self.site_url.strip().rstrip("/")
        return self

    @property
    def webhook_tokens(self) -> list[str]:
        """Accepted shared secrets for the Efí notification endpoint."""
        if not self.efi_webhook_token:
            return []
        return [t.strip() for t in self.efi_webhook_token.split(",") if t.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
