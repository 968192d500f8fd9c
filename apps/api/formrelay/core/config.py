"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./formrelay.db"

    # Form lifecycle
    FORM_TTL_DAYS: int = 14
    FORM_EMAIL_SUBJECT: str = "Complete Your Information - Action Required"
    FORM_REPLY_SUBJECT_FRAGMENT: str = "Complete Your Information"
    PUBLIC_FORM_BASE_URL: str = "http://localhost:3000/form"

    # Reconciliation scheduler
    RECONCILE_POLL_INTERVAL_SECONDS: int = 60
    RECONCILE_MAX_WORKERS: int = 4
    RECONCILE_MAX_MESSAGES_PER_FORM: int = 10
    RECONCILE_SHUTDOWN_TIMEOUT_SECONDS: float = 120.0

    # Cases
    CASE_SLA_HOURS: int = 72
    CASE_SLA_WARNING_HOURS: int = 24

    # Outbound calls (mail providers, token endpoints)
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    OAUTH_REFRESH_SKEW_SECONDS: int = 60

    # Google OAuth (Gmail)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REDIRECT_URI: str = "http://localhost:8000/integrations/google/callback"

    # Microsoft identity platform (Outlook / Graph)
    MICROSOFT_CLIENT_ID: str = ""
    MICROSOFT_CLIENT_SECRET: str = ""
    MICROSOFT_TENANT_ID: str = "common"
    MICROSOFT_REDIRECT_URI: str = "http://localhost:8000/integrations/microsoft/callback"

    # Token Encryption (for storing OAuth tokens)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Inbound webhooks (HMAC-SHA256 over the raw body); empty rejects every call
    WEBHOOK_SECRET: str = ""

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Rate limits (requests per minute) for the public form surface
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PUBLIC_READ: int = 60
    RATE_LIMIT_PUBLIC_SUBMIT: int = 10
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def microsoft_authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.MICROSOFT_TENANT_ID}"


settings = Settings()
