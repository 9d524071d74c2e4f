"""Application configuration from environment variables."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

def _clean_str(value: str | None) -> str | None:
    if value is None:
        return None
    # Replace non-breaking spaces with normal spaces
    return value.replace("\u00a0", " ").strip()



class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "PlanSync"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Shared secret presented by the OAuth layer in front of this service
    AUTH_BRIDGE_TOKEN: str | None = None

    # Database Settings
    DATABASE_URL: str | None = None
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "plansync"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432

    # Stripe
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_TIMEOUT_SECONDS: float = 20.0
    STRIPE_MAX_NETWORK_RETRIES: int = 2

    # Redirect targets for checkout and the customer portal
    FRONTEND_URL: str = "http://localhost:3000"

    FREE_TRIAL_DAYS: int = 7

    @field_validator(
        "AUTH_BRIDGE_TOKEN",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "FRONTEND_URL",
        mode="before",
    )
    @classmethod
    def clean_secret_strings(cls, v):
        return _clean_str(v)

    @field_validator("FRONTEND_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def database_url(self) -> str:
        """Construct database URL from components unless DATABASE_URL is set."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
