"""
App configuration. All credentials come from the environment, never hardcoded.

Load from .env via pydantic_settings. Components receive the Settings object
at construction instead of reading os.environ at call sites. In production,
set ENVIRONMENT=production so required secrets are validated at startup.
"""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = "sqlite:///./opswatch.db"  # Use postgresql://... for production
    environment: str = "development"  # development | production (production validates secrets)

    # Scheduled jobs authenticate with this; empty means open (local/dev only)
    cron_secret: str = ""
    # Debug toggles are also available whenever environment == development
    debug_fixtures_enabled: bool = False

    # Outbound HTTP (provider calls past this are treated as unreachable)
    http_timeout_seconds: float = 20.0

    # QuickBooks Online
    qbo_client_id: str = ""
    qbo_client_secret: str = ""
    qbo_environment: str = "sandbox"  # sandbox | production

    # Stripe
    stripe_secret_key: str = ""
    stripe_api_base: str = "https://api.stripe.com/v1"

    # Jira
    jira_base_url: str = ""
    jira_email: str = ""
    jira_api_token: str = ""

    # Notion
    notion_token: str = ""
    notion_api_base: str = "https://api.notion.com/v1"
    notion_version: str = "2022-06-28"

    # Expected revenue inference from paid invoices
    default_cadence_days: int = 30
    default_expectation_confidence: float = 0.9

    @property
    def debug_toggles_enabled(self) -> bool:
        return self.debug_fixtures_enabled or self.environment == "development"

    @model_validator(mode="after")
    def validate_production_secrets(self):
        """Fail fast in production if required credentials are missing."""
        if self.environment != "production":
            return self
        if not self.cron_secret:
            raise ValueError("In production, CRON_SECRET must be set in .env")
        if self.qbo_client_id and not self.qbo_client_secret:
            raise ValueError(
                "In production, QBO_CLIENT_SECRET must be set when QBO_CLIENT_ID is set"
            )
        if self.jira_base_url and not (self.jira_email and self.jira_api_token):
            raise ValueError(
                "In production, JIRA_EMAIL and JIRA_API_TOKEN must be set when JIRA_BASE_URL is set"
            )
        return self


settings = Settings()
