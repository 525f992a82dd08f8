"""Application configuration."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://leadflow:leadflow123@db:5432/leadflow"

    # Workflow engine
    ENABLE_WORKFLOW_PROCESSOR: bool = True
    WORKFLOW_BATCH_SIZE: int = 50
    WORKFLOW_PROCESSING_INTERVAL_MINUTES: int = 5
    WORKFLOW_RETRY_DELAY_MINUTES: int = 15  # fixed backoff, not exponential
    WORKFLOW_MAX_RETRIES: int = 3
    WORKFLOW_MEETING_CHECK_INTERVAL_MINUTES: int = 30
    WORKFLOW_RECURRENCE_LIMIT: int = 96  # 48h of meeting checks at 30 min
    WORKFLOW_INIT_GUARD_ENABLED: bool = True

    # HubSpot polling
    ENABLE_HUBSPOT_POLLING: bool = False
    HUBSPOT_ACCESS_TOKEN: Optional[str] = None
    HUBSPOT_SYNC_INTERVAL_MINUTES: int = 15
    HUBSPOT_MAX_LEADS_PER_SYNC: int = 100
    HUBSPOT_INITIAL_LOOKBACK_HOURS: int = 24

    # Calendly
    CALENDLY_WEBHOOK_SECRET: Optional[str] = None
    CALENDLY_LINK: str = "https://calendly.com/your-link"

    # Facebook Lead Ads
    FACEBOOK_VERIFY_TOKEN: Optional[str] = None
    FACEBOOK_APP_SECRET: Optional[str] = None
    FACEBOOK_PAGE_ACCESS_TOKEN: Optional[str] = None
    ENABLE_FACEBOOK_POLLING: bool = False
    FACEBOOK_FORM_IDS: str = ""  # comma-separated lead form ids
    FACEBOOK_SYNC_INTERVAL_MINUTES: int = 15

    # Notifications
    NOTIFICATIONS_DRY_RUN: bool = True
    SENDGRID_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "noreply@example.com"
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM_NUMBER: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
