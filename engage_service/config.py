"""
Engage Service Configuration

Settings for the Twilio WhatsApp gateway, the hosted backend (auth admin API,
storage, JWT verification), campaign batching and the conversation window.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


# =============================================================================
# Campaign batching bounds
# =============================================================================

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 100
MIN_BATCH_DELAY_MS = 100
MAX_BATCH_DELAY_MS = 5000


# =============================================================================
# Settings Class
# =============================================================================


class EngageSettings(BaseSettings):
    """Settings for the engagement backend."""

    # ==========================================================================
    # Twilio WhatsApp
    # ==========================================================================

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_whatsapp_from: str = "whatsapp:+628979118504"
    twilio_api_base_url: str = "https://api.twilio.com/2010-04-01"
    twilio_content_base_url: str = "https://content.twilio.com/v1"

    # Public status callback URL handed to Twilio on every campaign send
    twilio_webhook_url: str = "https://webhook.dzynthesis.dev/api/webhooks/twilio"

    # Reject callbacks whose X-Twilio-Signature does not match
    validate_twilio_signature: bool = False

    # Public base URL the gateway calls (used to rebuild the signed URL)
    app_base_url: str = "http://localhost:8000"

    # ==========================================================================
    # Hosted backend (auth, storage)
    # ==========================================================================

    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_jwt_secret: str = "dev_secret"
    supabase_jwt_audience: str = "authenticated"
    media_bucket: str = "chat-media"

    # ==========================================================================
    # Campaigns
    # ==========================================================================

    campaign_batch_size: int = 50
    campaign_batch_delay_ms: int = 1000

    # ==========================================================================
    # Conversation window
    # ==========================================================================

    conversation_window_hours: int = 24
    window_expiring_soon_minutes: int = 60
    window_sweep_interval_minutes: int = 15
    window_sweep_enabled: bool = True

    # Bearer secret for the external auto-close cron call
    cron_secret: Optional[str] = None

    # ==========================================================================
    # Rate limiting
    # ==========================================================================

    redis_url: str = "redis://localhost:6379"
    rate_limit_enabled: bool = False
    rate_limit_per_minute: int = 100

    # ==========================================================================
    # General
    # ==========================================================================

    log_level: str = "INFO"
    sentry_dsn: Optional[str] = None
    environment: str = "development"
    cors_origins: str = "http://localhost:3000"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_engage_settings() -> EngageSettings:
    """Get the engage settings singleton."""
    return EngageSettings()


# =============================================================================
# Helper Functions
# =============================================================================


def is_twilio_configured() -> bool:
    """Check if Twilio credentials are configured."""
    settings = get_engage_settings()
    return bool(settings.twilio_account_sid and settings.twilio_auth_token)


def is_supabase_admin_configured() -> bool:
    """Check if the hosted backend service-role credentials are configured."""
    settings = get_engage_settings()
    return bool(settings.supabase_url and settings.supabase_service_role_key)
