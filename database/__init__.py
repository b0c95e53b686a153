from .models import (
    Team,
    Profile,
    ContactGroup,
    Contact,
    MessageTemplate,
    Campaign,
    CampaignMessage,
    CampaignAnalytics,
    Conversation,
    Message,
    TwilioWebhookLog,
)
from .database import init_db, SessionLocal

__all__ = [
    "Team",
    "Profile",
    "ContactGroup",
    "Contact",
    "MessageTemplate",
    "Campaign",
    "CampaignMessage",
    "CampaignAnalytics",
    "Conversation",
    "Message",
    "TwilioWebhookLog",
    "init_db",
    "SessionLocal",
]
