"""
Engage Service - Omnichannel WhatsApp engagement backend

This package provides:
- Template campaigns sent in batches through Twilio WhatsApp
- Delivery tracking from Twilio status callbacks with campaign analytics
- A shared inbox gated by the WhatsApp 24-hour conversation window
- Role-based access for admins, general managers, leaders and agents
- Contact, group, template, team and user management

Architecture:
- clients/: Twilio messaging and hosted backend admin clients
- services/: Business logic (campaigns, delivery, conversations, window sweep)
- webhooks/: Twilio webhook handler for status callbacks and incoming messages
- routes.py / dashboard_routes.py: FastAPI endpoints
- config.py: Settings and batching bounds
"""

from .config import get_engage_settings, EngageSettings

__version__ = "0.1.0"

__all__ = ["get_engage_settings", "EngageSettings", "__version__"]
