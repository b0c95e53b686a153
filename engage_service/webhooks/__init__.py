"""
Webhook handlers for Twilio status callbacks and incoming messages.
"""

__all__ = []
