"""
External API clients

- twilio_messaging: WhatsApp sends, media download, Content API templates
- supabase_admin: Auth admin users and media storage
"""

__all__ = []
