"""
Twilio Webhook Handler - WhatsApp status callbacks and incoming messages

Handles:
- Delivery status callbacks (queued, sent, delivered, read, failed, undelivered)
- Incoming WhatsApp messages (text and media)

Webhook URLs:
- POST /api/webhooks/twilio           status callbacks
- POST /api/webhooks/twilio/incoming  incoming messages

Twilio retries on anything but 2xx, so processing failures are logged and
reported to Sentry but never surfaced to the gateway.
"""

import logging
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

from ..config import get_engage_settings
from ..models import (
    ConversationStatus,
    ConversationPriority,
    MessageDirection,
    MessageType,
    WebhookEventResponse,
)
from ..clients.twilio_messaging import strip_whatsapp_prefix, verify_twilio_signature
from ..services.delivery_tracker import get_delivery_tracker, resolve_status
from ..services.conversation_window import record_inbound

logger = logging.getLogger(__name__)


class WebhookType(str, Enum):
    """Types of webhook calls we log."""
    STATUS = "status"
    INCOMING = "incoming"


def media_type_for(content_type: Optional[str]) -> MessageType:
    """Message type for an inbound media content type."""
    if not content_type:
        return MessageType.MEDIA
    for prefix, message_type in (
        ("image/", MessageType.IMAGE),
        ("video/", MessageType.VIDEO),
        ("audio/", MessageType.AUDIO),
    ):
        if content_type.startswith(prefix):
            return message_type
    return MessageType.DOCUMENT


class TwilioWebhookHandler:
    """
    Processes Twilio webhook calls.

    Status callbacks update campaign and conversation messages; incoming
    messages create or update:
    - Contact records
    - Conversation threads (and their 24h window)
    - Messages
    """

    def __init__(self):
        self.settings = get_engage_settings()

    def verify_signature(self, url: str, params: Dict[str, Any], signature: Optional[str]) -> bool:
        """
        Verify the X-Twilio-Signature header.

        Always True when signature validation is disabled.
        """
        if not self.settings.validate_twilio_signature:
            return True
        return verify_twilio_signature(url, params, signature, self.settings.twilio_auth_token)

    def log_webhook(
        self, webhook_type: WebhookType, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> None:
        """Store the raw payload for debugging. Failures are logged only."""
        from database.database import SessionLocal
        from database.models import TwilioWebhookLog

        db = SessionLocal()
        try:
            db.add(TwilioWebhookLog(
                webhook_type=webhook_type.value,
                message_sid=payload.get("MessageSid"),
                payload=payload,
                raw_headers=headers or {},
            ))
            db.commit()
        except Exception as e:
            logger.error(f"Failed to store webhook log: {e}")
            db.rollback()
        finally:
            db.close()

    def handle_status_callback(self, payload: Dict[str, Any]) -> WebhookEventResponse:
        """
        Process a delivery status callback.

        Args:
            payload: Form fields sent by Twilio

        Returns:
            Processing result (never raises)
        """
        message_sid = payload.get("MessageSid")
        twilio_status = resolve_status(payload.get("MessageStatus"), payload.get("EventType"))

        if payload.get("ErrorCode"):
            logger.error(
                f"Twilio webhook error - Code: {payload.get('ErrorCode')} "
                f"Message: {payload.get('ErrorMessage')}"
            )

        if not twilio_status or not message_sid:
            return WebhookEventResponse(success=True, event="ignored", message_sid=message_sid)

        try:
            result = get_delivery_tracker().apply_status(
                message_sid,
                twilio_status,
                error_code=payload.get("ErrorCode"),
                error_message=payload.get("ErrorMessage"),
            )
            return WebhookEventResponse(
                success=True,
                event="status",
                message_sid=message_sid,
                status=result["status"],
                campaign_id=result["campaign_id"],
                conversation_id=result["conversation_id"],
            )

        except Exception as e:
            from monitoring import capture_exception

            logger.error(f"Error handling status callback for {message_sid}: {e}")
            capture_exception(e, {"message_sid": message_sid, "status": twilio_status})
            return WebhookEventResponse(success=False, event="status", message_sid=message_sid)

    def handle_incoming_message(
        self, payload: Dict[str, Any], now: Optional[datetime] = None
    ) -> WebhookEventResponse:
        """
        Process an incoming WhatsApp message.

        Finds or creates the contact by phone number, finds the contact's
        non-closed conversation or starts a new one, stores the message and
        rolls the conversation window forward.
        """
        from database.database import SessionLocal
        from database.models import Contact, Conversation, Message

        now = now or datetime.utcnow()
        message_sid = payload.get("MessageSid")
        from_address = payload.get("From") or ""
        phone_number = strip_whatsapp_prefix(from_address)

        if not phone_number:
            return WebhookEventResponse(success=True, event="ignored", message_sid=message_sid)

        num_media = int(payload.get("NumMedia") or 0)
        body = payload.get("Body") or ""
        if not body and num_media == 0:
            return WebhookEventResponse(success=True, event="ignored", message_sid=message_sid)

        db = SessionLocal()
        try:
            # Twilio may redeliver; the SID is unique
            if message_sid:
                duplicate = db.query(Message).filter(Message.message_sid == message_sid).first()
                if duplicate:
                    return WebhookEventResponse(
                        success=True,
                        event="duplicate",
                        message_sid=message_sid,
                        conversation_id=duplicate.conversation_id,
                        message_id=duplicate.id,
                    )

            # Find or create contact
            contact = db.query(Contact).filter(Contact.phone_number == phone_number).first()

            is_new_contact = False
            if not contact:
                is_new_contact = True
                contact = Contact(
                    phone_number=phone_number,
                    name=payload.get("ProfileName") or payload.get("WaId") or phone_number,
                )
                db.add(contact)
                db.flush()

                logger.info(f"Created new contact from WhatsApp: {contact.id}")

            contact.last_interaction_at = now

            # Find or create conversation
            conversation = (
                db.query(Conversation)
                .filter(
                    Conversation.contact_id == contact.id,
                    Conversation.status != ConversationStatus.CLOSED.value,
                )
                .order_by(Conversation.created_at.desc())
                .first()
            )

            if not conversation:
                conversation = Conversation(
                    contact_id=contact.id,
                    status=ConversationStatus.OPEN.value,
                    priority=ConversationPriority.NORMAL.value,
                )
                db.add(conversation)
                db.flush()

            # Create message record
            media_url = payload.get("MediaUrl0") if num_media else None
            media_content_type = payload.get("MediaContentType0") if num_media else None
            message_type = media_type_for(media_content_type) if num_media else MessageType.TEXT

            message = Message(
                conversation_id=conversation.id,
                message_sid=message_sid,
                direction=MessageDirection.INBOUND.value,
                message_type=message_type.value,
                content=body,
                media_url=media_url,
                media_content_type=media_content_type,
                from_number=from_address,
                to_number=payload.get("To"),
                timestamp=now,
            )
            db.add(message)

            # 24-hour window for free replies
            record_inbound(conversation, now)

            db.commit()

            return WebhookEventResponse(
                success=True,
                event="incoming",
                message_sid=message_sid,
                conversation_id=conversation.id,
                message_id=message.id,
                is_new_contact=is_new_contact,
            )

        except Exception as e:
            from monitoring import capture_exception

            logger.error(f"Error handling incoming WhatsApp message: {e}")
            db.rollback()
            capture_exception(e, {"message_sid": message_sid})
            return WebhookEventResponse(success=False, event="incoming", message_sid=message_sid)

        finally:
            db.close()


# Singleton instance
_webhook_handler: Optional[TwilioWebhookHandler] = None


def get_webhook_handler() -> TwilioWebhookHandler:
    """Get or create the webhook handler singleton."""
    global _webhook_handler
    if _webhook_handler is None:
        _webhook_handler = TwilioWebhookHandler()
    return _webhook_handler
